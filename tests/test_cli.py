"""
Tests for the CLI interface.
"""
import os
import tempfile
from datetime import datetime
from decimal import Decimal

import pytest
from typer.testing import CliRunner

from shop_assistant.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from shop_assistant.storage.models import UsageEvent
from shop_assistant.storage.repository import UsageRepository

runner = CliRunner()


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as path:
        yield path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SHOP_ASSISTANT_* variables from the developer shell out of tests."""
    for name in list(os.environ):
        if name.startswith("SHOP_ASSISTANT_"):
            monkeypatch.delenv(name)


class TestCLI:
    """Test CLI commands."""

    def test_estimate_reference_scenario(self):
        """2,000 prompt + 500 completion tokens at default rates."""
        result = runner.invoke(app, ["estimate", "2000", "500"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Request cost: $0.001750" in result.output
        assert "Budget: $5.000000" in result.output
        assert "Remaining after one call: $4.998250" in result.output

    def test_estimate_with_config(self, temp_dir):
        config_path = os.path.join(temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("budget:\n  ceiling: 1\n  input_rate_per_1k: 0.001\n  output_rate_per_1k: 0.002\n")

        result = runner.invoke(app, ["estimate", "1000", "1000", "--config", config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Request cost: $0.003000" in result.output
        assert "Remaining after one call: $0.997000" in result.output

    def test_estimate_missing_config(self):
        result = runner.invoke(app, ["estimate", "10", "10", "--config", "/nonexistent/config.yaml"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error" in result.output

    def test_init_db(self, temp_dir):
        db_path = os.path.join(temp_dir, "usage.db")

        result = runner.invoke(app, ["init-db", "--db", db_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(db_path)

    def test_usage_empty(self, temp_dir):
        result = runner.invoke(app, ["usage", "--db", os.path.join(temp_dir, "usage.db")])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No AI usage recorded yet" in result.output

    def test_usage_summary(self, temp_dir):
        db_path = os.path.join(temp_dir, "usage.db")
        repository = UsageRepository(db_path)
        for session_id in ("session-a", "session-b"):
            repository.record(UsageEvent(
                timestamp=datetime(2024, 1, 1, 12, 0),
                session_id=session_id,
                model="gpt-3.5-turbo",
                prompt_tokens=2000,
                completion_tokens=500,
                cost=Decimal("0.00175")
            ))

        result = runner.invoke(app, ["usage", "--db", db_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "AI Usage Summary" in result.output
        assert "Requests: 2" in result.output
        assert "Sessions: 2" in result.output
        assert "Total cost: $0.003500" in result.output

    def test_chat_quits(self, monkeypatch):
        """A mock-provider chat session starts, answers and ends."""
        monkeypatch.setattr("shop_assistant.cli.main.configure_logging", lambda level: None)
        result = runner.invoke(
            app,
            ["chat"],
            input="I want a gaming laptop\n/quit\n",
            env={"SHOP_ASSISTANT_PROVIDER": "mock"}
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "Hello!" in result.output
        assert "gaming" in result.output.lower()
        assert "Chat session ended" in result.output
