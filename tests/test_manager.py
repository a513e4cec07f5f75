"""
Tests for session orchestration.

Covers the turn pipeline, degraded replies, budget accounting and
session lifecycle.
"""

import threading
import time
from decimal import Decimal
from unittest.mock import Mock

import pytest

from shop_assistant.core.errors import (
    BudgetExceeded,
    ProviderError,
    ProviderRateLimited,
    ProviderTimeout,
    RequestCancelled,
    RetrievalError,
    SessionEnded,
    SessionNotFound,
)
from shop_assistant.core.ledger import BudgetLedger
from shop_assistant.core.manager import budget_tips
from shop_assistant.core.prompts import APOLOGY_MESSAGE, WELCOME_MESSAGE
from shop_assistant.core.session import Role, SessionStatus

from conftest import ScriptedGenerator, make_manager


class TestCreateSession:
    """Test session creation."""

    def test_returns_id_and_welcome(self, manager):
        session_id, welcome = manager.create_session()
        assert session_id
        assert welcome == WELCOME_MESSAGE

    def test_session_is_active_with_welcome_turn(self, manager):
        session_id, _ = manager.create_session(owner_id="user-1")
        session = manager.registry.get(session_id)
        assert session.status is SessionStatus.ACTIVE
        assert session.owner_id == "user-1"
        assert len(session.history) == 1
        assert session.history[0].role is Role.ASSISTANT
        assert session.history[0].usage is None

    def test_welcome_costs_nothing(self, manager, generator):
        manager.create_session()
        assert generator.calls == []
        assert manager.ledger.snapshot().spent == Decimal("0")

    def test_ids_are_unique(self, manager):
        ids = {manager.create_session()[0] for _ in range(50)}
        assert len(ids) == 50


class TestSendMessage:
    """Test the happy path of a turn."""

    def test_reference_cost_scenario(self, manager):
        """$5.00 budget, 2,000 prompt + 500 completion tokens -> $0.00175."""
        session_id, _ = manager.create_session()
        result = manager.send_message(session_id, "I want a laptop for gaming")

        assert result.success is True
        assert result.cost.request_cost == Decimal("0.00175")
        assert result.cost.remaining_budget == Decimal("4.99825")
        assert result.cost.total_cost == Decimal("0.00175")
        assert result.cost.budget == Decimal("5.00")
        assert result.cost.tokens_used == 2500
        assert result.budget_exhausted is False

    def test_context_items_and_prompt(self, manager, generator):
        session_id, _ = manager.create_session()
        result = manager.send_message(session_id, "laptop gaming")

        assert [item.id for item in result.context_items] == ["p001", "p003", "p005"]
        messages = generator.calls[0]
        assert messages[0]["role"] == "system"
        assert "[p001]" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "laptop gaming"}

    def test_timeout_passed_once(self, generator):
        manager = make_manager(generator, timeout=7.5)
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "hello")
        assert generator.timeouts == [7.5]

    def test_history_records_both_turns(self, manager):
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "laptop gaming")
        history = manager.registry.get(session_id).history
        assert [turn.role for turn in history] == [Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        reply = history[-1]
        assert reply.item_ids == ("p001", "p003", "p005")
        assert reply.usage.total_tokens == 2500
        assert reply.metadata["context_used"] is True

    def test_empty_message_rejected(self, manager):
        session_id, _ = manager.create_session()
        with pytest.raises(ValueError):
            manager.send_message(session_id, "   ")

    def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFound):
            manager.send_message("missing", "hello")

    def test_history_bound(self, generator):
        """After 25 messages with a window of 20, prompts hold at most 20 turns."""
        manager = make_manager(generator, history_window=20)
        session_id, _ = manager.create_session()
        for i in range(25):
            manager.send_message(session_id, f"message {i}")

        manager.send_message(session_id, "one more")
        prompt = generator.calls[-1]
        history_messages = prompt[1:]
        assert len(history_messages) <= 20
        assert history_messages[-1]["content"] == "one more"
        assert len(manager.registry.get(session_id).history) == 20


class TestProviderFailures:
    """Test degraded replies."""

    @pytest.mark.parametrize("error", [
        ProviderTimeout("slow"),
        ProviderError("boom"),
        ProviderRateLimited("429"),
    ])
    def test_failure_is_degraded_and_not_charged(self, error):
        manager = make_manager(ScriptedGenerator([error]))
        session_id, _ = manager.create_session()
        before = manager.ledger.snapshot().spent

        result = manager.send_message(session_id, "laptop gaming")

        assert result.success is False
        assert result.reply == APOLOGY_MESSAGE
        assert result.cost is None
        assert result.error == type(error).__name__
        assert manager.ledger.snapshot().spent == before

    def test_apology_recorded_and_session_usable(self):
        generator = ScriptedGenerator([ProviderTimeout("slow"), (100, 50)])
        manager = make_manager(generator)
        session_id, _ = manager.create_session()

        manager.send_message(session_id, "hello")
        history = manager.registry.get(session_id).history
        assert history[-1].text == APOLOGY_MESSAGE
        assert history[-1].metadata["degraded"] is True

        retry = manager.send_message(session_id, "hello again")
        assert retry.success is True

    def test_unexpected_client_error_degrades(self):
        manager = make_manager(ScriptedGenerator([RuntimeError("socket closed")]))
        session_id, _ = manager.create_session()
        result = manager.send_message(session_id, "hello")
        assert result.success is False
        assert result.error == "ProviderError"


class TestRetrievalFailures:
    """Test that retrieval never aborts a turn."""

    def test_retrieval_error_means_no_context(self, generator):
        retriever = Mock()
        retriever.rank.side_effect = RetrievalError("catalog offline")
        manager = make_manager(generator, retriever=retriever)
        session_id, _ = manager.create_session()

        result = manager.send_message(session_id, "laptop gaming")

        assert result.success is True
        assert result.context_items == ()
        assert "No related products were found." in generator.calls[0][0]["content"]


class TestBudgetEnforcement:
    """Test admission control and exhausted budgets."""

    def test_debit_rejected_turn_still_recorded(self):
        # 2,000,000 prompt tokens cost $1.00; the ceiling is $0.50
        manager = make_manager(ScriptedGenerator([(2_000_000, 0)]), ceiling="0.50")
        session_id, _ = manager.create_session()

        result = manager.send_message(session_id, "hello")

        assert result.success is True
        assert result.budget_exhausted is True
        assert manager.ledger.snapshot().spent == Decimal("0")
        assert manager.registry.get(session_id).history[-1].metadata["budget_exhausted"] is True

    def test_exhausted_budget_refused_preflight(self):
        generator = ScriptedGenerator([(2_000_000, 0)])
        manager = make_manager(generator, ceiling="0.50")
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "hello")
        history_len = len(manager.registry.get(session_id).history)

        with pytest.raises(BudgetExceeded):
            manager.send_message(session_id, "hello again")

        assert len(generator.calls) == 1
        # The refused user turn is not left in history
        assert len(manager.registry.get(session_id).history) == history_len

    def test_zero_remaining_refused(self):
        # Exactly $0.50 spent: nothing left
        manager = make_manager(ScriptedGenerator([(1_000_000, 0)]), ceiling="0.50")
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "hello")
        assert manager.ledger.snapshot().remaining == Decimal("0")
        with pytest.raises(BudgetExceeded):
            manager.send_message(session_id, "again")

    def test_reset_reopens_budget(self):
        manager = make_manager(ScriptedGenerator([(2_000_000, 0), (100, 100)]), ceiling="0.50")
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "hello")
        with pytest.raises(BudgetExceeded):
            manager.send_message(session_id, "again")

        manager.reset_costs()
        snapshot = manager.ledger.snapshot()
        assert snapshot.spent == Decimal("0")
        assert snapshot.tokens_used == 0
        assert snapshot.ceiling == Decimal("0.50")

        result = manager.send_message(session_id, "after reset")
        assert result.success is True

    def test_budget_shared_across_sessions(self, manager):
        first, _ = manager.create_session()
        second, _ = manager.create_session()
        manager.send_message(first, "hello")
        result = manager.send_message(second, "hello")
        assert result.cost.total_cost == Decimal("0.00350")


class TestCancellation:
    """Test callers that disconnect mid-turn."""

    def test_cancelled_reply_discarded_but_charged(self, manager):
        session_id, _ = manager.create_session()
        history_before = manager.registry.get(session_id).history

        with pytest.raises(RequestCancelled):
            manager.send_message(session_id, "hello", cancelled=lambda: True)

        assert manager.registry.get(session_id).history == history_before
        assert manager.ledger.snapshot().spent == Decimal("0.00175")

    def test_cancelled_with_full_window_keeps_oldest_turn(self, generator):
        manager = make_manager(generator, history_window=3)
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "gaming laptop")
        history_before = manager.registry.get(session_id).history
        assert len(history_before) == 3

        with pytest.raises(RequestCancelled):
            manager.send_message(session_id, "hello", cancelled=lambda: True)

        assert manager.registry.get(session_id).history == history_before
        # The discarded message still reached the provider
        assert generator.calls[-1][-1] == {"role": "user", "content": "hello"}
        assert len(generator.calls[-1]) == 1 + 3


class TestFullWindow:
    """Test refusals when the history window is already full."""

    def test_refused_turn_keeps_oldest_turn(self):
        generator = ScriptedGenerator([(2000, 500), (2_000_000, 0)])
        manager = make_manager(generator, ceiling="0.50", history_window=3)
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "gaming laptop")
        manager.send_message(session_id, "office laptop")
        history_before = manager.registry.get(session_id).history
        assert len(history_before) == 3

        with pytest.raises(BudgetExceeded):
            manager.send_message(session_id, "student laptop")

        history_after = manager.registry.get(session_id).history
        assert history_after == history_before
        assert len(generator.calls) == 2

    def test_refused_first_message_keeps_welcome(self):
        manager = make_manager(ceiling="0.50", history_window=1)
        manager.ledger.try_debit(Decimal("0.50"))
        session_id, _ = manager.create_session()

        with pytest.raises(BudgetExceeded):
            manager.send_message(session_id, "hello")

        [welcome] = manager.registry.get(session_id).history
        assert welcome.text == WELCOME_MESSAGE


class TestEndSession:
    """Test idempotent ending."""

    def test_end_twice_same_state(self, manager):
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "hello")

        assert manager.end_session(session_id) is True
        session = manager.registry.get(session_id)
        state_after_first = (session.status, session.history, session.ended_at)

        assert manager.end_session(session_id) is False
        assert (session.status, session.history, session.ended_at) == state_after_first

    def test_send_after_end(self, manager):
        session_id, _ = manager.create_session()
        manager.end_session(session_id)
        manager.end_session(session_id)
        with pytest.raises(SessionEnded):
            manager.send_message(session_id, "hello")

    def test_end_unknown(self, manager):
        with pytest.raises(SessionNotFound):
            manager.end_session("missing")

    def test_expired_session_not_found(self, manager):
        session_id, _ = manager.create_session()
        manager.registry.sweep_expired(now=time.time() + manager.registry.ttl_seconds + 1)
        with pytest.raises(SessionNotFound):
            manager.send_message(session_id, "hello")


class TestHistoryAndStats:
    """Test history reads and cost statistics."""

    def test_get_history_limit(self, manager):
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "hello")
        status, turns = manager.get_history(session_id, limit=2)
        assert status is SessionStatus.ACTIVE
        assert [turn.role for turn in turns] == [Role.USER, Role.ASSISTANT]

    def test_history_of_ended_session_is_empty(self, manager):
        session_id, _ = manager.create_session()
        manager.end_session(session_id)
        status, turns = manager.get_history(session_id)
        assert status is SessionStatus.ENDED
        assert turns == []

    def test_cost_stats(self, manager):
        session_id, _ = manager.create_session()
        manager.send_message(session_id, "hello")
        stats = manager.cost_stats()
        assert stats.snapshot.spent == Decimal("0.00175")
        assert stats.snapshot.tokens_used == 2500
        assert len(stats.tips) >= 1

    def test_tips_for_low_and_exhausted_budget(self):
        ledger = BudgetLedger(Decimal("1.00"))
        ledger.try_debit(Decimal("0.85"))
        assert "Less than 20%" in budget_tips(ledger.snapshot())[0]
        ledger.try_debit(Decimal("0.50"))
        assert "exhausted" in budget_tips(ledger.snapshot())[0]


class TestConcurrency:
    """Test per-session serialization and cross-session parallelism."""

    def test_same_session_turns_do_not_interleave(self):
        class SlowGenerator(ScriptedGenerator):
            def __init__(self):
                super().__init__()
                self.active = 0
                self.max_active = 0
                self.lock = threading.Lock()

            def complete(self, messages, timeout):
                with self.lock:
                    self.active += 1
                    self.max_active = max(self.max_active, self.active)
                time.sleep(0.01)
                with self.lock:
                    self.active -= 1
                return super().complete(messages, timeout)

        generator = SlowGenerator()
        manager = make_manager(generator)
        session_id, _ = manager.create_session()

        threads = [
            threading.Thread(target=manager.send_message, args=(session_id, f"msg {i}"))
            for i in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert generator.max_active == 1
        roles = [turn.role for turn in manager.registry.get(session_id).history[1:]]
        assert roles == [Role.USER, Role.ASSISTANT] * 8

    def test_concurrent_sessions_respect_ceiling(self):
        # Each turn costs $0.10; the ceiling allows 5 of them
        manager = make_manager(ScriptedGenerator([(200_000, 0)]), ceiling="0.50")
        session_ids = [manager.create_session()[0] for _ in range(20)]
        outcomes = []
        lock = threading.Lock()

        def run(session_id):
            try:
                result = manager.send_message(session_id, "hello")
                outcome = "exhausted" if result.budget_exhausted else "ok"
            except BudgetExceeded:
                outcome = "refused"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=run, args=(sid,)) for sid in session_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = manager.ledger.snapshot()
        assert snapshot.spent <= snapshot.ceiling
        assert outcomes.count("ok") == 5
