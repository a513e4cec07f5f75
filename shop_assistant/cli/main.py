"""
CLI interface for the shop assistant.

Runs the HTTP API, an interactive chat session, and cost/usage reports.
"""

import logging
import sqlite3
import sys
from decimal import Decimal
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from shop_assistant.config.loader import load_config
from shop_assistant.core.errors import AssistantError, BudgetExceeded
from shop_assistant.core.manager import SessionManager
from shop_assistant.core.pricing import CostEstimator
from shop_assistant.storage.db import DEFAULT_DB_PATH
from shop_assistant.storage.repository import UsageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

QUIT_COMMANDS = {"/quit", "/exit"}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to YAML configuration file"
)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _format_currency(amount: Decimal) -> str:
    """Format a dollar amount with enough precision for per-request costs."""
    return f"${amount:,.6f}"


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Shop Assistant CLI."""
    load_dotenv()
    if ctx.invoked_subcommand is None:
        console.print("Shop Assistant - Use --help to see available commands")


@app.command()
def serve(
    config: Optional[str] = ConfigOption,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level")
):
    """Run the chat session HTTP API."""
    import uvicorn

    from shop_assistant.api import create_app

    configure_logging(log_level)
    try:
        settings = load_config(config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    uvicorn.run(create_app(settings), host=host, port=port, log_level=log_level.lower())


@app.command()
def chat(
    config: Optional[str] = ConfigOption,
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Owner user id for the session")
):
    """
    Chat with the assistant in the terminal.

    Uses the same session engine, budget and catalog as the HTTP API.
    Type /quit to end the session.
    """
    configure_logging("WARNING")
    try:
        manager = SessionManager.from_config(load_config(config))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    session_id, welcome = manager.create_session(user_id)
    console.print(f"[bold cyan]Assistant:[/] {welcome}")

    while True:
        try:
            text = typer.prompt("You")
        except (EOFError, typer.Abort):
            break
        if text.strip().lower() in QUIT_COMMANDS:
            break

        try:
            result = manager.send_message(session_id, text)
        except BudgetExceeded as e:
            console.print(f"[red]{str(e)}[/]")
            continue
        except (AssistantError, ValueError) as e:
            console.print(f"[red]Error:[/] {str(e)}")
            continue

        style = "bold cyan" if result.success else "bold yellow"
        console.print(f"[{style}]Assistant:[/] {result.reply}")
        for item in result.context_items:
            console.print(f"  [dim]- {item.name} ({item.brand}) {item.price:,}[/]")
        if result.cost is not None:
            console.print(
                f"  [dim]cost {_format_currency(result.cost.request_cost)} | "
                f"remaining {_format_currency(result.cost.remaining_budget)}[/]"
            )
        if result.budget_exhausted:
            console.print("[yellow]The AI budget is now exhausted.[/]")

    manager.end_session(session_id)
    console.print("[green]✓[/] Chat session ended")


@app.command()
def estimate(
    prompt_tokens: int = typer.Argument(..., help="Prompt tokens"),
    completion_tokens: int = typer.Argument(..., help="Completion tokens"),
    config: Optional[str] = ConfigOption
):
    """Show the cost of a call and the budget left after it."""
    try:
        settings = load_config(config)
        estimator = CostEstimator.from_rates(
            settings.budget.input_rate_per_1k, settings.budget.output_rate_per_1k
        )
        cost = estimator.estimate(prompt_tokens, completion_tokens)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"Request cost: {_format_currency(cost)}")
    console.print(f"Budget: {_format_currency(settings.budget.ceiling)}")
    console.print(f"Remaining after one call: {_format_currency(settings.budget.ceiling - cost)}")


@app.command("init-db")
def init_db(
    db_path: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Usage log database path")
):
    """Initialize the usage audit log database."""
    try:
        initialize_schema(db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(
    db_path: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Usage log database path"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Only show one chat session"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent calls to list")
):
    """Summarize recorded provider calls and their cost."""
    try:
        repository = UsageRepository(db_path)
        summary = repository.summarize()
        events = repository.fetch_recent(session_id=session, limit=limit)
    except sqlite3.Error as e:
        console.print(f"[red]Error reading usage log:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if summary.total_requests == 0:
        console.print("\n[bold yellow]No AI usage recorded yet[/]")
        console.print("Set storage.usage_db_path in the config to record provider calls.\n")
        sys.exit(EXIT_CODE_PASS)

    console.print("\n[bold]AI Usage Summary[/bold]")
    console.print("-" * 40)
    console.print(f"Requests: {summary.total_requests}")
    console.print(f"Sessions: {summary.sessions}")
    console.print(f"Tokens: {summary.total_tokens:,}")
    console.print(f"Total cost: {_format_currency(summary.total_cost)}")
    console.print(f"Billed cost: {_format_currency(summary.billed_cost)}")

    table = Table(title="Recent calls")
    table.add_column("Time")
    table.add_column("Session")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Billed")
    for event in events:
        table.add_row(
            event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            event.session_id[:8],
            event.model,
            f"{event.total_tokens:,}",
            _format_currency(event.cost),
            "yes" if event.billed else "no"
        )
    console.print(table)


if __name__ == "__main__":
    app()
