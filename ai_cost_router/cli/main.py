"""
CLI interface for AI Cost Router.

Provides command-line access to profiles, dispatch and usage reporting.
"""

import asyncio
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_cost_router.config.loader import load_router_config
from ai_cost_router.core.catalog import FeatureType, Tier
from ai_cost_router.core.cipher import validate_encryption_config
from ai_cost_router.core.dispatcher import build_dispatcher
from ai_cost_router.core.errors import AuthError, QuotaExceededError, RouterError
from ai_cost_router.core.ledger import Period, UsageLedger
from ai_cost_router.core.request import AIRequest
from ai_cost_router.providers.registry import ProviderSettings, build_adapters
from ai_cost_router.storage.db import DEFAULT_DB_PATH
from ai_cost_router.storage.repository import SqliteProfileStore, SqliteUsageStore, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_DENIED = 2  # Auth or quota rejection

DB_OPTION = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite database")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def _format_cents(cents: float) -> str:
    """Format a cent amount as dollars."""
    return f"${cents / 100:,.2f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """AI Cost Router CLI."""
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None:
        console.print("AI Cost Router - Use --help to see available commands")


@app.command()
def status(db: str = DB_OPTION):
    """Show database, provider key and encryption status."""
    if Path(db).exists():
        console.print(f"[green]✓[/] Database found at {db}")
    else:
        console.print(f"[yellow]![/] No database at {db}, run `ai-cost-router init`")

    table = Table(title="Providers")
    table.add_column("Provider")
    table.add_column("Configured")
    for provider, configured in ProviderSettings.from_env().configured().items():
        table.add_row(provider, "[green]yes[/]" if configured else "[red]no[/]")
    console.print(table)

    if validate_encryption_config():
        console.print("[green]✓[/] Message encryption configured")
    else:
        console.print("[yellow]![/] Message encryption not configured")


@app.command()
def init(db: str = DB_OPTION):
    """Initialize the AI Cost Router database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def profile(
    user_id: str = typer.Argument(..., help="User to create or update"),
    tier: str = typer.Option("free", "--tier", "-t", help="free, pro, team or enterprise"),
    db: str = DB_OPTION,
):
    """Create a user profile or change its tier."""
    valid = [t.value for t in Tier]
    if tier.lower() not in valid:
        console.print(f"[red]Error:[/] tier must be one of {valid}")
        sys.exit(EXIT_CODE_FAIL)
    try:
        initialize_schema(db)
        record = asyncio.run(SqliteProfileStore(db).upsert_profile(user_id, tier.lower()))
    except sqlite3.Error as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(
        f"[green]✓[/] {record.user_id}: tier={record.tier}, requests today={record.daily_count}"
    )


@app.command()
def ask(
    user_id: str = typer.Argument(..., help="Requesting user"),
    message: str = typer.Argument(..., help="Message to send"),
    feature: str = typer.Option("quick_chat", "--feature", "-f", help="Feature type"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Router YAML config"),
    db: str = DB_OPTION,
):
    """Dispatch one request through quota, cache, routing and providers."""
    try:
        config = load_router_config(config_path)
        feature_type = FeatureType.parse(feature)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    initialize_schema(db)
    dispatcher = build_dispatcher(
        SqliteProfileStore(db),
        SqliteUsageStore(db),
        build_adapters(ProviderSettings.from_env()),
        config,
    )
    request = AIRequest(user_id=user_id, message=message, feature_type=feature_type)
    try:
        response = asyncio.run(dispatcher.process(request))
    except (AuthError, QuotaExceededError) as e:
        console.print(f"[yellow]Request denied:[/] {str(e)}")
        sys.exit(EXIT_CODE_DENIED)
    except RouterError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(response.content)
    console.print(
        f"\n[dim]model={response.model_used} tokens={response.tokens_used} "
        f"cost={_format_cents(response.cost_cents)} cache_hit={response.cache_hit} "
        f"time={response.processing_time_ms:.0f}ms[/]"
    )
    if response.sources:
        for source in response.sources:
            console.print(f"[dim][{source.number}] {source.url}[/]")


@app.command()
def usage(
    user_id: Optional[str] = typer.Argument(None, help="Limit the report to one user"),
    period: str = typer.Option("month", "--period", "-p", help="day, week or month"),
    db: str = DB_OPTION,
):
    """Summarize recorded usage over a rolling window."""
    try:
        window = Period[period.upper()]
    except KeyError:
        console.print("[red]Error:[/] period must be day, week or month")
        sys.exit(EXIT_CODE_FAIL)

    try:
        summary = asyncio.run(UsageLedger(SqliteUsageStore(db)).summary(user_id, window))
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No AI usage data found[/]")
            console.print("Run `ai-cost-router init` and send requests with `ai-cost-router ask`.\n")
            sys.exit(EXIT_CODE_PASS)
        raise

    if summary.total_requests == 0:
        console.print("\n[bold yellow]No AI usage data found[/]\n")
        sys.exit(EXIT_CODE_PASS)

    console.print(f"\n[bold]AI Usage ({window.name.lower()})[/bold]")
    console.print("-" * 40)
    console.print(f"Requests: {summary.total_requests}")
    console.print(f"Total cost: {_format_cents(summary.total_cost_cents)}")
    console.print(f"Cache hit rate: {summary.cache_hit_rate:.1%}")
    console.print(f"Daily average: {summary.daily_average_requests:.1f} requests, "
                  f"{_format_cents(summary.daily_average_cost_cents)}")

    table = Table(title="By model")
    table.add_column("Model")
    table.add_column("Requests", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for model, bucket in sorted(summary.model_breakdown.items()):
        table.add_row(model, str(bucket["count"]), str(bucket["tokens"]), _format_cents(bucket["cost_cents"]))
    console.print(table)


if __name__ == "__main__":
    app()
