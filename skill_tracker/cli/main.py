"""
CLI interface for the skill usage tracker.

Initialises the event store, serves the API and prints analytics.
"""

import logging
import sqlite3
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from skill_tracker.config.loader import TrackerConfig, default_config, load_tracker_config
from skill_tracker.core.analytics import (
    get_recent_errors,
    get_retention_stats,
    get_summary,
    get_tool_stats,
)
from skill_tracker.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to a YAML configuration file"
)


def _load_config(path: Optional[str]) -> TrackerConfig:
    return load_tracker_config(path) if path else default_config()


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Skill usage tracker CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Skill usage tracker - Use --help to see available commands")


@app.command()
def init(config: Optional[str] = ConfigOption):
    """Create the usage event table and its indexes."""
    try:
        settings = _load_config(config)
        initialize_schema(settings.database.path, default_category=settings.tracking.default_category)
        console.print(f"[green]✓[/] Database initialized at {settings.database.path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def serve(
    config: Optional[str] = ConfigOption,
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on")
):
    """Run the tracking and analytics API."""
    import uvicorn

    from skill_tracker.api.app import create_app

    try:
        settings = _load_config(config)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    logging.basicConfig(
        level=settings.server.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    uvicorn.run(
        create_app(settings),
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_level=settings.server.log_level,
    )


@app.command()
def report(
    config: Optional[str] = ConfigOption,
    days: Optional[int] = typer.Option(
        None,
        "--days",
        "-d",
        min=1,
        help="Lookback window in days (defaults to the configured windows)"
    ),
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        min=1,
        help="Maximum number of recent errors to show"
    )
):
    """Print usage analytics for the configured event store."""
    try:
        settings = _load_config(config)
        db_path = settings.database.path
        windows = settings.analytics

        summary = get_summary(days or windows.summary_days, db_path=db_path)
        tools = get_tool_stats(days or windows.tools_days, db_path=db_path)
        retention = get_retention_stats(days or windows.retention_days, db_path=db_path)
        errors = get_recent_errors(
            days or windows.errors_days,
            limit or windows.errors_limit,
            db_path=db_path
        )
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No usage data found[/]")
            console.print("\nRun `skill-tracker init` to create the event store,")
            console.print("then track some skills and run this command again.\n")
            sys.exit(EXIT_CODE_PASS)
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_summary(summary)
    _display_tools(tools)
    _display_retention(retention)
    _display_errors(errors)
    sys.exit(EXIT_CODE_PASS)


def _display_summary(summary):
    console.print(f"\n[bold]Skill Usage Summary[/bold] ({summary['period']})")
    console.print("-" * 40)
    console.print(f"Total invocations: {summary['total_invocations']:,}")
    console.print(f"Unique users: {summary['unique_users']:,}")
    console.print(f"Avg duration: {summary['avg_duration_ms']}ms")
    console.print(f"Success rate: {summary['success_rate']}%")
    console.print(f"Error rate: {summary['error_rate']}%")


def _display_tools(tools):
    if not tools:
        console.print("\n[dim]No tool invocations in this window.[/]")
        return

    table = Table(title="Tools")
    table.add_column("Tool")
    table.add_column("Invocations", justify="right")
    table.add_column("Users", justify="right")
    table.add_column("Avg ms", justify="right")
    table.add_column("Success %", justify="right")
    table.add_column("Error %", justify="right")
    for row in tools:
        table.add_row(
            escape(row["tool_name"]),
            str(row["invocations"]),
            str(row["unique_users"]),
            str(row["avg_duration_ms"]),
            row["success_rate"],
            row["error_rate"],
        )
    console.print(table)


def _display_retention(retention):
    console.print(f"\n[bold]Weekly active users:[/bold] {retention['weekly_active_users']}")
    if not retention["daily_active_users"]:
        return

    table = Table(title=f"Daily active users ({retention['period']})")
    table.add_column("Date")
    table.add_column("Users", justify="right")
    for row in retention["daily_active_users"]:
        table.add_row(row["date"], str(row["dau"]))
    console.print(table)


def _display_errors(errors):
    if not errors["count"]:
        console.print("\n[dim]No recent errors.[/]")
        return

    table = Table(title=f"Recent errors ({errors['count']})")
    table.add_column("When")
    table.add_column("Tool")
    table.add_column("Type")
    table.add_column("Message")
    for row in errors["errors"]:
        table.add_row(
            row["timestamp"],
            escape(row["tool_name"]),
            escape(row["error_type"] or ""),
            escape(row["error_message"] or ""),
        )
    console.print(table)


if __name__ == "__main__":
    app()
