"""
CLI commands for the telemetry schema
"""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from tagtrail.storage.database import dispose_engine
from tagtrail.storage.migrations import SchemaReport, ensure_columns, validate_schema

console = Console()

db_app = typer.Typer(help="Inspect and migrate the telemetry schema")


async def _run_ensure_columns():
    try:
        return await ensure_columns()
    finally:
        await dispose_engine()


async def _run_validate_schema() -> SchemaReport:
    try:
        return await validate_schema()
    finally:
        await dispose_engine()


@db_app.command("ensure-columns")
def ensure_columns_command():
    """
    Create missing tables, telemetry columns and indexes (idempotent)
    """
    try:
        applied = asyncio.run(_run_ensure_columns())
    except Exception as e:
        console.print(f"[red]Migration failed:[/red] {str(e)}")
        raise typer.Exit(code=1)

    if not applied:
        console.print("[green]Schema is up to date[/green]")
        return

    for change in applied:
        console.print(f"[green]+[/green] {change}")
    console.print(f"[green]Applied {len(applied)} changes[/green]")


@db_app.command("validate")
def validate_command():
    """
    Check that every telemetry column and index exists; exit 1 otherwise
    """
    try:
        report = asyncio.run(_run_validate_schema())
    except Exception as e:
        console.print(f"[red]Validation failed:[/red] {str(e)}")
        raise typer.Exit(code=1)

    if report.ok:
        console.print("[green]All telemetry columns and indexes present[/green]")
        return

    table = Table(title="Missing schema objects")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="red")
    for column in report.missing_columns:
        table.add_row("column", column)
    for index in report.missing_indexes:
        table.add_row("index", index)
    console.print(table)
    console.print("[dim]Run: tagtrail db ensure-columns[/dim]")
    raise typer.Exit(code=1)
