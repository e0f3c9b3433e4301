"""Maintenance CLI commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from authkit.auth import Auth
from authkit.config import get_settings
from authkit.errors import AuthError
from authkit.logging import setup_logging

console = Console()
app = typer.Typer(help="Maintenance and cleanup commands")


@app.command("cleanup")
def cleanup():
    """Delete expired sessions and verification tokens."""
    settings = get_settings()
    setup_logging(settings)

    async def _cleanup():
        auth = Auth.from_settings(settings)
        try:
            return await auth.cleanup_expired()
        finally:
            await auth.close()

    console.print("[cyan]Removing expired sessions and tokens...[/cyan]")
    try:
        result = asyncio.run(_cleanup())
    except AuthError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e

    table = Table(title="Expiry Cleanup Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Cutoff", result["cutoff"])
    table.add_row("Sessions Deleted", str(result["sessions_deleted"]))
    table.add_row("Tokens Deleted", str(result["tokens_deleted"]))

    console.print(table)
