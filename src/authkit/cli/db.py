"""Database management CLI commands."""

import asyncio

import typer
from rich.console import Console

from authkit.auth import Auth
from authkit.config import get_settings
from authkit.errors import AuthError
from authkit.logging import setup_logging

console = Console()
app = typer.Typer(help="Database management commands")


@app.command("init")
def init():
    """Create the authkit tables (safe to run repeatedly)."""
    settings = get_settings()
    setup_logging(settings)

    async def _init():
        auth = Auth.from_settings(settings)
        try:
            await auth.migrate()
        finally:
            await auth.close()

    console.print("[dim]Creating schema...[/dim]")
    try:
        asyncio.run(_init())
    except AuthError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e

    console.print("[green]Schema ready![/green]")
