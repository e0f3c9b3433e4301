"""User management CLI commands."""

import asyncio

import typer
from rich.console import Console

from authkit.auth import Auth
from authkit.config import get_settings
from authkit.errors import AuthError, WeakPassword
from authkit.logging import setup_logging
from authkit.services.email import build_verification_link

console = Console()
app = typer.Typer(help="User management commands")


@app.command("create")
def create_user(
    email: str = typer.Argument(..., help="User email"),
    name: str | None = typer.Option(None, "--name", "-n", help="Display name"),
    password: str | None = typer.Option(
        None, "--password", "-p", help="Password (prompted when omitted)"
    ),
):
    """Register a new user."""
    settings = get_settings()
    setup_logging(settings)

    if password is None:
        password = typer.prompt("Password", hide_input=True, confirmation_prompt=True)

    async def _create():
        auth = Auth.from_settings(settings)
        try:
            return await auth.register(email, password, name=name)
        finally:
            await auth.close()

    try:
        user = asyncio.run(_create())
    except WeakPassword as e:
        console.print(f"[red]Error:[/red] {e.message} ({e.rule})")
        raise typer.Exit(1) from e
    except AuthError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e

    name_str = f" ({user.name})" if user.name else ""
    console.print(f"[green]Created user:[/green] {user.email}{name_str} [dim]{user.id}[/dim]")


@app.command("verify-link")
def verify_link(email: str = typer.Argument(..., help="User email")):
    """Issue an email verification token and print its link."""
    settings = get_settings()
    setup_logging(settings)

    async def _issue():
        auth = Auth.from_settings(settings)
        try:
            return await auth.resend_email_verification(email)
        finally:
            await auth.close()

    try:
        verification = asyncio.run(_issue())
    except AuthError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e

    link = build_verification_link(settings.app_url, verification.token)
    console.print(f"[green]Verification URL:[/green] {link}")
    console.print(f"[dim]Expires: {verification.expires_at}[/dim]")
