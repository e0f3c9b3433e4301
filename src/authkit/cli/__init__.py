"""CLI commands using Typer."""

import typer

from authkit.cli.db import app as db_app
from authkit.cli.maintenance import app as maintenance_app
from authkit.cli.users import app as users_app

app = typer.Typer(name="authkit", help="AuthKit CLI")

# Register sub-apps
app.add_typer(db_app, name="db")
app.add_typer(users_app, name="users")
app.add_typer(maintenance_app, name="maintenance")


@app.command()
def version():
    """Show version information."""
    from authkit import __version__

    typer.echo(f"AuthKit v{__version__}")


if __name__ == "__main__":
    app()
