"""
CLI: ``healthscore db``: database management commands.
"""

from __future__ import annotations

import typer

from healthscore.cli.utils import console, open_store

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLAlchemy URL"),
) -> None:
    """Initialise database schema (create tables)."""
    store = open_store(database, create=True)
    console.print(f"[green]Tables ready[/green] at {store.engine.url.render_as_string(hide_password=True)}")
