"""
CLI utility helpers: output formatting and store wiring.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from healthscore.core.orm import SqlAlchemyHealthStore, create_health_engine, init_db
from healthscore.core.settings import HealthScoreSettings, get_settings

console = Console()
err_console = Console(stderr=True)


# ── Store helper ─────────────────────────────────────────────────────────


def open_store(
    database: str | None = None,
    settings: HealthScoreSettings | None = None,
    *,
    create: bool = False,
) -> SqlAlchemyHealthStore:
    """Open the configured store; ``--database`` overrides ``database_url``."""
    settings = settings or get_settings()
    engine = create_health_engine(database or settings.database_url, echo=settings.database_echo)
    if create:
        init_db(engine)
    return SqlAlchemyHealthStore(engine)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def fail(message: str, code: int = 1) -> NoReturn:
    """Print an error and exit non-zero."""
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=code)


def output_rows(
    rows: Iterable[dict[str, Any]],
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render a list of dicts as a Rich table or a JSON array."""
    rows = list(rows)
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def output_object(obj: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a single object as key-value pairs or a JSON object."""
    data = _to_dict(obj)
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
