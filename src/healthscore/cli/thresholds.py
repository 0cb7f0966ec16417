"""
CLI: ``healthscore thresholds``: threshold rule administration.
"""

from __future__ import annotations

import typer

from healthscore.cli.utils import console, fail, open_store, output_rows
from healthscore.scoring.thresholds import reset_thresholds

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_rules(
    collector: str = typer.Argument(..., help="Collector name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List a collector's rules in evaluation order."""
    store = open_store(database)
    if store.get_collector(collector) is None:
        fail(f"Collector not found: {collector}")
    rows = [
        {
            "order": r.evaluation_order,
            "name": r.name,
            "group": r.group,
            "operator": r.operator.value,
            "threshold": str(r.threshold_value),
            "default": None if r.default_value is None else str(r.default_value),
            "score": r.resulting_score,
            "action": r.action.value,
            "active": r.is_active,
        }
        for r in store.list_rules(collector)
    ]
    output_rows(rows, as_json=json_out, title=f"Rules: {collector}")


@app.command("reset")
def reset(
    collector: str = typer.Argument(..., help="Collector name"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Restore every rule of a collector to its default threshold."""
    store = open_store(database)
    if store.get_collector(collector) is None:
        fail(f"Collector not found: {collector}")
    count = reset_thresholds(store, collector)
    console.print(f"[green]Reset {count} rule(s)[/green] for {collector}")
