"""
CLI: ``healthscore collectors``: collector definitions and bookkeeping.
"""

from __future__ import annotations

import typer

from healthscore.cli.utils import open_store, output_rows

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_collectors(
    enabled_only: bool = typer.Option(False, "--enabled", help="Only enabled collectors"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List collectors with their last-run bookkeeping."""
    store = open_store(database)
    rows = [
        {
            "name": c.name,
            "enabled": c.is_enabled,
            "interval_s": c.effective_interval_seconds,
            "weight": str(c.weight),
            "parallel": c.effective_parallel_degree,
            "last_run": c.last_execution_at.isoformat() if c.last_execution_at else None,
            "last_ms": c.last_execution_duration_ms,
            "last_instances": c.last_instances_processed,
            "last_error": c.last_error,
        }
        for c in store.list_collectors(enabled_only=enabled_only)
    ]
    output_rows(rows, as_json=json_out, title="Collectors")
