"""
CLI: ``healthscore runs``: execution record history.
"""

from __future__ import annotations

import typer

from healthscore.cli.utils import fail, open_store, output_object, output_rows

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_runs(
    collector: str = typer.Argument(..., help="Collector name"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List recent runs of a collector, newest first."""
    store = open_store(database)
    if store.get_collector(collector) is None:
        fail(f"Collector not found: {collector}")
    records = store.list_executions(collector, limit=limit)
    if json_out:
        output_rows((r.to_dict() for r in records), as_json=True)
        return
    rows = [
        {
            "id": r.id,
            "status": r.status.value,
            "trigger": r.trigger.value,
            "started_at": r.started_at.isoformat(),
            "duration_ms": r.duration_ms,
            "ok/err/skip": f"{r.success_count}/{r.error_count}/{r.skipped_count}",
            "error_summary": r.error_summary,
        }
        for r in records
    ]
    output_rows(rows, title=f"Runs: {collector}")


@app.command("show")
def show_run(
    execution_id: str = typer.Argument(..., help="Execution ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one execution record."""
    record = open_store(database).get_execution(execution_id)
    if record is None:
        fail(f"Execution not found: {execution_id}")
    output_object(record, as_json=json_out, title=f"Run: {execution_id}")
