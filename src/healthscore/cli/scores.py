"""
CLI: ``healthscore scores``: composite health scores.
"""

from __future__ import annotations

import typer

from healthscore.cli.utils import console, fail, open_store, output_object, output_rows

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_score(
    instance: str = typer.Argument(..., help="Instance name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the latest composite score of an instance."""
    composite = open_store(database).latest_composite(instance)
    if composite is None:
        fail(f"No composite score for instance: {instance}")
    if json_out:
        output_object(composite, as_json=True)
        return
    console.print(
        f"[bold]{composite.instance_name}[/bold]  score={composite.score}  "
        f"status={composite.status}  computed_at={composite.computed_at.isoformat()}"
    )
    output_rows(
        [
            {
                "category": category,
                "score": score,
                "contribution": composite.contributions.get(category),
            }
            for category, score in sorted(composite.category_scores.items())
        ],
        title="Categories",
    )


@app.command("history")
def history(
    instance: str = typer.Argument(..., help="Instance name"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List past composite scores of an instance, newest first."""
    composites = open_store(database).list_composites(instance, limit=limit)
    rows = [
        {"computed_at": c.computed_at.isoformat(), "score": c.score, "status": c.status}
        for c in composites
    ]
    output_rows(rows, as_json=json_out, title=f"Scores: {instance}")
