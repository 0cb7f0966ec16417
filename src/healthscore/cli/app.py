"""
Root Typer application for the healthscore CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from healthscore import __version__

app = Typer(
    name="healthscore",
    help="healthscore: database fleet health scoring engine.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"healthscore {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """healthscore CLI: manage collectors, runs, thresholds and scores."""


# ── Sub-command registration ─────────────────────────────────────────────

from healthscore.cli.collectors import app as collectors_app  # noqa: E402
from healthscore.cli.db import app as db_app  # noqa: E402
from healthscore.cli.runs import app as runs_app  # noqa: E402
from healthscore.cli.scores import app as scores_app  # noqa: E402
from healthscore.cli.serve import serve  # noqa: E402
from healthscore.cli.thresholds import app as thresholds_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(collectors_app, name="collectors", help="Collector definitions.")
app.add_typer(runs_app, name="runs", help="Execution record history.")
app.add_typer(scores_app, name="scores", help="Composite health scores.")
app.add_typer(thresholds_app, name="thresholds", help="Threshold rule administration.")
app.command("serve")(serve)
