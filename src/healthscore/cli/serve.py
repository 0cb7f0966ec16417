"""
CLI: ``healthscore serve``: run the collector scheduler in the foreground.
"""

from __future__ import annotations

import asyncio

import typer

from healthscore.cli.utils import console, fail, open_store
from healthscore.collection.adapter import load_adapter
from healthscore.core.errors import ConfigurationError
from healthscore.core.logging import configure_logging
from healthscore.core.settings import get_settings
from healthscore.scheduling.service import build_scheduler


async def _serve(scheduler, stop_after: float | None) -> None:
    scheduler.start()
    try:
        if stop_after is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(stop_after)
    finally:
        await scheduler.stop(cancel_running=True)


def serve(
    adapter: str | None = typer.Option(None, "--adapter", "-a", help="Adapter import path (module:attr)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    tick_seconds: float | None = typer.Option(None, "--tick", help="Scheduler tick interval"),
    stop_after: float | None = typer.Option(None, "--stop-after", help="Exit after N seconds"),
) -> None:
    """Run every enabled collector on its interval until interrupted."""
    settings = get_settings()
    configure_logging(settings.log_level, json_format=settings.log_format == "json")

    path = adapter or settings.adapter
    if not path:
        fail("No adapter configured (use --adapter or HEALTHSCORE_ADAPTER)")
    try:
        source = load_adapter(path)
    except ConfigurationError as e:
        fail(e.message)

    if tick_seconds is not None:
        settings = settings.model_copy(update={"scheduler_tick_seconds": tick_seconds})

    store = open_store(database, settings, create=True)
    scheduler = build_scheduler(store, source, settings=settings)

    console.print(
        f"[bold green]Scheduler running[/bold green] "
        f"(tick={settings.scheduler_tick_seconds}s, adapter={path})"
    )
    try:
        asyncio.run(_serve(scheduler, stop_after))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
