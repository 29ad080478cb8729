# orchestration/cli_runner.py
"""Command-line runner for inspecting and draining the sync queue."""

from __future__ import annotations

import asyncio

import structlog
from config import settings
from core.db_manager import Neo4jManager
from data_access.remote_store import Neo4jRemoteStore
from rich.console import Console
from rich.table import Table
from storage.local_store import LocalStore
from story_state.models import SyncJob
from utils.logging import setup_logging

from orchestration.sync_engine import SyncEngine

logger = structlog.get_logger(__name__)


def render_status(jobs: list[SyncJob], console: Console | None = None) -> None:
    """Print pending sync jobs as a table."""
    console = console or Console()
    if not jobs:
        console.print("No pending sync jobs.")
        return
    table = Table(title=f"Pending sync jobs ({len(jobs)})")
    table.add_column("Story")
    table.add_column("Chapter")
    table.add_column("Delta", justify="center")
    table.add_column("Retries", justify="right")
    for job in jobs:
        table.add_row(
            job.story_key,
            job.chapter_key,
            "yes" if job.delta is not None else "no",
            str(job.retry_count),
        )
    console.print(table)


async def _flush_once(engine: SyncEngine, db: Neo4jManager) -> None:
    try:
        await db.connect()
        await engine.remote_store.ensure_schema()
        engine.restore()
        await engine.flush()
        await engine.aclose()
    finally:
        await db.close()
    logger.info(
        "Sync queue flush finished",
        remaining=len(engine),
        dropped=engine.dropped_count,
    )


def run(status: bool, flush: bool, store_dir: str | None = None) -> None:
    """Show and optionally drain the persisted sync queue."""
    if store_dir:
        settings.LOCAL_STORE_DIR = store_dir
    setup_logging()

    local_store = LocalStore(settings.LOCAL_STORE_DIR)
    db = Neo4jManager()
    engine = SyncEngine(
        remote_store=Neo4jRemoteStore(db),
        local_store=local_store,
        is_ready=lambda: db.is_connected,
    )

    try:
        if flush:
            asyncio.run(_flush_once(engine, db))
        if status or not flush:
            engine.restore()
            render_status(engine.pending_jobs)
    except KeyboardInterrupt:
        logger.info("Sync runner shutting down gracefully due to KeyboardInterrupt...")
    except Exception as main_err:  # pragma: no cover - entry point catch
        logger.critical(
            "Sync runner encountered an unhandled exception: %s",
            main_err,
            exc_info=True,
        )