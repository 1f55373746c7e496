"""Cleanup worker for maintenance tasks."""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy import delete

from config.settings import Settings, get_settings
from database.connection import close_db, get_db_context
from database.models import Attendance, TutorRequest
from services import CredentialService, ExportService
from services.helpers import utcnow

logger = logging.getLogger(__name__)

EXPORT_MAX_AGE_SECONDS = 24 * 60 * 60

T = TypeVar("T")


def run_job(job: Callable[..., Awaitable[T]], *args: Any) -> T:
    """
    Run an async job on a fresh event loop and dispose the engine afterwards.

    Pooled asyncpg connections are bound to the loop that opened them, so no
    engine may outlive the ``asyncio.run`` call that created it.
    """
    async def runner() -> T:
        try:
            return await job(*args)
        finally:
            await close_db()

    return asyncio.run(runner())


async def purge_expired_codes() -> int:
    """Delete used and expired one-time codes."""
    async with get_db_context() as db:
        removed = await CredentialService(db).purge_expired()
    logger.info(f"Purged {removed} one-time codes")
    return removed


async def purge_old_records(settings: Optional[Settings] = None) -> Dict[str, int]:
    """Delete attendance snapshots and closed tutor requests past the retention window."""
    settings = settings or get_settings()
    cutoff = utcnow() - timedelta(days=settings.data_retention_days)
    async with get_db_context() as db:
        attendance = await db.execute(delete(Attendance).where(Attendance.date < cutoff.date()))
        requests = await db.execute(
            delete(TutorRequest).where(
                TutorRequest.status != "pending",
                TutorRequest.resolved_at.is_not(None),
                TutorRequest.resolved_at < cutoff,
            )
        )
    removed = {
        "attendance": attendance.rowcount or 0,
        "tutor_requests": requests.rowcount or 0,
    }
    logger.info(f"Retention purge older than {settings.data_retention_days} days: {removed}")
    return removed


def cleanup_export_files(export_dir: Optional[str] = None, max_age_seconds: int = EXPORT_MAX_AGE_SECONDS) -> int:
    """Remove generated export files older than ``max_age_seconds``."""
    return ExportService(export_dir or get_settings().export_dir).cleanup(max_age_seconds)


async def run_cleanup_async(settings: Optional[Settings] = None) -> Dict[str, int]:
    """Run all cleanup tasks."""
    settings = settings or get_settings()
    logger.info("Starting cleanup worker")
    results = {"codes": await purge_expired_codes()}
    results.update(await purge_old_records(settings))
    results["export_files"] = cleanup_export_files(settings.export_dir)
    logger.info(f"Cleanup complete: {results}")
    return results


def run_cleanup() -> Dict[str, int]:
    """Synchronous entry point for schedulers."""
    return run_job(run_cleanup_async)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_cleanup()
