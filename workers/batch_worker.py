"""Celery beat schedule for maintenance jobs."""

import logging
from typing import Any, Dict

from celery import Celery
from celery.schedules import crontab

from config.settings import get_settings

from .cleanup_worker import cleanup_export_files, purge_expired_codes, purge_old_records, run_cleanup, run_job

settings = get_settings()
celery_app = Celery("school_bot", broker=settings.redis_url, backend=settings.redis_url)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.school_timezone,
    enable_utc=True,
    beat_schedule={
        "purge-expired-codes": {
            "task": "workers.batch_worker.purge_codes",
            "schedule": crontab(minute="*/30"),
        },
        "purge-old-records": {
            "task": "workers.batch_worker.purge_records",
            "schedule": crontab(hour="2", minute="0"),  # Daily at 02:00 school time
        },
        "cleanup-export-files": {
            "task": "workers.batch_worker.cleanup_exports",
            "schedule": crontab(hour="3", minute="0"),
        },
    },
)

logger = logging.getLogger(__name__)


@celery_app.task
def purge_codes() -> Dict[str, Any]:
    """Delete used and expired one-time codes."""
    return {"removed": run_job(purge_expired_codes)}


@celery_app.task
def purge_records() -> Dict[str, Any]:
    """Apply the data retention window."""
    return run_job(purge_old_records)


@celery_app.task
def cleanup_exports() -> Dict[str, Any]:
    return {"removed": cleanup_export_files()}


@celery_app.task
def cleanup_all() -> Dict[str, Any]:
    logger.info("Running full cleanup")
    return run_cleanup()
