"""School System Background Workers."""

from .cleanup_worker import run_cleanup, run_cleanup_async, run_job

__all__ = ["run_cleanup", "run_cleanup_async", "run_job"]
