"""Tests for the cleanup worker."""

from datetime import date, timedelta

import pytest

from database import connection
from database.connection import get_db_context, init_db
from services import AttendanceService, CredentialService, FreelanceService, StudentService, TeacherService
from services.helpers import utcnow
from workers.batch_worker import purge_codes, purge_records
from workers.cleanup_worker import purge_old_records, run_cleanup_async, run_job


async def seed():
    async with get_db_context() as db:
        await StudentService(db).create_student("Amir", "5A")
        teacher = await TeacherService(db).create_teacher("Lim", ["Math"])
        offer = await FreelanceService(db).publish_offer(teacher.teacher_id, "Math", 50, 1, 1)

    today = date.today()
    async with get_db_context() as db:
        attendance = AttendanceService(db)
        await attendance.save("5A", today - timedelta(days=400), "admin", [])
        await attendance.save("5A", today, "admin", [])

        freelance = FreelanceService(db)
        old = await freelance.request_tutor(offer.id, 100)
        old.status = "accepted"
        old.resolved_at = utcnow() - timedelta(days=400)
        recent = await freelance.request_tutor(offer.id, 101)
        recent.status = "declined"
        recent.resolved_at = utcnow()
        await freelance.request_tutor(offer.id, 102)


class TestCleanupWorker:
    """Retention purge and full cleanup run."""

    @pytest.mark.asyncio
    async def test_purge_old_records(self, db, settings):
        await seed()
        removed = await purge_old_records(settings)
        assert removed == {"attendance": 1, "tutor_requests": 1}

        async with get_db_context() as session:
            assert await AttendanceService(session).count() == 1

    @pytest.mark.asyncio
    async def test_run_cleanup_async(self, db, settings, tmp_path):
        async with get_db_context() as session:
            await CredentialService(session, ttl_seconds=-1).issue_code("reset", "T1", 300)

        results = await run_cleanup_async(settings)
        assert results == {"codes": 1, "attendance": 0, "tutor_requests": 0, "export_files": 0}


class TestScheduledTasks:
    """Celery tasks each run on their own event loop."""

    def test_tasks_back_to_back_dispose_engine(self, tmp_path, monkeypatch):
        url = f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"
        monkeypatch.setattr(connection, "get_database_url", lambda: url)
        run_job(init_db)
        assert connection._engine is None

        assert purge_codes() == {"removed": 0}
        assert connection._engine is None
        assert purge_records() == {"attendance": 0, "tutor_requests": 0}
        assert connection._engine is None
