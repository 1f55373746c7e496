"""Tests for outbound notifications and export files."""

import os
import time
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram.error import BadRequest, Forbidden, NetworkError
from tenacity import wait_none

from services import Delivery, DeliveryReport, ExportService, NotificationService


def make_notifier(side_effect=None, oversight=()):
    transport = SimpleNamespace(send_text=AsyncMock(side_effect=side_effect), send_document=AsyncMock())
    return NotificationService(transport, oversight, wait=wait_none()), transport


class TestNotificationService:
    """Delivery outcomes and retries."""

    @pytest.mark.asyncio
    async def test_send_ok(self):
        notifier, transport = make_notifier()
        assert await notifier.send(1, "hi") == Delivery.SENT
        transport.send_text.assert_awaited_once_with(1, "hi", reply_markup=None)

    @pytest.mark.asyncio
    async def test_blocked_user(self):
        notifier, _ = make_notifier(Forbidden("bot was blocked by the user"))
        assert await notifier.send(1, "hi") == Delivery.BLOCKED

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self):
        notifier, transport = make_notifier(BadRequest("chat not found"))
        assert await notifier.send(1, "hi") == Delivery.FAILED
        assert transport.send_text.await_count == 1

    @pytest.mark.asyncio
    async def test_network_error_retried(self):
        notifier, transport = make_notifier([NetworkError("timeout"), None])
        assert await notifier.send(1, "hi") == Delivery.SENT
        assert transport.send_text.await_count == 2

    @pytest.mark.asyncio
    async def test_network_error_gives_up(self):
        notifier, transport = make_notifier(NetworkError("down"))
        assert await notifier.send(1, "hi") == Delivery.FAILED
        assert transport.send_text.await_count == 3

    @pytest.mark.asyncio
    async def test_broadcast_dedupes_and_tallies(self):
        async def send_text(chat_id, text, reply_markup=None):
            if chat_id == 2:
                raise Forbidden("blocked")
            if chat_id == 3:
                raise BadRequest("chat not found")

        notifier, transport = make_notifier(send_text)
        report = await notifier.broadcast([1, 2, 3, 1], "hello")
        assert (report.sent, report.blocked, report.failed, report.failed_ids) == (1, 1, 1, [3])
        assert report.total == 3
        assert transport.send_text.await_count == 3
        assert "Delivered: 1" in report.summary()

    @pytest.mark.asyncio
    async def test_notify_oversight(self):
        notifier, transport = make_notifier(oversight=[900, 901])
        report = await notifier.notify_oversight("log", document=b"data", filename="log.txt")
        assert report.sent == 2
        assert transport.send_document.await_count == 2

        silent, _ = make_notifier()
        assert (await silent.notify_oversight("log")).total == 0

    def test_report_add(self):
        report = DeliveryReport()
        report.add(5, Delivery.FAILED)
        assert report.failed_ids == [5]


class TestExportService:
    """Export files and renderers."""

    def test_write_and_cleanup(self, tmp_path):
        exports = ExportService(str(tmp_path / "exports"))
        path = exports.write("class log 5A", "content")
        assert path.read_text(encoding="utf-8") == "content"
        assert path.name.startswith("class_log_5A_") and path.suffix == ".txt"

        old = time.time() - 3600
        os.utime(path, (old, old))
        assert exports.cleanup(60) == 1
        assert not path.exists()

    def test_cleanup_missing_dir(self, tmp_path):
        assert ExportService(str(tmp_path / "none")).cleanup(60) == 0

    def test_grade_report(self):
        student = SimpleNamespace(name="Amir", student_id="0000000001", class_name="5A")
        grades = {
            "Math": [
                SimpleNamespace(created_at=datetime(2024, 3, 4), score=70, purpose="Quiz", comments=None),
                SimpleNamespace(created_at=datetime(2024, 3, 5), score=81, purpose="Test", comments="Good"),
            ]
        }
        report = ExportService.grade_report(student, grades)
        assert "Student: Amir (0000000001)" in report
        assert "Test - Good" in report
        assert "Average: 75.5" in report
        assert "No grades recorded." in ExportService.grade_report(student, {})

    def test_attendance_csv(self):
        register = SimpleNamespace(
            date=date(2024, 3, 4),
            class_name="5A",
            records=[{"student_id": "1", "name": "Amir", "status": "absent"}],
        )
        lines = ExportService.attendance_csv([register]).splitlines()
        assert lines == ["date,class,student_id,name,status", "2024-03-04,5A,1,Amir,absent"]

    def test_activity_and_deletion_logs(self):
        log = ExportService.activity_log([
            {"at": "2024-03-04T10:00:00", "action": "add_student", "detail": "Amir", "admin_id": 1, "admin_name": "Ann"},
        ])
        assert "Ann (1) add_student: Amir" in log

        deletion = ExportService.class_deletion_log("5A", [{"student_id": "1", "name": "Amir", "parent_id": None}], 7)
        assert "Deleted by: 7" in deletion
        assert "1  Amir  parent=N/A" in deletion
