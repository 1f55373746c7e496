"""Tests for student records and roster imports."""

import json

import pytest

from database.connection import get_db_context
from services import GradeService, NotFoundError, StudentService, TeacherService, UserService
from services.student_service import parse_student_file


async def make_parent(telegram_id, name="Parent"):
    async with get_db_context() as db:
        user = await UserService(db).ensure_user(telegram_id, name)
        user.role = "parent"


class TestParseStudentFile:
    """Uploaded roster formats."""

    def test_json_array(self):
        data = json.dumps([{"name": "Amir", "class": "5A"}, "junk"]).encode()
        assert parse_student_file(data, "students.json") == [{"name": "Amir", "class": "5A"}]

    def test_csv_with_header(self):
        data = b"\xef\xbb\xbfName,Class,ParentId\nAmir,5A,100\n"
        assert parse_student_file(data, "students.csv") == [{"name": "Amir", "class": "5A", "parentid": "100"}]

    def test_rejects_non_array_json(self):
        with pytest.raises(ValueError):
            parse_student_file(b'{"name": "Amir"}', "students.json")

    def test_rejects_empty_csv(self):
        with pytest.raises(ValueError):
            parse_student_file(b"name,class\n", "students.csv")


class TestStudentService:
    """Creating, editing and removing students."""

    @pytest.mark.asyncio
    async def test_create_student(self, db):
        async with get_db_context() as session:
            student = await StudentService(session).create_student("Amir", "5A")
        assert len(student.student_id) == 10 and student.student_id.isdigit()
        assert student.schedule == {"monday": "N/A", "tuesday": "N/A"}
        assert student.parent_id is None

    @pytest.mark.asyncio
    async def test_create_with_parent_promotes_visitor(self, db):
        async with get_db_context() as session:
            await UserService(session).ensure_user(100, "Mum")
        async with get_db_context() as session:
            student = await StudentService(session).create_student("Amir", "5A", parent_id=100)
        async with get_db_context() as session:
            parent = await UserService(session).get_user(100)
            assert parent.role == "parent"
            assert parent.student_ids == [student.student_id]

    @pytest.mark.asyncio
    async def test_import_students(self, db):
        await make_parent(100)
        records = [
            {"name": "Amir", "class": "5A", "parentId": "100"},
            {"name": "Bella", "class_name": "5B", "parent_id": "555"},
            {"name": "", "class": "5A"},
            {"name": "Chen"},
        ]
        async with get_db_context() as session:
            result = await StudentService(session).import_students(records)
        assert (result.added, result.skipped, result.unknown_parents) == (2, 2, ["555"])

        async with get_db_context() as session:
            service = StudentService(session)
            assert await service.count_students() == 2
            assert await service.class_names() == ["5A", "5B"]
            assert await service.parent_ids_for_class("5A") == [100]

    @pytest.mark.asyncio
    async def test_edit_student(self, db):
        await make_parent(100)
        async with get_db_context() as session:
            student = await StudentService(session).create_student("Amir", "5A")
        sid = student.student_id

        async with get_db_context() as session:
            service = StudentService(session)
            await service.rename_student(sid, "Amir Hakim")
            await service.move_student(sid, "6A")
            await service.set_parent(sid, 100)

        async with get_db_context() as session:
            service = StudentService(session)
            updated = await service.get_student(sid)
            assert (updated.name, updated.class_name, updated.parent_id) == ("Amir Hakim", "6A", 100)
            with pytest.raises(NotFoundError):
                await service.set_parent(sid, 4242)
            with pytest.raises(NotFoundError):
                await service.rename_student("0000000000", "Nobody")

    @pytest.mark.asyncio
    async def test_remove_student_cascades(self, db):
        await make_parent(100)
        async with get_db_context() as session:
            student = await StudentService(session).create_student("Amir", "5A", parent_id=100)
            teacher = await TeacherService(session).create_teacher("Cikgu Lim", ["Math"])
        async with get_db_context() as session:
            await TeacherService(session).link_student(teacher, student, "Math")
            await GradeService(session).add_grade(student.student_id, teacher.teacher_id, "Math", 90, "Quiz")

        async with get_db_context() as session:
            await StudentService(session).remove_student(student.student_id)

        async with get_db_context() as session:
            assert await StudentService(session).get_student(student.student_id) is None
            assert await GradeService(session).grades_for_student(student.student_id) == []
            assert not await TeacherService(session).teaches_student(teacher, student.student_id)
            parent = await UserService(session).get_user(100)
            assert parent.student_ids == []
            assert parent.role == "visitor"

    @pytest.mark.asyncio
    async def test_delete_class(self, db):
        async with get_db_context() as session:
            service = StudentService(session)
            await service.create_student("Amir", "5A")
            await service.create_student("Bella", "5A")
            await service.create_student("Chen", "5B")

        async with get_db_context() as session:
            removed = await StudentService(session).delete_class("5A")
        assert sorted(r["name"] for r in removed) == ["Amir", "Bella"]

        async with get_db_context() as session:
            service = StudentService(session)
            assert await service.class_names() == ["5B"]
            with pytest.raises(NotFoundError):
                await service.delete_class("5A")

    @pytest.mark.asyncio
    async def test_search(self, db):
        async with get_db_context() as session:
            service = StudentService(session)
            amir = await service.create_student("Amir", "5A")
            await service.create_student("Bella", "5A")

        async with get_db_context() as session:
            service = StudentService(session)
            assert [s.name for s in await service.search("ami")] == ["Amir"]
            assert [s.name for s in await service.search(amir.student_id)] == ["Amir"]
            assert len(await service.list_students(limit=1)) == 1
