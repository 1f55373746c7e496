"""Tests for teacher profiles, registration and rosters."""

import pytest

from database.connection import get_db_context
from services import (
    CredentialService,
    DuplicateError,
    InvalidStateError,
    NotFoundError,
    StudentService,
    TeacherService,
    UserService,
)
from services.helpers import hash_password


async def make_teacher(name="Cikgu Lim", subjects=("Math",), telegram_id=None):
    async with get_db_context() as db:
        return await TeacherService(db).create_teacher(name, list(subjects), telegram_id=telegram_id)


class TestRegistration:
    """Self-registration and claiming a profile."""

    @pytest.mark.asyncio
    async def test_submit_and_approve(self, db):
        async with get_db_context() as session:
            await TeacherService(session).submit_registration(300, "Lim", ["Math", "Art"], hash_password("abc123"))

        async with get_db_context() as session:
            teacher = await TeacherService(session).approve_registration(300)

        async with get_db_context() as session:
            user = await UserService(session).get_user(300)
            assert user.role == "teacher"
            assert user.pending_registration is None
            assert user.subjects == ["Math", "Art"]
            assert await CredentialService(session).check_password(teacher.teacher_id, "abc123")
            assert (await TeacherService(session).get_by_chat(300)).teacher_id == teacher.teacher_id

    @pytest.mark.asyncio
    async def test_deny_registration(self, db):
        async with get_db_context() as session:
            await TeacherService(session).submit_registration(300, "Lim", ["Math"], hash_password("abc123"))
        async with get_db_context() as session:
            await TeacherService(session).deny_registration(300)
        async with get_db_context() as session:
            with pytest.raises(NotFoundError):
                await TeacherService(session).approve_registration(300)

    @pytest.mark.asyncio
    async def test_linked_chat_cannot_register_again(self, db):
        await make_teacher(telegram_id=300)
        async with get_db_context() as session:
            with pytest.raises(InvalidStateError):
                await TeacherService(session).submit_registration(300, "Lim", ["Math"], "x")

    @pytest.mark.asyncio
    async def test_claim_teacher(self, db):
        teacher = await make_teacher()
        async with get_db_context() as session:
            await TeacherService(session).claim_teacher(teacher.teacher_id, 300, "Lim")
        async with get_db_context() as session:
            assert (await UserService(session).get_user(300)).role == "teacher"
            with pytest.raises(InvalidStateError):
                await TeacherService(session).claim_teacher(teacher.teacher_id, 301, "Other")

    @pytest.mark.asyncio
    async def test_link_chat_releases_previous_chat(self, db):
        teacher = await make_teacher()
        async with get_db_context() as session:
            await TeacherService(session).claim_teacher(teacher.teacher_id, 300, "Lim")
        async with get_db_context() as session:
            service = TeacherService(session)
            await service.link_chat(await service.get_teacher(teacher.teacher_id), 301)
        async with get_db_context() as session:
            users = UserService(session)
            assert (await users.get_user(300)).role == "visitor"
            assert (await users.get_user(301)).role == "teacher"


class TestProfile:
    """Edits, bans, subjects and removal."""

    @pytest.mark.asyncio
    async def test_rename_and_ban(self, db):
        teacher = await make_teacher(telegram_id=300)
        async with get_db_context() as session:
            await UserService(session).ensure_user(300, "Lim")
        async with get_db_context() as session:
            service = TeacherService(session)
            await service.rename_teacher(teacher.teacher_id, "Lim Wei")
            assert (await service.toggle_ban(teacher.teacher_id)).banned is True
        async with get_db_context() as session:
            assert (await UserService(session).get_user(300)).name == "Lim Wei"
            assert (await TeacherService(session).toggle_ban(teacher.teacher_id)).banned is False

    @pytest.mark.asyncio
    async def test_subject_requests(self, db):
        teacher = await make_teacher()
        async with get_db_context() as session:
            service = TeacherService(session)
            current = await service.get_teacher(teacher.teacher_id)
            await service.request_subject(current, "Science")
            with pytest.raises(DuplicateError):
                await service.request_subject(current, "math")

        async with get_db_context() as session:
            approved = await TeacherService(session).approve_subject(teacher.teacher_id, "Science")
            assert approved.subjects == ["Math", "Science"]
            assert approved.pending_subjects == []

        async with get_db_context() as session:
            service = TeacherService(session)
            with pytest.raises(NotFoundError):
                await service.deny_subject(teacher.teacher_id, "Science")
            current = await service.get_teacher(teacher.teacher_id)
            await service.remove_subject(current, "Math")
            assert current.subjects == ["Science"]
            with pytest.raises(NotFoundError):
                await service.remove_subject(current, "Math")

    @pytest.mark.asyncio
    async def test_remove_teacher_demotes_user(self, db):
        teacher = await make_teacher()
        async with get_db_context() as session:
            await TeacherService(session).claim_teacher(teacher.teacher_id, 300, "Lim")
        async with get_db_context() as session:
            await TeacherService(session).remove_teacher(teacher.teacher_id)
        async with get_db_context() as session:
            assert await TeacherService(session).get_teacher(teacher.teacher_id) is None
            user = await UserService(session).get_user(300)
            assert (user.role, user.subjects) == ("visitor", [])
            with pytest.raises(NotFoundError):
                await TeacherService(session).remove_teacher(teacher.teacher_id)


class TestRosters:
    """Teacher-student links."""

    @pytest.mark.asyncio
    async def test_link_and_query(self, db):
        teacher = await make_teacher(subjects=["Math", "Art"])
        async with get_db_context() as session:
            users = UserService(session)
            await users.ensure_user(100, "Mum")
            students = StudentService(session)
            amir = await students.create_student("Amir", "5A", parent_id=100)
            bella = await students.create_student("Bella", "5B")

        async with get_db_context() as session:
            service = TeacherService(session)
            assert await service.link_student(teacher, amir, "Math") is True
            assert await service.link_student(teacher, bella, "Math") is True
            assert await service.link_student(teacher, amir, "Art") is True

        async with get_db_context() as session:
            service = TeacherService(session)
            assert await service.link_student(teacher, amir, "Math") is False
            grouped = await service.students_by_subject(teacher)
            assert {s: [st.name for st in group] for s, group in grouped.items()} == {
                "Art": ["Amir"],
                "Math": ["Amir", "Bella"],
            }
            assert await service.teaches_student(teacher, amir.student_id)
            assert await service.class_names(teacher) == ["5A", "5B"]
            assert await service.parent_ids_for_subject(teacher, "Math") == [100]
            assert await service.parent_ids_for_subject(teacher, "Art") == [100]

    @pytest.mark.asyncio
    async def test_list_and_search(self, db):
        await make_teacher("Cikgu Lim")
        await make_teacher("Puan Aisyah")
        async with get_db_context() as session:
            service = TeacherService(session)
            assert await service.count_teachers() == 2
            assert [t.name for t in await service.list_teachers()] == ["Cikgu Lim", "Puan Aisyah"]
            assert [t.name for t in await service.search("aisy")] == ["Puan Aisyah"]
