"""Tests for user and parent-link operations."""

import pytest

from database.connection import get_db_context
from services import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    StudentService,
    UserService,
)


async def make_user(telegram_id, name="User", role=None):
    async with get_db_context() as db:
        user = await UserService(db).ensure_user(telegram_id, name)
        if role:
            user.role = role
        return user


async def make_student(name="Amir", class_name="Grade 5"):
    async with get_db_context() as db:
        return await StudentService(db).create_student(name, class_name)


class TestUsers:
    """Account creation and roles."""

    @pytest.mark.asyncio
    async def test_ensure_user_creates_visitor(self, db):
        user = await make_user(100, "Nadia")
        assert user.role == "visitor"
        assert user.student_ids == []

        async with get_db_context() as session:
            again = await UserService(session).ensure_user(100, "Other", username="nadia")
            assert again.id == user.id
            assert again.username == "nadia"

    @pytest.mark.asyncio
    async def test_master_ids_promoted(self, db):
        async with get_db_context() as session:
            user = await UserService(session).ensure_user(900, "Boss", master_ids=[900])
        assert user.role == "master_admin"

    @pytest.mark.asyncio
    async def test_promote_and_demote_admin(self, db):
        await make_user(100)
        await make_user(200, role="admin")

        async with get_db_context() as session:
            service = UserService(session)
            promoted = await service.promote_admin(100)
            assert promoted.role == "admin"

        async with get_db_context() as session:
            service = UserService(session)
            with pytest.raises(InvalidStateError):
                await service.promote_admin(100)
            with pytest.raises(NotFoundError):
                await service.promote_admin(12345)

        async with get_db_context() as session:
            demoted = await UserService(session).demote_admin(200, 100)
            assert demoted.role == "visitor"

    @pytest.mark.asyncio
    async def test_demote_guards(self, db):
        await make_user(200, role="admin")
        await make_user(900, role="master_admin")
        async with get_db_context() as session:
            service = UserService(session)
            with pytest.raises(PermissionDeniedError):
                await service.demote_admin(200, 200)
            with pytest.raises(PermissionDeniedError):
                await service.demote_admin(200, 900, master_ids=[900])
            with pytest.raises(NotFoundError):
                await service.demote_admin(200, 300)

    @pytest.mark.asyncio
    async def test_role_queries(self, db):
        await make_user(1, "Ann", role="admin")
        await make_user(2, "Ben", role="parent")
        await make_user(3, "Cat", role="parent")
        await make_user(4, "Dan", role="master_admin")
        async with get_db_context() as session:
            service = UserService(session)
            assert [u.name for u in await service.list_by_role("parent")] == ["Ben", "Cat"]
            assert await service.count_by_role(["admin", "master_admin"]) == 2
            assert (await service.role_counts())["parent"] == 2
            assert sorted(await service.admin_chat_ids()) == [1, 4]


class TestParentLinks:
    """Parent requests, approval and unbinding."""

    @pytest.mark.asyncio
    async def test_request_and_approve(self, db):
        await make_user(100, "Mum")
        student = await make_student()

        async with get_db_context() as session:
            await UserService(session).request_parent_link(100, "Mum", student.student_id)

        async with get_db_context() as session:
            service = UserService(session)
            with pytest.raises(InvalidStateError):
                await service.request_parent_link(100, "Mum", student.student_id)

        async with get_db_context() as session:
            await UserService(session).approve_parent_link(100, student.student_id)

        async with get_db_context() as session:
            service = UserService(session)
            parent = await service.get_user(100)
            assert parent.role == "parent"
            assert parent.student_ids == [student.student_id]
            assert parent.pending_student_ids == []
            children = await service.students_for_parent(100)
            assert [c.student_id for c in children] == [student.student_id]

    @pytest.mark.asyncio
    async def test_request_unknown_student(self, db):
        await make_user(100)
        async with get_db_context() as session:
            with pytest.raises(NotFoundError):
                await UserService(session).request_parent_link(100, "Mum", "0000000000")

    @pytest.mark.asyncio
    async def test_deny_clears_pending(self, db):
        await make_user(100)
        student = await make_student()
        async with get_db_context() as session:
            await UserService(session).request_parent_link(100, "Mum", student.student_id)
        async with get_db_context() as session:
            await UserService(session).deny_parent_link(100, student.student_id)
        async with get_db_context() as session:
            service = UserService(session)
            assert (await service.get_user(100)).pending_student_ids == []
            with pytest.raises(NotFoundError):
                await service.approve_parent_link(100, student.student_id)

    @pytest.mark.asyncio
    async def test_unbind_parent(self, db):
        await make_user(100)
        student = await make_student()
        async with get_db_context() as session:
            await UserService(session).request_parent_link(100, "Mum", student.student_id)
        async with get_db_context() as session:
            await UserService(session).approve_parent_link(100, student.student_id)

        async with get_db_context() as session:
            assert await UserService(session).unbind_parent(100) == 1

        async with get_db_context() as session:
            service = UserService(session)
            assert (await service.get_user(100)).student_ids == []
            assert (await StudentService(session).get_student(student.student_id)).parent_id is None
            with pytest.raises(NotFoundError):
                await service.unbind_parent(12345)
