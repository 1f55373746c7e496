"""Tests for one-time codes and teacher passwords."""

import pytest

from database.connection import get_db_context
from services import CodeCheck, CredentialService, LoginCheck
from services.helpers import hash_password, verify_password


class TestOneTimeCodes:
    """Issue, verify, lock and purge."""

    @pytest.mark.asyncio
    async def test_correct_code_is_single_use(self, db):
        async with get_db_context() as session:
            code = await CredentialService(session).issue_code("reset", "T1", 300)
        assert len(code.code) == 6 and code.code.isdigit()

        async with get_db_context() as session:
            service = CredentialService(session)
            assert await service.verify_code("reset", "T1", 300, f" {code.code} ") == CodeCheck.OK
            assert await service.verify_code("reset", "T1", 300, code.code) == CodeCheck.INVALID

    @pytest.mark.asyncio
    async def test_code_bound_to_chat(self, db):
        async with get_db_context() as session:
            code = await CredentialService(session).issue_code("reset", "T1", 300)
        async with get_db_context() as session:
            assert await CredentialService(session).verify_code("reset", "T1", 301, code.code) == CodeCheck.INVALID

    @pytest.mark.asyncio
    async def test_locks_after_max_attempts(self, db):
        async with get_db_context() as session:
            code = await CredentialService(session, max_attempts=2).issue_code("reset", "T1", 300)

        async with get_db_context() as session:
            service = CredentialService(session, max_attempts=2)
            assert await service.verify_code("reset", "T1", 300, "wrong") == CodeCheck.INVALID
            assert await service.attempts_left("reset", "T1", 300) == 1
            assert await service.verify_code("reset", "T1", 300, "wrong") == CodeCheck.LOCKED

        async with get_db_context() as session:
            service = CredentialService(session, max_attempts=2)
            assert await service.verify_code("reset", "T1", 300, code.code) == CodeCheck.INVALID
            assert await service.attempts_left("reset", "T1", 300) == 0

    @pytest.mark.asyncio
    async def test_expired_code(self, db):
        async with get_db_context() as session:
            code = await CredentialService(session, ttl_seconds=-1).issue_code("reset", "T1", 300)
        async with get_db_context() as session:
            assert await CredentialService(session).verify_code("reset", "T1", 300, code.code) == CodeCheck.EXPIRED

    @pytest.mark.asyncio
    async def test_reissue_invalidates_previous(self, db):
        async with get_db_context() as session:
            service = CredentialService(session)
            first = await service.issue_code("reset", "T1", 300)
            second = await service.issue_code("reset", "T1", 300)

        async with get_db_context() as session:
            service = CredentialService(session)
            if first.code != second.code:
                assert await service.verify_code("reset", "T1", 300, first.code) == CodeCheck.INVALID
            assert await service.verify_code("reset", "T1", 300, second.code) == CodeCheck.OK

    @pytest.mark.asyncio
    async def test_purge_expired(self, db):
        async with get_db_context() as session:
            await CredentialService(session, ttl_seconds=-1).issue_code("reset", "T1", 300)
            await CredentialService(session).issue_code("admin", "T2", 301)
        async with get_db_context() as session:
            assert await CredentialService(session).purge_expired() == 1


class TestPasswords:
    """Password hashes."""

    def test_hash_is_sha256_hex(self):
        digest = hash_password("abc123")
        assert len(digest) == 64
        assert verify_password("abc123", digest)
        assert not verify_password("abc124", digest)

    @pytest.mark.asyncio
    async def test_set_and_check(self, db):
        async with get_db_context() as session:
            service = CredentialService(session)
            assert not await service.has_password("T1")
            await service.set_password("T1", "abc123")

        async with get_db_context() as session:
            service = CredentialService(session)
            assert await service.has_password("T1")
            assert await service.check_password("T1", "abc123")
            assert not await service.check_password("T1", "nope")
            await service.set_password("T1", "xyz789")

        async with get_db_context() as session:
            assert await CredentialService(session).check_password("T1", "xyz789")
            assert not await CredentialService(session).check_password("T2", "xyz789")


class TestLoginLockout:
    """Failed logins are counted per teacher ID."""

    @pytest.mark.asyncio
    async def test_lock_after_max_attempts(self, db):
        async with get_db_context() as session:
            await CredentialService(session).set_password("T1", "abc123")

        for expected in ((LoginCheck.WRONG, 1), (LoginCheck.LOCKED, 0)):
            async with get_db_context() as session:
                service = CredentialService(session, max_login_attempts=2)
                assert await service.attempt_login("T1", "nope") == expected

        async with get_db_context() as session:
            service = CredentialService(session, max_login_attempts=2)
            assert await service.is_locked("T1")
            assert await service.attempt_login("T1", "abc123") == (LoginCheck.LOCKED, 0)

    @pytest.mark.asyncio
    async def test_lock_expires(self, db):
        async with get_db_context() as session:
            await CredentialService(session).set_password("T1", "abc123")
        async with get_db_context() as session:
            service = CredentialService(session, max_login_attempts=1, lockout_seconds=-1)
            assert await service.attempt_login("T1", "nope") == (LoginCheck.LOCKED, 0)
        async with get_db_context() as session:
            service = CredentialService(session, max_login_attempts=1)
            assert not await service.is_locked("T1")
            assert await service.attempt_login("T1", "abc123") == (LoginCheck.OK, 1)

    @pytest.mark.asyncio
    async def test_success_and_new_password_clear_failures(self, db):
        async with get_db_context() as session:
            await CredentialService(session).set_password("T1", "abc123")
        async with get_db_context() as session:
            service = CredentialService(session)
            assert await service.attempt_login("T1", "nope") == (LoginCheck.WRONG, 2)
            assert await service.attempt_login("T1", "nope") == (LoginCheck.WRONG, 1)
            await service.set_password("T1", "xyz789")
            assert await service.attempt_login("T1", "nope") == (LoginCheck.WRONG, 2)
            assert await service.attempt_login("T1", "xyz789") == (LoginCheck.OK, 3)
            assert await service.attempt_login("T1", "nope") == (LoginCheck.WRONG, 2)

    @pytest.mark.asyncio
    async def test_unknown_teacher(self, db):
        async with get_db_context() as session:
            assert await CredentialService(session).attempt_login("T9", "abc123") == (LoginCheck.WRONG, 0)
