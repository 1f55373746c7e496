"""One-time codes and teacher passwords."""

import logging
from datetime import timedelta
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import OneTimeCode, TeacherCredential
from database.repository import Repository

from .helpers import generate_code, hash_password, utcnow, verify_password

logger = logging.getLogger(__name__)


class CodeCheck(Enum):
    """Outcome of a one-time code verification."""
    OK = "ok"
    INVALID = "invalid"
    EXPIRED = "expired"
    LOCKED = "locked"


class LoginCheck(Enum):
    """Outcome of a password login."""
    OK = "ok"
    WRONG = "wrong"
    LOCKED = "locked"


class CredentialService:
    """Issues and verifies one-time codes; stores teacher password hashes."""

    def __init__(
        self,
        db: AsyncSession,
        ttl_seconds: int = 600,
        max_attempts: int = 3,
        max_login_attempts: int = 3,
        lockout_seconds: int = 900,
    ):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.max_login_attempts = max_login_attempts
        self.lockout_seconds = lockout_seconds
        self.codes = Repository(db, OneTimeCode)
        self.credentials = Repository(db, TeacherCredential)

    async def issue_code(self, purpose: str, reference: str, telegram_id: int) -> OneTimeCode:
        """Create a fresh code, invalidating earlier unused codes for the same purpose and reference."""
        await self.codes.update(
            {"purpose": purpose, "reference": reference, "used": False},
            {"used": True},
        )
        code = await self.codes.insert(
            code=generate_code(),
            purpose=purpose,
            reference=reference,
            telegram_id=telegram_id,
            expires_at=utcnow() + timedelta(seconds=self.ttl_seconds),
            attempts=0,
            used=False,
        )
        logger.info(f"Issued {purpose} code for {reference}")
        return code

    async def verify_code(self, purpose: str, reference: str, telegram_id: int, candidate: str) -> CodeCheck:
        """Check a code. Codes are single use and lock after too many wrong attempts."""
        record = await self.codes.find_one(
            purpose=purpose, reference=reference, telegram_id=telegram_id, used=False
        )
        if record is None:
            return CodeCheck.INVALID
        if record.expires_at < utcnow():
            record.used = True
            return CodeCheck.EXPIRED
        if record.attempts >= self.max_attempts:
            record.used = True
            return CodeCheck.LOCKED
        if record.code != candidate.strip():
            record.attempts += 1
            if record.attempts >= self.max_attempts:
                record.used = True
                logger.warning(f"{purpose} code for {reference} locked after {record.attempts} attempts")
                return CodeCheck.LOCKED
            return CodeCheck.INVALID
        record.used = True
        return CodeCheck.OK

    async def attempts_left(self, purpose: str, reference: str, telegram_id: int) -> int:
        record = await self.codes.find_one(
            purpose=purpose, reference=reference, telegram_id=telegram_id, used=False
        )
        if record is None:
            return 0
        return max(self.max_attempts - record.attempts, 0)

    async def set_password(self, teacher_id: str, password: str) -> TeacherCredential:
        credential = await self.credentials.find_one(teacher_id=teacher_id)
        if credential is None:
            credential = await self.credentials.insert(teacher_id=teacher_id, password_hash=hash_password(password))
        else:
            credential.password_hash = hash_password(password)
            credential.failed_logins = 0
            credential.locked_until = None
            credential.updated_at = utcnow()
        logger.info(f"Password set for teacher {teacher_id}")
        return credential

    async def check_password(self, teacher_id: str, password: str) -> bool:
        credential = await self.credentials.find_one(teacher_id=teacher_id)
        if credential is None:
            return False
        return verify_password(password, credential.password_hash)

    async def has_password(self, teacher_id: str) -> bool:
        return await self.credentials.count(teacher_id=teacher_id) > 0

    async def is_locked(self, teacher_id: str) -> bool:
        credential = await self.credentials.find_one(teacher_id=teacher_id)
        return credential is not None and credential.locked_until is not None and credential.locked_until > utcnow()

    async def attempt_login(self, teacher_id: str, password: str) -> Tuple[LoginCheck, int]:
        """
        Check a teacher password and return the outcome with the attempts left.

        Failures are counted per teacher ID across conversations. Reaching
        ``max_login_attempts`` locks the ID for ``lockout_seconds``; a correct
        password or a new password clears the count.
        """
        credential = await self.credentials.find_one(teacher_id=teacher_id)
        if credential is None:
            return LoginCheck.WRONG, 0
        now = utcnow()
        if credential.locked_until is not None and credential.locked_until > now:
            return LoginCheck.LOCKED, 0
        if verify_password(password, credential.password_hash):
            credential.failed_logins = 0
            credential.locked_until = None
            return LoginCheck.OK, self.max_login_attempts

        credential.failed_logins = (credential.failed_logins or 0) + 1
        if credential.failed_logins >= self.max_login_attempts:
            credential.failed_logins = 0
            credential.locked_until = now + timedelta(seconds=self.lockout_seconds)
            logger.warning(f"Login for teacher {teacher_id} locked for {self.lockout_seconds}s")
            return LoginCheck.LOCKED, 0
        return LoginCheck.WRONG, self.max_login_attempts - credential.failed_logins

    async def purge_expired(self, now: Optional[object] = None) -> int:
        """Delete used codes and codes past their expiry."""
        now = now or utcnow()
        used = await self.codes.delete(used=True)
        expired = await self.codes.find_many({"used": False})
        stale = [code.id for code in expired if code.expires_at < now]
        if stale:
            await self.codes.delete(id=stale)
        return used + len(stale)
