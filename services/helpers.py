"""Small helpers shared by the services."""

import hashlib
import hmac
import secrets
from datetime import datetime, timezone, date
from typing import Awaitable, Callable

import pytz


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def school_today(tz_name: str) -> date:
    """Current date in the school's timezone."""
    return datetime.now(pytz.timezone(tz_name)).date()


async def generate_unique_id(exists: Callable[[str], Awaitable[bool]], digits: int = 10) -> str:
    """Random numeric ID that ``exists`` reports as unused."""
    low = 10 ** (digits - 1)
    while True:
        candidate = str(low + secrets.randbelow(9 * low))
        if not await exists(candidate):
            return candidate


def generate_code(digits: int = 6) -> str:
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(9 * low))


def hash_password(password: str) -> str:
    """SHA-256 hex digest of the password."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_password(password: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(password), password_hash)
