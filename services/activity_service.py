"""Admin activity history."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import User
from database.repository import Repository

from .helpers import utcnow

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("admin", "master_admin")


class ActivityService:
    """Appends capped activity entries to admin records."""

    def __init__(self, db: AsyncSession, cap: int = 200):
        self.db = db
        self.cap = cap
        self.users = Repository(db, User)

    async def record(self, admin_chat_id: int, action: str, detail: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Append an entry to the admin's log. Non-admin actors are ignored."""
        admin = await self.users.find_one(telegram_id=admin_chat_id)
        if admin is None or admin.role not in ADMIN_ROLES:
            return None
        entry = {
            "at": utcnow().isoformat(timespec="seconds"),
            "action": action,
            "detail": detail or "",
        }
        log = list(admin.activity_log or [])
        log.append(entry)
        admin.activity_log = log[-self.cap:]
        return entry

    async def history(self, admin_chat_id: int) -> List[Dict[str, Any]]:
        """Entries for one admin, newest first."""
        admin = await self.users.find_one(telegram_id=admin_chat_id)
        if admin is None:
            return []
        return list(reversed(admin.activity_log or []))

    async def recent(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Entries across all admins, newest first, tagged with the admin."""
        admins = await self.users.find_many({"role": list(ADMIN_ROLES)})
        entries = []
        for admin in admins:
            for entry in admin.activity_log or []:
                entries.append({**entry, "admin_id": admin.telegram_id, "admin_name": admin.name})
        entries.sort(key=lambda e: e["at"], reverse=True)
        return entries[:limit] if limit else entries
