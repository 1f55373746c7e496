"""User management service."""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Student, User
from database.repository import Repository

from .errors import InvalidStateError, NotFoundError, PermissionDeniedError
from .helpers import utcnow

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("admin", "master_admin")


class UserService:
    """Service for chat users: roles, admins and parent-student links."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = Repository(db, User)
        self.students = Repository(db, Student)

    async def get_user(self, telegram_id: int) -> Optional[User]:
        """Get user by Telegram ID."""
        return await self.users.find_one(telegram_id=telegram_id)

    async def ensure_user(
        self,
        telegram_id: int,
        name: str,
        username: Optional[str] = None,
        master_ids: Iterable[int] = (),
    ) -> User:
        """Get or create the user for a chat, refreshing ``last_seen_at``."""
        user = await self.get_user(telegram_id)
        if user is None:
            user = await self.users.insert(
                telegram_id=telegram_id,
                name=name or "User",
                username=username,
                role="visitor",
                student_ids=[],
                pending_student_ids=[],
                subjects=[],
                activity_log=[],
            )
            logger.info(f"Created user for chat {telegram_id}")
        if telegram_id in set(master_ids) and user.role != "master_admin":
            user.role = "master_admin"
            logger.info(f"Chat {telegram_id} recognised as master admin")
        if username and user.username != username:
            user.username = username
        user.last_seen_at = utcnow()
        return user

    async def set_role(self, telegram_id: int, role: str) -> User:
        user = await self.get_user(telegram_id)
        if user is None:
            raise NotFoundError("User not found.")
        user.role = role
        logger.info(f"User {telegram_id} role set to {role}")
        return user

    async def list_by_role(self, roles, limit: Optional[int] = None, offset: int = 0) -> List[User]:
        roles = [roles] if isinstance(roles, str) else list(roles)
        return await self.users.find_many({"role": roles}, order_by="name", limit=limit, offset=offset)

    async def count_by_role(self, roles) -> int:
        roles = [roles] if isinstance(roles, str) else list(roles)
        return await self.users.count(role=roles)

    async def role_counts(self) -> Dict[str, int]:
        return await self.users.group_count("role")

    async def admin_chat_ids(self) -> List[int]:
        admins = await self.list_by_role(ADMIN_ROLES)
        return [admin.telegram_id for admin in admins]

    # Admins

    async def promote_admin(self, telegram_id: int) -> User:
        user = await self.get_user(telegram_id)
        if user is None:
            raise NotFoundError("User ID not found. The user must have interacted with the bot at least once.")
        if user.role in ADMIN_ROLES:
            raise InvalidStateError("User is already an admin.")
        user.role = "admin"
        logger.info(f"User {telegram_id} promoted to admin")
        return user

    async def demote_admin(self, actor_id: int, telegram_id: int, master_ids: Iterable[int] = ()) -> User:
        if actor_id == telegram_id:
            raise PermissionDeniedError("You cannot remove yourself.")
        user = await self.get_user(telegram_id)
        if user is None or user.role not in ADMIN_ROLES:
            raise NotFoundError("Admin not found.")
        if user.role == "master_admin" or telegram_id in set(master_ids):
            raise PermissionDeniedError("Master admins cannot be removed.")
        user.role = "visitor"
        logger.info(f"Admin {telegram_id} demoted by {actor_id}")
        return user

    # Parent links

    async def request_parent_link(self, telegram_id: int, name: str, student_id: str) -> Student:
        """Mark ``student_id`` as pending for this parent, creating the user if needed."""
        student = await self.students.find_one(student_id=student_id)
        if student is None:
            raise NotFoundError("Invalid student ID. Please try again.")
        user = await self.ensure_user(telegram_id, name)
        if (
            student.parent_id is not None
            or student.pending_parent_id is not None
            or student_id in (user.student_ids or [])
            or student_id in (user.pending_student_ids or [])
        ):
            raise InvalidStateError("This student is already linked or pending approval.")

        if user.pending_student_ids is None:
            user.pending_student_ids = []
        user.pending_student_ids.append(student_id)
        student.pending_parent_id = telegram_id
        logger.info(f"Parent {telegram_id} requested link to student {student_id}")
        return student

    async def approve_parent_link(self, telegram_id: int, student_id: str) -> Student:
        user = await self.get_user(telegram_id)
        student = await self.students.find_one(student_id=student_id)
        if user is None or student is None or student.pending_parent_id != telegram_id:
            raise NotFoundError("Request not found or already processed.")
        student.parent_id = telegram_id
        student.pending_parent_id = None
        if user.student_ids is None:
            user.student_ids = []
        if student_id not in user.student_ids:
            user.student_ids.append(student_id)
        if student_id in (user.pending_student_ids or []):
            user.pending_student_ids.remove(student_id)
        if user.role in ("visitor", "parent"):
            user.role = "parent"
        logger.info(f"Parent {telegram_id} linked to student {student_id}")
        return student

    async def deny_parent_link(self, telegram_id: int, student_id: str) -> Student:
        user = await self.get_user(telegram_id)
        student = await self.students.find_one(student_id=student_id)
        if user is None or student is None or student.pending_parent_id != telegram_id:
            raise NotFoundError("Request not found or already processed.")
        student.pending_parent_id = None
        if student_id in (user.pending_student_ids or []):
            user.pending_student_ids.remove(student_id)
        if user.role == "parent" and not user.student_ids and not user.pending_student_ids:
            user.role = "visitor"
        logger.info(f"Parent link {telegram_id} -> {student_id} denied")
        return student

    async def unbind_parent(self, telegram_id: int) -> int:
        """Remove every student link of a parent. Returns the number of students unbound."""
        user = await self.get_user(telegram_id)
        if user is None or user.role != "parent":
            raise NotFoundError("Parent not found or not a parent.")
        unbound = await self.students.update({"parent_id": telegram_id}, {"parent_id": None})
        await self.students.update({"pending_parent_id": telegram_id}, {"pending_parent_id": None})
        user.student_ids = []
        user.pending_student_ids = []
        logger.info(f"Parent {telegram_id} unbound from {unbound} students")
        return unbound

    async def detach_student(self, student: Student) -> None:
        """Drop a student from its parent's lists, demoting parents left without children."""
        for parent_id in {student.parent_id, student.pending_parent_id} - {None}:
            parent = await self.get_user(parent_id)
            if parent is None:
                continue
            if student.student_id in (parent.student_ids or []):
                parent.student_ids.remove(student.student_id)
            if student.student_id in (parent.pending_student_ids or []):
                parent.pending_student_ids.remove(student.student_id)
            if parent.role == "parent" and not parent.student_ids:
                parent.role = "visitor"

    async def students_for_parent(self, telegram_id: int) -> List[Student]:
        return await self.students.find_many({"parent_id": telegram_id}, order_by="name")
