"""Teacher profiles, subjects and class rosters."""

import logging
from typing import Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    FreelanceOffer,
    Grade,
    Student,
    Teacher,
    TeacherCredential,
    TeacherStudent,
    TutorRequest,
)
from database.repository import Repository

from .errors import DuplicateError, InvalidStateError, NotFoundError
from .helpers import generate_unique_id, utcnow
from .user_service import UserService

logger = logging.getLogger(__name__)


def _contains(subjects: List[str], subject: str) -> bool:
    return subject.lower() in (s.lower() for s in subjects or [])


def _without(subjects: List[str], subject: str) -> List[str]:
    return [s for s in subjects or [] if s.lower() != subject.lower()]


class TeacherService:
    """Service for teacher operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.teachers = Repository(db, Teacher)
        self.links = Repository(db, TeacherStudent)
        self.users = UserService(db)

    async def _id_taken(self, teacher_id: str) -> bool:
        return await self.teachers.count(teacher_id=teacher_id) > 0

    async def get_teacher(self, teacher_id: str) -> Optional[Teacher]:
        return await self.teachers.find_one(teacher_id=teacher_id)

    async def require_teacher(self, teacher_id: str) -> Teacher:
        teacher = await self.get_teacher(teacher_id)
        if teacher is None:
            raise NotFoundError("Teacher ID not found.")
        return teacher

    async def get_by_chat(self, telegram_id: int) -> Optional[Teacher]:
        return await self.teachers.find_one(telegram_id=telegram_id)

    async def create_teacher(
        self,
        name: str,
        subjects: Optional[List[str]] = None,
        telegram_id: Optional[int] = None,
    ) -> Teacher:
        """Create a teacher profile with a generated 10-digit ID."""
        teacher_id = await generate_unique_id(self._id_taken)
        teacher = await self.teachers.insert(
            teacher_id=teacher_id,
            name=name,
            telegram_id=telegram_id,
            subjects=list(subjects or []),
            pending_subjects=[],
            banned=False,
        )
        logger.info(f"Created teacher {teacher_id}")
        return teacher

    # Registration

    async def submit_registration(self, telegram_id: int, name: str, subjects: List[str], password_hash: str):
        """Store a self-registration request on the user until an admin decides."""
        if await self.get_by_chat(telegram_id) is not None:
            raise InvalidStateError("This account is already linked to a teacher profile.")
        user = await self.users.ensure_user(telegram_id, name)
        user.pending_registration = {
            "name": name,
            "subjects": list(subjects),
            "password_hash": password_hash,
            "requested_at": utcnow().isoformat(),
        }
        logger.info(f"Teacher registration submitted by chat {telegram_id}")
        return user

    async def approve_registration(self, telegram_id: int) -> Teacher:
        user = await self.users.get_user(telegram_id)
        if user is None or not user.pending_registration:
            raise NotFoundError("Request not found or already processed.")
        pending = dict(user.pending_registration)
        teacher = await self.create_teacher(pending["name"], pending.get("subjects"), telegram_id=telegram_id)
        self.db.add(TeacherCredential(teacher_id=teacher.teacher_id, password_hash=pending["password_hash"]))
        user.pending_registration = None
        user.role = "teacher"
        user.name = teacher.name
        user.subjects = list(teacher.subjects)
        logger.info(f"Teacher registration for chat {telegram_id} approved as {teacher.teacher_id}")
        return teacher

    async def deny_registration(self, telegram_id: int):
        user = await self.users.get_user(telegram_id)
        if user is None or not user.pending_registration:
            raise NotFoundError("Request not found or already processed.")
        user.pending_registration = None
        logger.info(f"Teacher registration for chat {telegram_id} denied")
        return user

    async def claim_teacher(self, teacher_id: str, telegram_id: int, name: str) -> Teacher:
        """Bind an admin-created teacher profile to a chat."""
        teacher = await self.get_teacher(teacher_id)
        if teacher is None or teacher.telegram_id is not None:
            raise InvalidStateError("Invalid or already linked teacher ID.")
        await self.link_chat(teacher, telegram_id, name)
        return teacher

    async def link_chat(self, teacher: Teacher, telegram_id: int, name: str = "") -> Teacher:
        """Point a teacher profile at a chat, releasing any previously linked chat."""
        if teacher.telegram_id is not None and teacher.telegram_id != telegram_id:
            previous = await self.users.get_user(teacher.telegram_id)
            if previous is not None and previous.role == "teacher":
                previous.role = "visitor"
                previous.subjects = []
        other = await self.get_by_chat(telegram_id)
        if other is not None and other.teacher_id != teacher.teacher_id:
            raise InvalidStateError("This account is already linked to another teacher profile.")
        teacher.telegram_id = telegram_id
        user = await self.users.ensure_user(telegram_id, name or teacher.name)
        user.role = "teacher"
        user.name = teacher.name
        user.subjects = list(teacher.subjects or [])
        logger.info(f"Teacher {teacher.teacher_id} linked to chat {telegram_id}")
        return teacher

    # Profile edits

    async def rename_teacher(self, teacher_id: str, name: str) -> Teacher:
        teacher = await self.require_teacher(teacher_id)
        teacher.name = name
        if teacher.telegram_id:
            user = await self.users.get_user(teacher.telegram_id)
            if user is not None:
                user.name = name
        return teacher

    async def set_subjects(self, teacher_id: str, subjects: List[str]) -> Teacher:
        teacher = await self.require_teacher(teacher_id)
        teacher.subjects = list(subjects)
        teacher.pending_subjects = [s for s in teacher.pending_subjects or [] if not _contains(subjects, s)]
        await self._sync_user_subjects(teacher)
        return teacher

    async def toggle_ban(self, teacher_id: str) -> Teacher:
        teacher = await self.require_teacher(teacher_id)
        teacher.banned = not teacher.banned
        logger.warning(f"Teacher {teacher_id} banned={teacher.banned}")
        return teacher

    async def remove_teacher(self, teacher_id: str) -> Teacher:
        """Delete a teacher with credentials, student links, grades and offers."""
        teacher = await self.require_teacher(teacher_id)
        if teacher.telegram_id:
            user = await self.users.get_user(teacher.telegram_id)
            if user is not None and user.role == "teacher":
                user.role = "visitor"
                user.subjects = []
        offers = await Repository(self.db, FreelanceOffer).find_many({"teacher_id": teacher_id})
        if offers:
            await Repository(self.db, TutorRequest).delete(offer_id=[offer.id for offer in offers])
            await Repository(self.db, FreelanceOffer).delete(teacher_id=teacher_id)
        await Repository(self.db, TeacherCredential).delete(teacher_id=teacher_id)
        await Repository(self.db, Grade).delete(teacher_id=teacher_id)
        await self.links.delete(teacher_id=teacher_id)
        await self.db.delete(teacher)
        logger.info(f"Removed teacher {teacher_id}")
        return teacher

    async def _sync_user_subjects(self, teacher: Teacher) -> None:
        if teacher.telegram_id:
            user = await self.users.get_user(teacher.telegram_id)
            if user is not None:
                user.subjects = list(teacher.subjects or [])

    # Subjects

    async def request_subject(self, teacher: Teacher, subject: str) -> Teacher:
        if _contains(teacher.subjects, subject) or _contains(teacher.pending_subjects, subject):
            raise DuplicateError(f'"{subject}" is already one of your subjects or is pending verification.')
        if teacher.pending_subjects is None:
            teacher.pending_subjects = []
        teacher.pending_subjects.append(subject)
        return teacher

    async def approve_subject(self, teacher_id: str, subject: str) -> Teacher:
        teacher = await self.require_teacher(teacher_id)
        if not _contains(teacher.pending_subjects, subject):
            raise NotFoundError("Request not found.")
        teacher.pending_subjects = _without(teacher.pending_subjects, subject)
        if not _contains(teacher.subjects, subject):
            teacher.subjects = list(teacher.subjects or []) + [subject]
        await self._sync_user_subjects(teacher)
        return teacher

    async def deny_subject(self, teacher_id: str, subject: str) -> Teacher:
        teacher = await self.require_teacher(teacher_id)
        if not _contains(teacher.pending_subjects, subject):
            raise NotFoundError("Request not found.")
        teacher.pending_subjects = _without(teacher.pending_subjects, subject)
        return teacher

    async def remove_subject(self, teacher: Teacher, subject: str) -> Teacher:
        if not _contains(teacher.subjects, subject):
            raise NotFoundError("Subject not found.")
        teacher.subjects = _without(teacher.subjects, subject)
        await self._sync_user_subjects(teacher)
        return teacher

    # Rosters

    async def link_student(self, teacher: Teacher, student: Student, subject: str) -> bool:
        """Add a student to one of the teacher's subjects. False if already linked."""
        existing = await self.links.find_one(
            teacher_id=teacher.teacher_id, student_id=student.student_id, subject=subject
        )
        if existing is not None:
            return False
        try:
            await self.links.insert(
                teacher_id=teacher.teacher_id,
                student_id=student.student_id,
                subject=subject,
                class_name=student.class_name,
            )
        except IntegrityError as e:
            raise DuplicateError("Student is already on this subject list.") from e
        return True

    async def students_by_subject(self, teacher: Teacher) -> Dict[str, List[Student]]:
        rows = await self.db.execute(
            select(TeacherStudent.subject, Student)
            .join(Student, Student.student_id == TeacherStudent.student_id)
            .where(TeacherStudent.teacher_id == teacher.teacher_id)
            .order_by(TeacherStudent.subject, Student.name)
        )
        grouped: Dict[str, List[Student]] = {}
        for subject, student in rows.all():
            grouped.setdefault(subject, []).append(student)
        return grouped

    async def teaches_student(self, teacher: Teacher, student_id: str) -> bool:
        return await self.links.count(teacher_id=teacher.teacher_id, student_id=student_id) > 0

    async def class_names(self, teacher: Teacher) -> List[str]:
        return await self.links.distinct("class_name", teacher_id=teacher.teacher_id)

    async def parent_ids_for_subject(self, teacher: Teacher, subject: str) -> List[int]:
        rows = await self.db.execute(
            select(Student.parent_id)
            .join(TeacherStudent, TeacherStudent.student_id == Student.student_id)
            .where(
                TeacherStudent.teacher_id == teacher.teacher_id,
                TeacherStudent.subject == subject,
                Student.parent_id.is_not(None),
            )
            .distinct()
        )
        return [row[0] for row in rows.all()]

    async def list_teachers(self, limit: Optional[int] = None, offset: int = 0) -> List[Teacher]:
        return await self.teachers.find_many(order_by="name", limit=limit, offset=offset)

    async def count_teachers(self) -> int:
        return await self.teachers.count()

    async def search(self, query: str, limit: int = 20) -> List[Teacher]:
        pattern = f"%{query.lower()}%"
        result = await self.db.execute(
            select(Teacher)
            .where(or_(Teacher.name.ilike(pattern), Teacher.teacher_id.like(pattern)))
            .order_by(Teacher.name)
            .limit(limit)
        )
        return list(result.scalars().all())
