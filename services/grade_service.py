"""Grade book service."""

import logging
import secrets
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Grade
from database.repository import Repository

from .errors import InvalidStateError, NotFoundError
from .helpers import utcnow

logger = logging.getLogger(__name__)


def _check_score(score: int) -> None:
    if not 0 <= score <= 100:
        raise InvalidStateError("Score must be between 0 and 100.")


class GradeService:
    """Service for grade operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.grades = Repository(db, Grade)

    async def add_grade(
        self,
        student_id: str,
        teacher_id: str,
        subject: str,
        score: int,
        purpose: str,
        comments: Optional[str] = None,
    ) -> Grade:
        _check_score(score)
        grade = await self.grades.insert(
            grade_id=secrets.token_hex(16),
            student_id=student_id,
            teacher_id=teacher_id,
            subject=subject,
            score=score,
            purpose=purpose,
            comments=comments,
            created_at=utcnow(),
        )
        logger.info(f"Grade {grade.grade_id} added for student {student_id} in {subject}")
        return grade

    async def get_grade(self, grade_id: str) -> Optional[Grade]:
        return await self.grades.find_one(grade_id=grade_id)

    async def update_grade(
        self,
        grade_id: str,
        teacher_id: str,
        score: int,
        purpose: str,
        comments: Optional[str] = None,
    ) -> Grade:
        """Update a grade entered by the same teacher."""
        _check_score(score)
        grade = await self.get_grade(grade_id)
        if grade is None:
            raise NotFoundError("Grade not found.")
        if grade.teacher_id != teacher_id:
            raise InvalidStateError("You can only edit grades you entered.")
        grade.score = score
        grade.purpose = purpose
        grade.comments = comments
        grade.updated_at = utcnow()
        return grade

    async def grades_for_student(self, student_id: str, subject: Optional[str] = None) -> List[Grade]:
        filters = {"student_id": student_id}
        if subject:
            filters["subject"] = subject
        return await self.grades.find_many(filters, order_by=["subject", "created_at"])

    async def grades_by_subject(self, student_id: str) -> Dict[str, List[Grade]]:
        grouped: Dict[str, List[Grade]] = {}
        for grade in await self.grades_for_student(student_id):
            grouped.setdefault(grade.subject, []).append(grade)
        return grouped

    async def grades_by_teacher(self, teacher_id: str) -> List[Grade]:
        return await self.grades.find_many({"teacher_id": teacher_id}, order_by=["subject", "student_id", "created_at"])

    async def count(self) -> int:
        return await self.grades.count()
