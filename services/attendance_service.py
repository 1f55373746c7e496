"""Attendance registers."""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Attendance, Student
from database.repository import Repository

from .errors import NotFoundError

logger = logging.getLogger(__name__)

PRESENT = "present"
ABSENT = "absent"


class AttendanceService:
    """Service for per-class, per-date attendance snapshots."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registers = Repository(db, Attendance)
        self.students = Repository(db, Student)

    async def roster(self, class_name: str) -> List[Student]:
        return await self.students.find_many({"class_name": class_name}, order_by="name")

    async def get(self, class_name: str, day: date) -> Optional[Attendance]:
        return await self.registers.find_one(class_name=class_name, date=day)

    async def save(
        self,
        class_name: str,
        day: date,
        taken_by: str,
        absent_ids: List[str],
    ) -> Attendance:
        """Store the register for a class and day, replacing an earlier one."""
        students = await self.roster(class_name)
        if not students:
            raise NotFoundError(f"No students found in class {class_name}.")
        absent = set(absent_ids)
        records = [
            {
                "student_id": student.student_id,
                "name": student.name,
                "status": ABSENT if student.student_id in absent else PRESENT,
            }
            for student in students
        ]
        register = await self.get(class_name, day)
        if register is None:
            register = await self.registers.insert(
                class_name=class_name,
                date=day,
                taken_by=taken_by,
                records=records,
                parents_notified=False,
            )
        else:
            register.records = records
            register.taken_by = taken_by
            register.parents_notified = False
        logger.info(f"Attendance saved for {class_name} on {day}: {len(absent)} absent of {len(records)}")
        return register

    async def absentee_parents(self, register: Attendance) -> Dict[int, List[str]]:
        """Map parent chat IDs to the names of their absent children."""
        absent_ids = [r["student_id"] for r in register.records or [] if r.get("status") == ABSENT]
        if not absent_ids:
            return {}
        students = await self.students.find_many({"student_id": absent_ids})
        parents: Dict[int, List[str]] = {}
        for student in students:
            if student.parent_id is not None:
                parents.setdefault(student.parent_id, []).append(student.name)
        return parents

    async def mark_notified(self, register: Attendance) -> None:
        register.parents_notified = True

    async def history(self, class_name: str, limit: Optional[int] = None) -> List[Attendance]:
        return await self.registers.find_many({"class_name": class_name}, order_by="-date", limit=limit)

    async def count(self) -> int:
        return await self.registers.count()
