"""Student records, classes and bulk import."""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Grade, Student, TeacherStudent
from database.repository import Repository

from .errors import NotFoundError
from .helpers import generate_unique_id
from .user_service import UserService

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = {"monday": "N/A", "tuesday": "N/A"}


@dataclass
class ImportResult:
    added: int = 0
    skipped: int = 0
    unknown_parents: List[str] = field(default_factory=list)


def parse_student_file(data: bytes, filename: str = "") -> List[Dict[str, Any]]:
    """Parse an uploaded roster: a JSON array of objects, or CSV with a header row."""
    text = data.decode("utf-8-sig")
    if filename.lower().endswith(".csv") or not text.lstrip().startswith("["):
        reader = csv.DictReader(io.StringIO(text))
        rows = [{(k or "").strip().lower(): (v or "").strip() for k, v in row.items()} for row in reader]
        if not rows:
            raise ValueError("No rows found")
        return rows
    records = json.loads(text)
    if not isinstance(records, list):
        raise ValueError("Expected a JSON array of students")
    return [record for record in records if isinstance(record, dict)]


class StudentService:
    """Service for student operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.students = Repository(db, Student)
        self.grades = Repository(db, Grade)
        self.links = Repository(db, TeacherStudent)
        self.users = UserService(db)

    async def _id_taken(self, student_id: str) -> bool:
        return await self.students.count(student_id=student_id) > 0

    async def get_student(self, student_id: str) -> Optional[Student]:
        return await self.students.find_one(student_id=student_id)

    async def require_student(self, student_id: str) -> Student:
        student = await self.get_student(student_id)
        if student is None:
            raise NotFoundError("Student ID not found.")
        return student

    async def create_student(
        self,
        name: str,
        class_name: str,
        parent_id: Optional[int] = None,
        schedule: Optional[Dict[str, str]] = None,
    ) -> Student:
        """Create a student with a generated 10-digit ID."""
        student_id = await generate_unique_id(self._id_taken)
        student = await self.students.insert(
            student_id=student_id,
            name=name,
            class_name=class_name,
            parent_id=None,
            schedule=dict(schedule or DEFAULT_SCHEDULE),
        )
        if parent_id is not None:
            await self._attach_parent(student, parent_id)
        logger.info(f"Created student {student_id} in class {class_name}")
        return student

    async def _attach_parent(self, student: Student, parent_id: int) -> bool:
        parent = await self.users.get_user(parent_id)
        if parent is None:
            logger.warning(f"Parent {parent_id} not found for student {student.student_id}")
            return False
        student.parent_id = parent_id
        if parent.student_ids is None:
            parent.student_ids = []
        if student.student_id not in parent.student_ids:
            parent.student_ids.append(student.student_id)
        if parent.role == "visitor":
            parent.role = "parent"
        return True

    async def import_students(self, records: List[Dict[str, Any]]) -> ImportResult:
        """Create students from parsed records; rows without name and class are skipped."""
        result = ImportResult()
        for record in records:
            name = str(record.get("name") or "").strip()
            class_name = str(record.get("class") or record.get("class_name") or "").strip()
            if not name or not class_name:
                result.skipped += 1
                continue
            student = await self.create_student(name, class_name, schedule=record.get("schedule") or None)
            raw_parent = record.get("parentId") or record.get("parent_id") or record.get("parentid")
            if raw_parent:
                try:
                    parent_id = int(raw_parent)
                except (TypeError, ValueError):
                    parent_id = None
                if parent_id is None or not await self._attach_parent(student, parent_id):
                    result.unknown_parents.append(str(raw_parent))
            result.added += 1
        logger.info(f"Imported {result.added} students, skipped {result.skipped}")
        return result

    async def rename_student(self, student_id: str, name: str) -> Student:
        student = await self.require_student(student_id)
        student.name = name
        return student

    async def move_student(self, student_id: str, class_name: str) -> Student:
        student = await self.require_student(student_id)
        student.class_name = class_name
        await self.links.update({"student_id": student_id}, {"class_name": class_name})
        return student

    async def set_parent(self, student_id: str, parent_id: int) -> Student:
        """Relink a student to another registered parent."""
        student = await self.require_student(student_id)
        parent = await self.users.get_user(parent_id)
        if parent is None or parent.role != "parent":
            raise NotFoundError("Invalid parent ID.")
        if student.parent_id is not None and student.parent_id != parent_id:
            await self.users.detach_student(student)
        await self._attach_parent(student, parent_id)
        return student

    async def remove_student(self, student_id: str) -> Student:
        """Delete a student with its grades, teacher links and parent references."""
        student = await self.require_student(student_id)
        await self.users.detach_student(student)
        await self.grades.delete(student_id=student_id)
        await self.links.delete(student_id=student_id)
        await self.db.delete(student)
        logger.info(f"Removed student {student_id}")
        return student

    async def list_students(self, limit: Optional[int] = None, offset: int = 0, class_name: Optional[str] = None) -> List[Student]:
        filters = {"class_name": class_name} if class_name else None
        return await self.students.find_many(filters, order_by=["class_name", "name"], limit=limit, offset=offset)

    async def count_students(self, class_name: Optional[str] = None) -> int:
        if class_name:
            return await self.students.count(class_name=class_name)
        return await self.students.count()

    async def class_names(self) -> List[str]:
        return await self.students.distinct("class_name")

    async def delete_class(self, class_name: str) -> List[Dict[str, Any]]:
        """Remove every student in a class. Returns snapshots of the removed students."""
        students = await self.list_students(class_name=class_name)
        if not students:
            raise NotFoundError(f"No students found in class {class_name}.")
        removed = []
        for student in students:
            removed.append({
                "student_id": student.student_id,
                "name": student.name,
                "parent_id": student.parent_id,
            })
            await self.remove_student(student.student_id)
        logger.warning(f"Deleted class {class_name} ({len(removed)} students)")
        return removed

    async def search(self, query: str, limit: int = 20) -> List[Student]:
        pattern = f"%{query.lower()}%"
        statement = (
            select(Student)
            .where(or_(Student.name.ilike(pattern), Student.student_id.like(pattern)))
            .order_by(Student.name)
            .limit(limit)
        )
        result = await self.db.execute(statement)
        return list(result.scalars().all())

    async def parent_ids_for_class(self, class_name: str) -> List[int]:
        ids = await self.students.distinct("parent_id", class_name=class_name)
        return [parent_id for parent_id in ids if parent_id is not None]
