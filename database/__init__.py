"""Database module for the School System bot."""

from database.models import (
    Base,
    User,
    Teacher,
    TeacherCredential,
    Student,
    TeacherStudent,
    Grade,
    Attendance,
    OneTimeCode,
    FreelanceOffer,
    TutorRequest,
)
from database.connection import (
    configure_engine,
    get_engine,
    get_session_maker,
    get_db_context,
    init_db,
    close_db,
)
from database.repository import Repository

__all__ = [
    "Base",
    "User",
    "Teacher",
    "TeacherCredential",
    "Student",
    "TeacherStudent",
    "Grade",
    "Attendance",
    "OneTimeCode",
    "FreelanceOffer",
    "TutorRequest",
    "configure_engine",
    "get_engine",
    "get_session_maker",
    "get_db_context",
    "init_db",
    "close_db",
    "Repository",
]
