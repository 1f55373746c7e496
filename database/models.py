"""SQLAlchemy models for database."""

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Date, Text, Float,
    BigInteger, JSON, CheckConstraint, UniqueConstraint, func,
)
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.orm import declarative_base

Base = declarative_base()

JSONList = MutableList.as_mutable(JSON)
JSONDict = MutableDict.as_mutable(JSON)


class User(Base):
    """A person known to the bot, keyed by Telegram chat identity."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False, index=True)
    role = Column(String(20), nullable=False, default="visitor")
    name = Column(String(255), nullable=False, default="")
    username = Column(String(64))

    # Parent-specific
    student_ids = Column(JSONList, default=list)
    pending_student_ids = Column(JSONList, default=list)

    # Teacher-specific
    subjects = Column(JSONList, default=list)
    pending_registration = Column(JSONDict)

    # Admin-specific
    activity_log = Column(JSONList, default=list)

    created_at = Column(DateTime, server_default=func.now())
    last_seen_at = Column(DateTime)


class Teacher(Base):
    """Teacher profile, distinct from the chat user that claims it."""
    __tablename__ = "teachers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    teacher_id = Column(String(10), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    telegram_id = Column(BigInteger, unique=True)
    subjects = Column(JSONList, default=list)
    pending_subjects = Column(JSONList, default=list)
    banned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class TeacherCredential(Base):
    """Login credentials for a teacher (SHA-256 password hash)."""
    __tablename__ = "teacher_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    teacher_id = Column(String(10), unique=True, nullable=False, index=True)
    password_hash = Column(String(64), nullable=False)
    failed_logins = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Student(Base):
    """Student model."""
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(10), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    class_name = Column(String(50), nullable=False, index=True)
    parent_id = Column(BigInteger, index=True)
    pending_parent_id = Column(BigInteger)
    schedule = Column(JSONDict, default=dict)
    created_at = Column(DateTime, server_default=func.now())


class TeacherStudent(Base):
    """Links a teacher, a subject and a student within a class."""
    __tablename__ = "teacher_students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    teacher_id = Column(String(10), nullable=False, index=True)
    student_id = Column(String(10), nullable=False, index=True)
    subject = Column(String(100), nullable=False)
    class_name = Column(String(50), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("teacher_id", "student_id", "subject", name="uq_teacher_student_subject"),
    )


class Grade(Base):
    """Scored assessment entry."""
    __tablename__ = "grades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    grade_id = Column(String(32), unique=True, nullable=False)
    student_id = Column(String(10), nullable=False, index=True)
    teacher_id = Column(String(10), nullable=False, index=True)
    subject = Column(String(100), nullable=False)
    score = Column(Integer, nullable=False)
    purpose = Column(String(255), nullable=False)
    comments = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        CheckConstraint("score >= 0 AND score <= 100", name="ck_grade_score_range"),
    )


class Attendance(Base):
    """Per-class, per-date roster snapshot."""
    __tablename__ = "attendance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_name = Column(String(50), nullable=False, index=True)
    date = Column(Date, nullable=False)
    taken_by = Column(String(10))
    records = Column(JSONList, default=list)  # [{student_id, name, status}]
    parents_notified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (UniqueConstraint("class_name", "date", name="uq_attendance_class_date"),)


class OneTimeCode(Base):
    """Short-lived verification code."""
    __tablename__ = "one_time_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(6), nullable=False)
    purpose = Column(String(50), nullable=False)  # teacher_registration, password_reset
    reference = Column(String(50), nullable=False)
    telegram_id = Column(BigInteger, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class FreelanceOffer(Base):
    """A teacher's tutoring rate card."""
    __tablename__ = "freelance_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    teacher_id = Column(String(10), nullable=False, index=True)
    subject = Column(String(100), nullable=False)
    hourly_rate = Column(Float, nullable=False)
    hours_per_day = Column(Integer, nullable=False)
    days_per_week = Column(Integer, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (UniqueConstraint("teacher_id", "subject", name="uq_offer_teacher_subject"),)


class TutorRequest(Base):
    """A parent's request to book a freelance offer."""
    __tablename__ = "tutor_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    offer_id = Column(Integer, nullable=False, index=True)
    parent_id = Column(BigInteger, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    resolved_at = Column(DateTime)
