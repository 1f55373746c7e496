"""School System business services."""

from .activity_service import ActivityService
from .attendance_service import ABSENT, PRESENT, AttendanceService
from .credential_service import CodeCheck, CredentialService, LoginCheck
from .errors import (
    DuplicateError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
)
from .export_service import ExportService
from .freelance_service import FreelanceService
from .grade_service import GradeService
from .notification_service import Delivery, DeliveryReport, NotificationService
from .student_service import StudentService
from .teacher_service import TeacherService
from .user_service import UserService

__all__ = [
    "ABSENT",
    "PRESENT",
    "ActivityService",
    "AttendanceService",
    "CodeCheck",
    "LoginCheck",
    "CredentialService",
    "Delivery",
    "DeliveryReport",
    "DuplicateError",
    "ExportService",
    "FreelanceService",
    "GradeService",
    "InvalidStateError",
    "NotFoundError",
    "NotificationService",
    "PermissionDeniedError",
    "ServiceError",
    "StudentService",
    "TeacherService",
    "UserService",
]
