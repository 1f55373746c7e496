"""Flow definitions and stage assembly."""

from typing import Optional

from config.settings import Settings
from services import ExportService, NotificationService

from ..audit import ActivityLogger
from ..engine import Stage
from ..handlers import CommonHandler
from ..session_store import SessionStore
from .admin_students import StudentAdminHandler
from .admin_users import UserAdminHandler
from .announcements import AnnouncementHandler
from .approvals import ApprovalHandler
from .attendance import AttendanceHandler
from .freelance import FreelanceHandler
from .grades import GradeHandler
from .master_admin import MasterAdminHandler
from .messaging import MessagingHandler
from .registration import RegistrationHandler
from .search import SearchHandler
from .teacher_profile import ProfileHandler

HANDLERS = (
    CommonHandler,
    RegistrationHandler,
    ApprovalHandler,
    StudentAdminHandler,
    UserAdminHandler,
    AnnouncementHandler,
    MessagingHandler,
    GradeHandler,
    AttendanceHandler,
    ProfileHandler,
    SearchHandler,
    FreelanceHandler,
    MasterAdminHandler,
)


def build_stage(
    transport,
    settings: Settings,
    notifier: Optional[NotificationService] = None,
    exports: Optional[ExportService] = None,
) -> Stage:
    """Create the stage with every flow, command and the activity hook registered."""
    notifier = notifier or NotificationService(transport, settings.oversight_chat_ids)
    exports = exports or ExportService(settings.export_dir)
    stage = Stage(transport, sessions=SessionStore(settings.session_idle_timeout_ms))
    for handler_class in HANDLERS:
        handler_class(settings, notifier, exports).register(stage)
    stage.add_dispatch_hook(ActivityLogger(notifier, cap=settings.activity_log_cap))
    return stage


__all__ = ["HANDLERS", "build_stage"]
