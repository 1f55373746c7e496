"""Admin activity logging, installed as a Stage dispatch hook."""

import logging
from typing import FrozenSet, Optional, Tuple

from database.connection import get_db_context
from services import ActivityService, NotificationService

from .models import DispatchRecord
from .utils import esc

logger = logging.getLogger(__name__)

# (flow, action) pairs forwarded to the oversight recipients
CRITICAL_ACTIONS: FrozenSet[Tuple[Optional[str], str]] = frozenset({
    ("add_admin", "promote_admin"),
    ("remove_admin", "demote_admin"),
    ("admin_login", "admin_login"),
    ("add_teacher_subjects", "create_teacher"),
    ("remove_teacher", "remove_teacher"),
    ("ban_teacher", "toggle_ban"),
    ("remove_student", "remove_student"),
    ("unbind_parent", "unbind_parent"),
    ("delete_class", "delete_class"),
    ("upload_student_db", "import_students"),
    ("send_announcement", "send_announcement"),
    (None, "decide_parent_link"),
    (None, "decide_subject"),
    (None, "decide_registration"),
    ("master_panel", "purge_records"),
})


def action_label(record: DispatchRecord) -> str:
    return f"{record.flow}.{record.action}" if record.flow else str(record.action)


class ActivityLogger:
    """
    Records what admins do.

    Handlers attach ``ctx.audit_detail`` once an action has taken effect.
    Every handled event that carries a detail is appended to the acting
    admin's activity log; critical ones are also forwarded to the oversight
    recipients. Events without a detail (rejected input, prompts) are not
    recorded. Events from non-admins are ignored by ``ActivityService.record``.
    """

    def __init__(
        self,
        notifier: NotificationService,
        cap: int = 200,
        critical: FrozenSet[Tuple[Optional[str], str]] = CRITICAL_ACTIONS,
    ):
        self.notifier = notifier
        self.cap = cap
        self.critical = critical

    def is_critical(self, record: DispatchRecord) -> bool:
        return (record.flow, record.action) in self.critical

    async def __call__(self, record: DispatchRecord) -> None:
        if not record.detail:
            return

        label = action_label(record)
        async with get_db_context() as db:
            entry = await ActivityService(db, cap=self.cap).record(record.chat_id, label, record.detail)
        if entry is None:
            return
        logger.info(f"Admin {record.chat_id}: {label} {record.detail}")

        if self.is_critical(record):
            await self.notifier.notify_oversight(
                "🛡️ <b>Admin action</b>\n"
                f"Admin: <code>{record.chat_id}</code>\n"
                f"Action: {esc(label)}\n"
                f"Detail: {esc(record.detail)}"
            )
