"""Telegram Bot Message Handlers."""

import logging
from typing import Iterable, Optional

from config.settings import Settings
from database.connection import get_db_context
from database.models import Teacher, User
from services import CredentialService, DeliveryReport, ExportService, NotificationService, TeacherService, UserService

from . import keyboards as kb
from .engine import Flow, FlowContext, Stage
from .models import EventKind, UserRole
from .utils import esc

logger = logging.getLogger(__name__)

ADMINS = (UserRole.ADMIN, UserRole.MASTER_ADMIN)

NOT_AUTHORIZED = "⛔ You are not authorized to use this feature."


def role_of(user: Optional[User]) -> UserRole:
    if user is None:
        return UserRole.VISITOR
    try:
        return UserRole(user.role)
    except ValueError:
        logger.warning(f"User {user.telegram_id} has unknown role {user.role!r}")
        return UserRole.VISITOR


class BaseHandler:
    """Base handler with common functionality."""

    def __init__(self, settings: Settings, notifier: NotificationService, exports: ExportService):
        self.settings = settings
        self.notifier = notifier
        self.exports = exports

    def register(self, stage: Stage) -> None:
        raise NotImplementedError

    @property
    def page_size(self) -> int:
        return self.settings.page_size

    def credentials(self, db) -> CredentialService:
        return CredentialService(
            db,
            self.settings.otp_ttl_seconds,
            self.settings.otp_max_attempts,
            max_login_attempts=self.settings.login_max_attempts,
            lockout_seconds=self.settings.login_lockout_seconds,
        )

    def new_flow(self, name: str, requires: Iterable[str] = (), idle_timeout_ms: Optional[int] = None) -> Flow:
        """Flow with the shared Cancel button already routed."""
        flow = Flow(name, idle_timeout_ms=idle_timeout_ms, requires=requires)
        flow.add_button(kb.CANCEL, self.cancel, action="cancel")
        return flow

    def open_flow(self, name: str, *roles: UserRole, **params):
        """Handler that enters ``name``, optionally restricted to ``roles``."""
        async def handler(ctx: FlowContext):
            if roles and not await self.require_role(ctx, *roles):
                return
            await ctx.answer()
            ctx.enter(name, **params)
        handler.__name__ = f"open_{name}"
        return handler

    async def load_user(self, ctx: FlowContext) -> User:
        """Get or create the chat's user record."""
        async with get_db_context() as db:
            return await UserService(db).ensure_user(
                ctx.user_id,
                ctx.event.first_name,
                ctx.event.username,
                master_ids=self.settings.oversight_chat_ids,
            )

    async def require_role(self, ctx: FlowContext, *roles: UserRole) -> Optional[User]:
        """Return the user if their role is one of ``roles``; otherwise refuse."""
        user = await self.load_user(ctx)
        if role_of(user) in roles:
            return user
        logger.warning(f"Chat {ctx.chat_id} ({user.role}) refused {ctx.action!r}")
        await ctx.reply(NOT_AUTHORIZED)
        return None

    async def require_teacher(self, ctx: FlowContext) -> Optional[Teacher]:
        """The teacher profile linked to this chat, unless missing or banned."""
        if not await self.require_role(ctx, UserRole.TEACHER):
            return None
        async with get_db_context() as db:
            teacher = await TeacherService(db).get_by_chat(ctx.user_id)
        if teacher is None:
            await ctx.reply("❌ No teacher profile is linked to this account.")
            return None
        if teacher.banned:
            await ctx.reply("🚫 Your teacher account is suspended. Please contact the school.")
            return None
        return teacher

    async def prompt(self, ctx: FlowContext, text: str, cancel: str = kb.CANCEL):
        """Ask for input with a Cancel button."""
        return await ctx.reply(text, reply_markup=kb.cancel_markup(cancel))

    async def show_menu(self, ctx: FlowContext, role: UserRole, text: Optional[str] = None):
        if role == UserRole.VISITOR:
            return await ctx.reply(
                text or "🤖 Welcome to the School System Bot! Please register with your assigned code or choose your role.",
                reply_markup=kb.registration_menu(),
            )
        return await ctx.reply(text or "🏠 Main menu", reply_markup=kb.menu_for(role))

    async def cancel(self, ctx: FlowContext):
        """Leave the current flow and return to the main menu."""
        ctx.finish()
        await ctx.answer()
        user = await self.load_user(ctx)
        await self.show_menu(ctx, role_of(user), "❌ Cancelled.")

    async def notify_admins(self, text: str, reply_markup=None) -> DeliveryReport:
        """Send to every admin; falls back to the oversight recipients when there are none."""
        async with get_db_context() as db:
            chat_ids = await UserService(db).admin_chat_ids()
        if not chat_ids:
            chat_ids = self.settings.oversight_chat_ids
        if not chat_ids:
            logger.warning("No admins to notify")
            return DeliveryReport()
        return await self.notifier.broadcast(chat_ids, text, reply_markup=reply_markup)


class CommonHandler(BaseHandler):
    """Commands and navigation shared by every role."""

    def register(self, stage: Stage) -> None:
        stage.command("start")(self.cmd_start)
        stage.command("help")(self.cmd_help)
        stage.command("cancel")(self.cmd_cancel)
        stage.command("admin")(self.cmd_admin)

        stage.root.add_input(EventKind.TEXT, self.back_to_admin, text=kb.BACK_TO_ADMIN)
        stage.root.add_button("back_to_teacher", self.back_to_menu)
        stage.root.add_button("back_to_parent", self.back_to_menu)
        stage.root.add_button("noop", self.noop)
        stage.root.add_button(kb.CANCEL, self.cancel, action="cancel")

    async def cmd_start(self, ctx: FlowContext):
        """Role-aware welcome."""
        ctx.finish()
        user = await self.load_user(ctx)
        role = role_of(user)
        if role == UserRole.VISITOR:
            await self.show_menu(ctx, role)
            return
        await self.show_menu(ctx, role, f"👋 Welcome back, {esc(user.name)}!")

    async def cmd_help(self, ctx: FlowContext):
        user = await self.load_user(ctx)
        role = role_of(user)
        lines = ["ℹ️ <b>Help</b>", "", "/start - main menu", "/cancel - stop the current step"]
        if role.is_admin:
            lines.append("/admin - admin panel")
            lines.append("")
            lines.append("Use 🧑‍🎓 Students and 👥 Users to manage records, 📢 Announcements to broadcast.")
        elif role == UserRole.TEACHER:
            lines.append("")
            lines.append("Use 💯 Manage Grades to record scores and 📚 My Students to build your class lists.")
        elif role == UserRole.PARENT:
            lines.append("")
            lines.append("Use 💯 View Grades and 🗓️ Schedule to follow your child's progress.")
        else:
            lines.append("")
            lines.append("Register as a parent with your child's student ID, or as a teacher with your teacher ID.")
        await ctx.reply("\n".join(lines))

    async def cmd_cancel(self, ctx: FlowContext):
        user = await self.load_user(ctx)
        if ctx.flow is None:
            await self.show_menu(ctx, role_of(user), "ℹ️ Nothing to cancel.")
            return
        ctx.finish()
        await self.show_menu(ctx, role_of(user), "❌ Cancelled.")

    async def cmd_admin(self, ctx: FlowContext):
        ctx.finish()
        user = await self.load_user(ctx)
        role = role_of(user)
        if role.is_admin:
            await ctx.reply("⚙️ Admin Panel", reply_markup=kb.admin_menu(master=role == UserRole.MASTER_ADMIN))
            return
        ctx.enter("admin_login")

    async def back_to_admin(self, ctx: FlowContext):
        user = await self.require_role(ctx, *ADMINS)
        if user:
            await ctx.reply("⚙️ Admin Panel", reply_markup=kb.admin_menu(master=role_of(user) == UserRole.MASTER_ADMIN))

    async def back_to_menu(self, ctx: FlowContext):
        await ctx.answer()
        user = await self.load_user(ctx)
        await self.show_menu(ctx, role_of(user))

    async def noop(self, ctx: FlowContext):
        await ctx.answer()
