"""Admin user management: admins, teachers and parent listings."""

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from database.connection import get_db_context
from services import ServiceError, TeacherService, UserService

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import ADMINS, BaseHandler
from ..models import EventKind
from ..utils import Page, bullet_list, esc, pagination_row
from ..validators import (
    is_valid_teacher_id,
    is_valid_telegram_id,
    parse_subjects,
    validate_name,
    validate_subject,
)

logger = logging.getLogger(__name__)

LISTINGS = {
    "admins": ("🛡️ Admins", ("admin", "master_admin")),
    "parents": ("👨‍👩‍👧 Parents", ("parent",)),
}


def _subjects_or_error(text: str):
    subjects = parse_subjects(text)
    if not subjects or any(not validate_subject(s).valid for s in subjects):
        return None
    return subjects


class UserAdminHandler(BaseHandler):
    """Promote and demote admins; create, edit, ban and remove teachers."""

    def register(self, stage: Stage) -> None:
        root = stage.root
        root.add_input(EventKind.TEXT, self.show_menu_panel, text=kb.USERS)
        root.add_input(EventKind.TEXT, self.open_flow("add_admin", *ADMINS), text=kb.ADD_ADMIN)
        root.add_input(EventKind.TEXT, self.open_flow("remove_admin", *ADMINS), text=kb.REMOVE_ADMIN)
        root.add_input(EventKind.TEXT, self.open_flow("add_teacher", *ADMINS), text=kb.ADD_TEACHER)
        root.add_input(EventKind.TEXT, self.open_flow("remove_teacher", *ADMINS), text=kb.REMOVE_TEACHER)
        root.add_input(EventKind.TEXT, self.open_flow("edit_teacher", *ADMINS), text=kb.EDIT_TEACHER)
        root.add_input(EventKind.TEXT, self.open_flow("ban_teacher", *ADMINS), text=kb.BAN_TEACHER)
        root.add_input(EventKind.TEXT, self.view_admins, text=kb.VIEW_ADMINS)
        root.add_input(EventKind.TEXT, self.view_parents, text=kb.VIEW_PARENTS)
        root.add_input(EventKind.TEXT, self.view_teachers, text=kb.VIEW_TEACHERS)
        root.add_button(r"^admins_page_(\d+)$", self.view_admins)
        root.add_button(r"^parents_page_(\d+)$", self.view_parents)
        root.add_button(r"^teachers_page_(\d+)$", self.view_teachers)

        add_admin = self.new_flow("add_admin")
        add_admin.on_enter(self.add_admin_enter)
        add_admin.add_input(EventKind.TEXT, self.promote, action="promote_admin")

        remove_admin = self.new_flow("remove_admin")
        remove_admin.on_enter(self.remove_admin_enter)
        remove_admin.add_input(EventKind.TEXT, self.demote, action="demote_admin")

        add_teacher = self.new_flow("add_teacher")
        add_teacher.on_enter(self.add_teacher_enter)
        add_teacher.add_input(EventKind.TEXT, self.add_teacher_name)

        add_subjects = self.new_flow("add_teacher_subjects", requires=["teacher_name"])
        add_subjects.on_enter(self.add_teacher_subjects_enter)
        add_subjects.add_input(EventKind.TEXT, self.add_teacher_subjects, action="create_teacher")

        remove_teacher = self.new_flow("remove_teacher")
        remove_teacher.on_enter(self.remove_teacher_enter)
        remove_teacher.add_input(EventKind.TEXT, self.remove_teacher_lookup)
        remove_teacher.add_button("confirm_remove_teacher", self.remove_teacher_confirm, action="remove_teacher")

        edit_teacher = self.new_flow("edit_teacher")
        edit_teacher.on_enter(self.edit_teacher_enter)
        edit_teacher.add_input(EventKind.TEXT, self.edit_teacher_lookup)
        edit_teacher.add_button("edit_teacher_name", self.open_flow("edit_teacher_name"))
        edit_teacher.add_button("edit_teacher_subjects", self.open_flow("edit_teacher_subjects"))
        edit_teacher.add_button("cancel_edit_teacher", self.cancel)

        edit_name = self.new_flow("edit_teacher_name", requires=["teacher_id"])
        edit_name.on_enter(self.edit_teacher_name_enter)
        edit_name.add_input(EventKind.TEXT, self.edit_teacher_name)

        edit_subjects = self.new_flow("edit_teacher_subjects", requires=["teacher_id"])
        edit_subjects.on_enter(self.edit_teacher_subjects_enter)
        edit_subjects.add_input(EventKind.TEXT, self.edit_teacher_subjects)

        ban = self.new_flow("ban_teacher")
        ban.on_enter(self.ban_enter)
        ban.add_input(EventKind.TEXT, self.toggle_ban, action="toggle_ban")

        stage.register(
            add_admin, remove_admin, add_teacher, add_subjects, remove_teacher,
            edit_teacher, edit_name, edit_subjects, ban,
        )

    async def show_menu_panel(self, ctx: FlowContext):
        if await self.require_role(ctx, *ADMINS):
            await ctx.reply("👥 User Management", reply_markup=kb.user_management_menu())

    # Listings

    async def _view_users(self, ctx: FlowContext, listing: str):
        if not await self.require_role(ctx, *ADMINS):
            return
        title, roles = LISTINGS[listing]
        number = int(ctx.args[0]) if ctx.args else 1
        async with get_db_context() as db:
            service = UserService(db)
            page = Page.clamp(number, self.page_size, await service.count_by_role(roles))
            users = await service.list_by_role(roles, limit=page.size, offset=page.offset)
        if not users:
            await ctx.edit(f"{title}\n\nNone found.")
            return
        lines = []
        for user in users:
            line = f"{esc(user.name)} | <code>{user.telegram_id}</code>"
            if user.role == "master_admin":
                line += " | master"
            if user.role == "parent":
                line += f" | {len(user.student_ids or [])} student(s)"
            lines.append(line)
        row = pagination_row(f"{listing}_page", page)
        await ctx.edit(
            f"<b>{title}</b> ({page.total})\n\n" + bullet_list(lines),
            reply_markup=InlineKeyboardMarkup([row]) if row else None,
        )

    async def view_admins(self, ctx: FlowContext):
        await self._view_users(ctx, "admins")

    async def view_parents(self, ctx: FlowContext):
        await self._view_users(ctx, "parents")

    async def view_teachers(self, ctx: FlowContext):
        if not await self.require_role(ctx, *ADMINS):
            return
        number = int(ctx.args[0]) if ctx.args else 1
        async with get_db_context() as db:
            service = TeacherService(db)
            page = Page.clamp(number, self.page_size, await service.count_teachers())
            teachers = await service.list_teachers(limit=page.size, offset=page.offset)
        if not teachers:
            await ctx.edit("🧑‍🏫 Teachers\n\nNone found.")
            return
        lines = []
        for teacher in teachers:
            status = "🚫 banned" if teacher.banned else ("✅ linked" if teacher.telegram_id else "⏳ unclaimed")
            subjects = ", ".join(teacher.subjects or []) or "no subjects"
            lines.append(f"{esc(teacher.name)} | <code>{teacher.teacher_id}</code> | {esc(subjects)} | {status}")
        row = pagination_row("teachers_page", page)
        await ctx.edit(
            f"<b>🧑‍🏫 Teachers</b> ({page.total})\n\n" + bullet_list(lines),
            reply_markup=InlineKeyboardMarkup([row]) if row else None,
        )

    # Admins

    async def add_admin_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🆔 Please provide the Telegram ID of the user to promote to admin.")

    async def promote(self, ctx: FlowContext):
        if not is_valid_telegram_id(ctx.text):
            await ctx.reply("❌ Invalid Telegram ID. Please enter digits only.")
            return
        telegram_id = int(ctx.text)
        try:
            async with get_db_context() as db:
                user = await UserService(db).promote_admin(telegram_id)
        except ServiceError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            ctx.finish()
            return
        await self.notifier.send(
            telegram_id,
            "🎉 You have been promoted to admin. Use /admin to open the admin panel.",
            reply_markup=kb.admin_menu(),
        )
        await ctx.reply(f"✅ {esc(user.name)} is now an admin.", reply_markup=kb.user_management_menu())
        ctx.audit_detail = f"promoted {user.name} ({telegram_id}) to admin"
        ctx.finish()

    async def remove_admin_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🆔 Please provide the Telegram ID of the admin to remove.")

    async def demote(self, ctx: FlowContext):
        if not is_valid_telegram_id(ctx.text):
            await ctx.reply("❌ Invalid Telegram ID. Please enter digits only.")
            return
        telegram_id = int(ctx.text)
        try:
            async with get_db_context() as db:
                user = await UserService(db).demote_admin(
                    ctx.user_id, telegram_id, master_ids=self.settings.oversight_chat_ids
                )
        except ServiceError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            ctx.finish()
            return
        await self.notifier.send(telegram_id, "ℹ️ Your admin access has been removed.")
        await ctx.reply(f"✅ {esc(user.name)} is no longer an admin.", reply_markup=kb.user_management_menu())
        ctx.audit_detail = f"removed admin {user.name} ({telegram_id})"
        ctx.finish()

    # Teachers

    async def add_teacher_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "📝 Please provide the teacher's full name.")

    async def add_teacher_name(self, ctx: FlowContext):
        result = validate_name(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        ctx.update(teacher_name=result.value)
        ctx.enter("add_teacher_subjects")

    async def add_teacher_subjects_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "📚 Enter the subjects this teacher teaches, separated by commas.")

    async def add_teacher_subjects(self, ctx: FlowContext):
        subjects = _subjects_or_error(ctx.text)
        if subjects is None:
            await ctx.reply("❌ Please enter at least one valid subject (1-30 characters each).")
            return
        async with get_db_context() as db:
            teacher = await TeacherService(db).create_teacher(ctx.get("teacher_name"), subjects)
        await ctx.reply(
            "✅ <b>Teacher added!</b>\n"
            f"Name: {esc(teacher.name)}\n"
            f"Subjects: {esc(', '.join(teacher.subjects))}\n"
            f"Teacher ID: <code>{teacher.teacher_id}</code>\n\n"
            "The teacher links their account with 🧑‍🏫 Register as Teacher and this ID.",
            reply_markup=kb.user_management_menu(),
        )
        ctx.audit_detail = f"created teacher {teacher.teacher_id} ({teacher.name})"
        ctx.finish()

    async def remove_teacher_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🆔 Please provide the teacher ID to remove.")

    async def remove_teacher_lookup(self, ctx: FlowContext):
        if not is_valid_teacher_id(ctx.text):
            await ctx.reply("❌ Teacher ID must be exactly 10 digits.")
            return
        async with get_db_context() as db:
            teacher = await TeacherService(db).get_teacher(ctx.text)
        if teacher is None:
            await ctx.reply("❌ Teacher ID not found. Please try again.")
            return
        ctx.update(teacher_id=teacher.teacher_id)
        await ctx.reply(
            f"⚠️ Remove teacher {esc(teacher.name)} (<code>{teacher.teacher_id}</code>)?\n"
            "Their grades, class lists, offers and login will be deleted.",
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton("✅ Confirm", callback_data="confirm_remove_teacher")],
                [kb.cancel_button()],
            ]),
        )

    async def remove_teacher_confirm(self, ctx: FlowContext):
        teacher_id = ctx.get("teacher_id")
        if not teacher_id:
            await ctx.edit("🆔 Please send the teacher ID first.")
            return
        try:
            async with get_db_context() as db:
                teacher = await TeacherService(db).remove_teacher(teacher_id)
        except ServiceError as e:
            await ctx.edit(f"❌ {esc(e.message)}")
            ctx.finish()
            return
        if teacher.telegram_id:
            await self.notifier.send(teacher.telegram_id, "ℹ️ Your teacher account has been removed by the school.")
        await ctx.edit(f"✅ Teacher {esc(teacher.name)} removed.")
        ctx.audit_detail = f"removed teacher {teacher_id} ({teacher.name})"
        ctx.finish()

    async def edit_teacher_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🆔 Please provide the teacher ID to edit.")

    async def edit_teacher_lookup(self, ctx: FlowContext):
        if not is_valid_teacher_id(ctx.text):
            await ctx.reply("❌ Teacher ID must be exactly 10 digits.")
            return
        async with get_db_context() as db:
            teacher = await TeacherService(db).get_teacher(ctx.text)
        if teacher is None:
            await ctx.reply("❌ Teacher ID not found. Please try again.")
            return
        ctx.update(teacher_id=teacher.teacher_id)
        await ctx.reply(
            f"✏️ <b>{esc(teacher.name)}</b>\n"
            f"Subjects: {esc(', '.join(teacher.subjects or []) or 'none')}\n\n"
            "What would you like to change?",
            reply_markup=InlineKeyboardMarkup([
                [
                    InlineKeyboardButton("📝 Name", callback_data="edit_teacher_name"),
                    InlineKeyboardButton("📚 Subjects", callback_data="edit_teacher_subjects"),
                ],
                [InlineKeyboardButton("⬅️ Cancel", callback_data="cancel_edit_teacher")],
            ]),
        )

    async def edit_teacher_name_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "📝 Please enter the new name.")

    async def edit_teacher_name(self, ctx: FlowContext):
        result = validate_name(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        async with get_db_context() as db:
            teacher = await TeacherService(db).rename_teacher(ctx.get("teacher_id"), result.value)
        await ctx.reply(f"✅ Teacher renamed to {esc(teacher.name)}.", reply_markup=kb.user_management_menu())
        ctx.audit_detail = f"renamed teacher {teacher.teacher_id} to {teacher.name}"
        ctx.finish()

    async def edit_teacher_subjects_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "📚 Enter the full subject list, separated by commas. It replaces the current list.")

    async def edit_teacher_subjects(self, ctx: FlowContext):
        subjects = _subjects_or_error(ctx.text)
        if subjects is None:
            await ctx.reply("❌ Please enter at least one valid subject (1-30 characters each).")
            return
        async with get_db_context() as db:
            teacher = await TeacherService(db).set_subjects(ctx.get("teacher_id"), subjects)
        await ctx.reply(
            f"✅ Subjects updated: {esc(', '.join(teacher.subjects))}.",
            reply_markup=kb.user_management_menu(),
        )
        ctx.audit_detail = f"set subjects of {teacher.teacher_id} to {', '.join(teacher.subjects)}"
        ctx.finish()

    async def ban_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🆔 Please provide the teacher ID to ban or unban.")

    async def toggle_ban(self, ctx: FlowContext):
        if not is_valid_teacher_id(ctx.text):
            await ctx.reply("❌ Teacher ID must be exactly 10 digits.")
            return
        try:
            async with get_db_context() as db:
                teacher = await TeacherService(db).toggle_ban(ctx.text)
        except ServiceError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            return
        if teacher.banned:
            text = f"🚫 {esc(teacher.name)} is now banned."
            notice = "🚫 Your teacher account has been suspended. Please contact the school."
        else:
            text = f"✅ {esc(teacher.name)} is no longer banned."
            notice = "✅ Your teacher account has been reinstated."
        if teacher.telegram_id:
            await self.notifier.send(teacher.telegram_id, notice)
        await ctx.reply(text, reply_markup=kb.user_management_menu())
        ctx.audit_detail = f"{'banned' if teacher.banned else 'unbanned'} teacher {teacher.teacher_id}"
        ctx.finish()
