"""Master-admin oversight panel."""

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from database.connection import get_db_context
from services import ActivityService, AttendanceService, GradeService, StudentService, TeacherService, UserService
from workers.cleanup_worker import purge_old_records

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import BaseHandler
from ..models import EventKind, UserRole
from ..utils import Page, bullet_list, esc, pagination_row, truncate_text

logger = logging.getLogger(__name__)


class MasterAdminHandler(BaseHandler):
    """Activity review, log export, statistics and the retention purge."""

    def register(self, stage: Stage) -> None:
        stage.root.add_input(EventKind.TEXT, self.open_flow("master_panel", UserRole.MASTER_ADMIN), text=kb.MASTER_PANEL)

        panel = self.new_flow("master_panel")
        panel.on_enter(self.panel_enter)
        panel.add_button(r"^master_activity_(\d+)$", self.activity)
        panel.add_button("master_export", self.export_activity)
        panel.add_button("master_stats", self.stats)
        panel.add_button("master_purge", self.purge_prompt)
        panel.add_button("master_purge_confirm", self.purge, action="purge_records")
        panel.add_button("master_back", self.back)
        panel.add_button("master_close", self.close)
        stage.register(panel)

    async def panel_enter(self, ctx: FlowContext):
        await ctx.reply("🛡️ <b>Master Panel</b>", reply_markup=kb.master_menu())

    async def back(self, ctx: FlowContext):
        await ctx.answer()
        await ctx.edit("🛡️ <b>Master Panel</b>", reply_markup=kb.master_menu())

    async def activity(self, ctx: FlowContext):
        await ctx.answer()
        async with get_db_context() as db:
            entries = await ActivityService(db, self.settings.activity_log_cap).recent()
        page = Page.clamp(int(ctx.args[0]), self.page_size, len(entries))
        shown = entries[page.offset:page.offset + page.size]
        lines = [
            f"{esc(e['at'])} {esc(e.get('admin_name') or e['admin_id'])}: "
            f"{esc(e['action'])} {esc(truncate_text(e.get('detail', ''), 80))}"
            for e in shown
        ]
        rows = []
        nav = pagination_row("master_activity", page)
        if nav:
            rows.append(nav)
        rows.append([InlineKeyboardButton("⬅️ Back", callback_data="master_back")])
        await ctx.edit(
            f"📜 <b>Admin activity</b> ({page.total})\n\n" + bullet_list(lines, empty="No activity recorded."),
            reply_markup=InlineKeyboardMarkup(rows),
        )

    async def export_activity(self, ctx: FlowContext):
        await ctx.answer()
        async with get_db_context() as db:
            entries = await ActivityService(db, self.settings.activity_log_cap).recent()
        path = self.exports.write("admin_activity", self.exports.activity_log(entries))
        await ctx.reply_document(path.read_bytes(), filename=path.name, caption=f"📤 {len(entries)} entries")
        ctx.audit_detail = f"exported {len(entries)} activity entries"

    async def stats(self, ctx: FlowContext):
        await ctx.answer()
        async with get_db_context() as db:
            roles = await UserService(db).role_counts()
            students = await StudentService(db).count_students()
            teachers = await TeacherService(db).count_teachers()
            grades = await GradeService(db).count()
            registers = await AttendanceService(db).count()
        role_lines = [f"{esc(role)}: {total}" for role, total in sorted(roles.items())]
        await ctx.edit(
            "📊 <b>Statistics</b>\n\n"
            f"👥 Users by role\n{bullet_list(role_lines)}\n\n"
            f"🧑‍🎓 Students: {students}\n"
            f"🧑‍🏫 Teachers: {teachers}\n"
            f"💯 Grades: {grades}\n"
            f"🗓️ Attendance records: {registers}",
            reply_markup=InlineKeyboardMarkup([[InlineKeyboardButton("⬅️ Back", callback_data="master_back")]]),
        )

    async def purge_prompt(self, ctx: FlowContext):
        await ctx.answer()
        await ctx.edit(
            f"🧹 Delete attendance records and closed tutor requests older than "
            f"{self.settings.data_retention_days} days?",
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton("✅ Purge", callback_data="master_purge_confirm")],
                [InlineKeyboardButton("⬅️ Back", callback_data="master_back")],
            ]),
        )

    async def purge(self, ctx: FlowContext):
        await ctx.answer()
        removed = await purge_old_records(self.settings)
        await ctx.edit(
            "🧹 Purge complete.\n"
            f"Attendance records: {removed['attendance']}\n"
            f"Tutor requests: {removed['tutor_requests']}",
            reply_markup=kb.master_menu(),
        )
        ctx.audit_detail = f"retention purge: {removed}"

    async def close(self, ctx: FlowContext):
        await ctx.answer()
        await ctx.edit("🛡️ Master Panel closed.")
        ctx.finish()
