"""Class attendance registers."""

import logging
from datetime import date
from typing import List

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from database.connection import get_db_context
from services import ABSENT, AttendanceService, Delivery, ExportService, ServiceError, StudentService, TeacherService
from services.helpers import school_today

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import ADMINS, BaseHandler, role_of
from ..models import EventKind, UserRole
from ..utils import esc

logger = logging.getLogger(__name__)

HISTORY_EXPORT_LIMIT = 30


def register_markup(roster: List[List[str]], absent: List[str]) -> InlineKeyboardMarkup:
    """One toggle button per student, then submit and cancel."""
    rows = []
    for index, (student_id, name) in enumerate(roster):
        mark = "❌" if student_id in absent else "✅"
        rows.append([InlineKeyboardButton(f"{mark} {name}", callback_data=f"attendance_toggle_{index}")])
    rows.append([InlineKeyboardButton("💾 Submit", callback_data="attendance_submit")])
    rows.append([kb.cancel_button()])
    return InlineKeyboardMarkup(rows)


class AttendanceHandler(BaseHandler):
    """Take a class register, notify absentees' parents and export history."""

    def register(self, stage: Stage) -> None:
        stage.root.add_input(
            EventKind.TEXT,
            self.open_flow("attendance", UserRole.ADMIN, UserRole.MASTER_ADMIN, UserRole.TEACHER),
            text=kb.ATTENDANCE,
        )

        flow = self.new_flow("attendance")
        flow.on_enter(self.attendance_enter)
        flow.add_button(r"^attendance_class_(\d+)$", self.pick_class)
        flow.add_button(r"^attendance_toggle_(\d+)$", self.toggle)
        flow.add_button("attendance_submit", self.submit, action="take_attendance")
        flow.add_button("attendance_notify", self.notify_parents, action="notify_absentees")
        flow.add_button("attendance_export", self.export)
        flow.add_button("attendance_done", self.done)
        stage.register(flow)

    async def attendance_enter(self, ctx: FlowContext):
        user = await self.load_user(ctx)
        role = role_of(user)
        async with get_db_context() as db:
            if role in ADMINS:
                classes = await StudentService(db).class_names()
                taken_by = "admin"
            else:
                service = TeacherService(db)
                teacher = await service.get_by_chat(ctx.user_id)
                if teacher is None or teacher.banned:
                    await ctx.reply("❌ Attendance is not available for this account.")
                    ctx.finish()
                    return
                classes = await service.class_names(teacher)
                taken_by = teacher.teacher_id
        if not classes:
            await ctx.reply("ℹ️ No classes available. Teachers see the classes of students on their lists.")
            ctx.finish()
            return
        ctx.update(classes=classes, taken_by=taken_by)
        rows = [
            [InlineKeyboardButton(f"🏫 {name}", callback_data=f"attendance_class_{index}")]
            for index, name in enumerate(classes)
        ]
        rows.append([kb.cancel_button()])
        await ctx.reply("🗓️ <b>Attendance</b>\nWhich class?", reply_markup=InlineKeyboardMarkup(rows))

    async def pick_class(self, ctx: FlowContext):
        classes = ctx.get("classes") or []
        index = int(ctx.args[0])
        if index >= len(classes):
            await ctx.edit("❌ Unknown class. Please start again.")
            ctx.finish()
            return
        class_name = classes[index]
        async with get_db_context() as db:
            students = await AttendanceService(db).roster(class_name)
        if not students:
            await ctx.edit(f"ℹ️ Class {esc(class_name)} has no students.")
            ctx.finish()
            return
        roster = [[s.student_id, s.name] for s in students]
        ctx.update(class_name=class_name, roster=roster, absent=[])
        await ctx.edit(
            f"🗓️ {esc(class_name)}: tap a student to mark them absent, then submit.",
            reply_markup=register_markup(roster, []),
        )

    async def toggle(self, ctx: FlowContext):
        roster = ctx.get("roster") or []
        index = int(ctx.args[0])
        if index >= len(roster):
            await ctx.answer("Selection expired.")
            return
        absent = list(ctx.get("absent") or [])
        student_id = roster[index][0]
        if student_id in absent:
            absent.remove(student_id)
        else:
            absent.append(student_id)
        ctx.update(absent=absent)
        await ctx.answer()
        await ctx.edit(
            f"🗓️ {esc(ctx.get('class_name'))}: {len(absent)} absent of {len(roster)}.",
            reply_markup=register_markup(roster, absent),
        )

    async def submit(self, ctx: FlowContext):
        class_name = ctx.get("class_name")
        if not class_name:
            await ctx.edit("❌ Selection expired. Please start again.")
            ctx.finish()
            return
        day = school_today(self.settings.school_timezone)
        try:
            async with get_db_context() as db:
                register = await AttendanceService(db).save(
                    class_name, day, ctx.get("taken_by") or "admin", ctx.get("absent") or []
                )
                absent_count = sum(1 for r in register.records if r["status"] == ABSENT)
                total = len(register.records)
        except ServiceError as e:
            await ctx.edit(f"❌ {esc(e.message)}")
            ctx.finish()
            return

        ctx.update(day=day.isoformat())
        ctx.audit_detail = f"attendance for {class_name} on {day}: {absent_count}/{total} absent"
        rows = []
        if absent_count:
            rows.append([InlineKeyboardButton("📨 Notify Parents of Absentees", callback_data="attendance_notify")])
        rows.append([InlineKeyboardButton("📤 Export History (CSV)", callback_data="attendance_export")])
        rows.append([InlineKeyboardButton("✅ Done", callback_data="attendance_done")])
        await ctx.edit(
            f"✅ Attendance saved for {esc(class_name)} on {day:%d %b %Y}.\n"
            f"Present: {total - absent_count} | Absent: {absent_count}",
            reply_markup=InlineKeyboardMarkup(rows),
        )

    async def notify_parents(self, ctx: FlowContext):
        class_name = ctx.get("class_name")
        day = ctx.get("day")
        if not class_name or not day:
            await ctx.answer("Submit the register first.")
            return
        async with get_db_context() as db:
            service = AttendanceService(db)
            register = await service.get(class_name, date.fromisoformat(day))
            if register is None:
                await ctx.answer("Register not found.")
                return
            if register.parents_notified:
                await ctx.answer("Parents were already notified.")
                return
            parents = await service.absentee_parents(register)
            await service.mark_notified(register)

        sent = 0
        for parent_id, names in parents.items():
            text = (
                f"🗓️ <b>Attendance notice</b>\n"
                f"{esc(', '.join(names))} was marked absent from {esc(class_name)} on {esc(day)}.\n"
                "Please contact the school if this is unexpected."
            )
            if await self.notifier.send(parent_id, text) == Delivery.SENT:
                sent += 1
        await ctx.answer()
        await ctx.reply(f"📨 Notified {sent} of {len(parents)} parent(s).")
        ctx.audit_detail = f"absence notices for {class_name} on {day}: {sent}/{len(parents)}"

    async def export(self, ctx: FlowContext):
        class_name = ctx.get("class_name")
        if not class_name:
            await ctx.answer("Selection expired.")
            return
        async with get_db_context() as db:
            registers = await AttendanceService(db).history(class_name, limit=HISTORY_EXPORT_LIMIT)
        await ctx.answer()
        content = ExportService.attendance_csv(registers)
        filename = f"attendance_{class_name.replace(' ', '_')}.csv"
        await ctx.reply_document(content.encode("utf-8"), filename=filename, caption=f"🗓️ {esc(class_name)}")

    async def done(self, ctx: FlowContext):
        await ctx.answer()
        await ctx.edit("✅ Attendance closed.")
        ctx.finish()
