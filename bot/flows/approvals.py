"""Approve/deny buttons sent to admins."""

import logging

from database.connection import get_db_context
from services import ServiceError, TeacherService, UserService

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import ADMINS, BaseHandler
from ..utils import esc, unpack

logger = logging.getLogger(__name__)


class ApprovalHandler(BaseHandler):
    """Parent links, extra subjects and teacher registrations awaiting an admin decision."""

    def register(self, stage: Stage) -> None:
        stage.root.add_button(r"^(approve|deny)_parent_(\d+)_(\d{10})$", self.decide_parent_link)
        stage.root.add_button(r"^(approve|deny)_subject_(\d{10})_(.+)$", self.decide_subject)
        stage.root.add_button(r"^(approve|deny)_registration_(\d+)$", self.decide_registration)

    async def _fail(self, ctx: FlowContext, error: ServiceError):
        await ctx.answer(error.message)
        await ctx.edit(f"⚠️ {esc(error.message)}")

    async def decide_parent_link(self, ctx: FlowContext):
        admin = await self.require_role(ctx, *ADMINS)
        if not admin:
            return
        decision, parent_id, student_id = ctx.args
        parent_id = int(parent_id)
        try:
            async with get_db_context() as db:
                service = UserService(db)
                if decision == "approve":
                    student = await service.approve_parent_link(parent_id, student_id)
                else:
                    student = await service.deny_parent_link(parent_id, student_id)
        except ServiceError as e:
            await self._fail(ctx, e)
            return

        if decision == "approve":
            await self.notifier.send(
                parent_id,
                f"✅ Your request to link {esc(student.name)} has been approved!",
                reply_markup=kb.parent_menu(),
            )
            await ctx.edit(f"✅ Parent <code>{parent_id}</code> linked to {esc(student.name)} (<code>{student_id}</code>).")
        else:
            await self.notifier.send(
                parent_id,
                f"❌ Your request to link student <code>{student_id}</code> was denied. Please contact the school.",
            )
            await ctx.edit(f"❌ Parent link request from <code>{parent_id}</code> for <code>{student_id}</code> denied.")
        ctx.audit_detail = f"{decision} parent {parent_id} for student {student_id}"

    async def decide_subject(self, ctx: FlowContext):
        admin = await self.require_role(ctx, *ADMINS)
        if not admin:
            return
        decision, teacher_id, raw_subject = ctx.args
        subject = unpack(raw_subject)
        try:
            async with get_db_context() as db:
                service = TeacherService(db)
                if decision == "approve":
                    teacher = await service.approve_subject(teacher_id, subject)
                else:
                    teacher = await service.deny_subject(teacher_id, subject)
        except ServiceError as e:
            await self._fail(ctx, e)
            return

        verdict = "approved ✅" if decision == "approve" else "denied ❌"
        if teacher.telegram_id:
            await self.notifier.send(teacher.telegram_id, f"📚 Your request to teach {esc(subject)} was {verdict}.")
        await ctx.edit(f"📚 Subject {esc(subject)} for {esc(teacher.name)} (<code>{teacher_id}</code>) {verdict}.")
        ctx.audit_detail = f"{decision} subject {subject} for teacher {teacher_id}"

    async def decide_registration(self, ctx: FlowContext):
        admin = await self.require_role(ctx, *ADMINS)
        if not admin:
            return
        decision, chat_id = ctx.args
        chat_id = int(chat_id)
        try:
            async with get_db_context() as db:
                service = TeacherService(db)
                if decision == "approve":
                    teacher = await service.approve_registration(chat_id)
                else:
                    await service.deny_registration(chat_id)
        except ServiceError as e:
            await self._fail(ctx, e)
            return

        if decision == "approve":
            await self.notifier.send(
                chat_id,
                "🎉 Your teacher registration was approved!\n"
                f"Your teacher ID is <code>{teacher.teacher_id}</code>.",
                reply_markup=kb.teacher_menu(),
            )
            await ctx.edit(f"✅ Teacher {esc(teacher.name)} registered as <code>{teacher.teacher_id}</code>.")
            ctx.audit_detail = f"approved teacher registration {teacher.teacher_id} for chat {chat_id}"
        else:
            await self.notifier.send(chat_id, "❌ Your teacher registration was not approved. Please contact the school.")
            await ctx.edit(f"❌ Teacher registration from <code>{chat_id}</code> denied.")
            ctx.audit_detail = f"denied teacher registration for chat {chat_id}"
