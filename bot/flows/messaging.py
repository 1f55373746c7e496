"""Direct messages between teachers, parents and admins."""

import logging

from database.connection import get_db_context
from services import Delivery, StudentService, TeacherService

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import BaseHandler
from ..models import EventKind, UserRole
from ..utils import esc
from ..validators import is_valid_student_id, validate_text

logger = logging.getLogger(__name__)


class MessagingHandler(BaseHandler):
    """Teacher to parent and parent to admin messages."""

    def register(self, stage: Stage) -> None:
        stage.root.add_input(
            EventKind.TEXT, self.open_flow("contact_parent", UserRole.TEACHER), text=kb.CONTACT_PARENT
        )
        stage.root.add_input(
            EventKind.TEXT, self.open_flow("contact_admin", UserRole.PARENT), text=kb.CONTACT_ADMIN
        )

        contact_parent = self.new_flow("contact_parent")
        contact_parent.on_enter(self.contact_parent_enter)
        contact_parent.add_input(EventKind.TEXT, self.contact_parent_lookup)

        send_message = self.new_flow("send_message", requires=["parent_id", "student_name"])
        send_message.on_enter(self.send_message_enter)
        send_message.add_input(EventKind.TEXT, self.send_message)

        contact_admin = self.new_flow("contact_admin")
        contact_admin.on_enter(self.contact_admin_enter)
        contact_admin.add_input(EventKind.TEXT, self.contact_admin)

        stage.register(contact_parent, send_message, contact_admin)

    async def contact_parent_enter(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            ctx.finish()
            return
        await self.prompt(ctx, "🆔 Please provide the student ID whose parent you want to message.")

    async def contact_parent_lookup(self, ctx: FlowContext):
        if not is_valid_student_id(ctx.text):
            await ctx.reply("❌ Student ID must be exactly 10 digits.")
            return
        async with get_db_context() as db:
            student = await StudentService(db).get_student(ctx.text)
            teacher = await TeacherService(db).get_by_chat(ctx.user_id)
            teaches = bool(student and teacher) and await TeacherService(db).teaches_student(teacher, student.student_id)
        if student is None:
            await ctx.reply("❌ Student ID not found. Please try again.")
            return
        if not teaches:
            await ctx.reply("❌ You can only contact parents of students on your lists.")
            ctx.finish()
            return
        if student.parent_id is None:
            await ctx.reply("ℹ️ This student has no linked parent yet.")
            ctx.finish()
            return
        ctx.update(parent_id=student.parent_id, student_name=student.name, teacher_name=teacher.name)
        ctx.enter("send_message")

    async def send_message_enter(self, ctx: FlowContext):
        await self.prompt(ctx, f"✍️ Type your message to the parent of {esc(ctx.get('student_name'))}.")

    async def send_message(self, ctx: FlowContext):
        result = validate_text(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        outcome = await self.notifier.send(
            ctx.get("parent_id"),
            f"💬 <b>Message from teacher {esc(ctx.get('teacher_name'))}</b> "
            f"about {esc(ctx.get('student_name'))}:\n\n{esc(result.value)}",
        )
        if outcome == Delivery.SENT:
            await ctx.reply("✅ Message sent.")
        elif outcome == Delivery.BLOCKED:
            await ctx.reply("🚫 The parent has blocked the bot; the message could not be delivered.")
        else:
            await ctx.reply("❌ The message could not be delivered. Please try again later.")
        ctx.finish()

    async def contact_admin_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "✍️ Type your message to the school admins.")

    async def contact_admin(self, ctx: FlowContext):
        result = validate_text(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        report = await self.notify_admins(
            f"💬 <b>Message from parent {esc(ctx.event.first_name)}</b> (<code>{ctx.user_id}</code>):\n\n"
            f"{esc(result.value)}"
        )
        if report.sent:
            await ctx.reply("✅ Your message was sent to the admins.")
        else:
            await ctx.reply("❌ Your message could not be delivered. Please try again later.")
        ctx.finish()
