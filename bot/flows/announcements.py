"""School-wide and class announcements."""

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from database.connection import get_db_context
from services import StudentService, TeacherService, UserService

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import ADMINS, BaseHandler
from ..models import EventKind, UserRole
from ..utils import esc
from ..validators import validate_text

logger = logging.getLogger(__name__)


class AnnouncementHandler(BaseHandler):
    """Admin broadcasts to parents, teachers or one class; teacher broadcasts to a subject's parents."""

    def register(self, stage: Stage) -> None:
        stage.root.add_input(
            EventKind.TEXT, self.open_flow("announcement_recipient", *ADMINS), text=kb.ANNOUNCEMENTS
        )
        stage.root.add_input(
            EventKind.TEXT, self.open_flow("teacher_announcement", UserRole.TEACHER), text=kb.ANNOUNCE_CLASS
        )

        recipient = self.new_flow("announcement_recipient")
        recipient.on_enter(self.recipient_enter)
        recipient.add_button("announce_parents", self.choose_audience)
        recipient.add_button("announce_teachers", self.choose_audience)
        recipient.add_button("announce_class", self.choose_class_list)
        recipient.add_button(r"^announce_class_(\d+)$", self.choose_class)
        recipient.add_button("cancel_announcement", self.cancel)

        send = self.new_flow("send_announcement", requires=["audience"])
        send.on_enter(self.send_enter)
        send.add_input(EventKind.TEXT, self.send_announcement, action="send_announcement")
        send.add_button("cancel_announcement", self.cancel)

        teacher = self.new_flow("teacher_announcement")
        teacher.on_enter(self.teacher_enter)
        teacher.add_button(r"^announce_subject_(\d+)$", self.teacher_choose_subject)
        teacher.add_input(EventKind.TEXT, self.teacher_send)

        stage.register(recipient, send, teacher)

    # Admin announcements

    async def recipient_enter(self, ctx: FlowContext):
        await ctx.reply(
            "📢 Who should receive the announcement?",
            reply_markup=InlineKeyboardMarkup([
                [
                    InlineKeyboardButton("👨‍👩‍👧 Parents", callback_data="announce_parents"),
                    InlineKeyboardButton("🧑‍🏫 Teachers", callback_data="announce_teachers"),
                ],
                [InlineKeyboardButton("🏫 One class", callback_data="announce_class")],
                [InlineKeyboardButton("⬅️ Cancel", callback_data="cancel_announcement")],
            ]),
        )

    async def choose_audience(self, ctx: FlowContext):
        audience = ctx.event.callback_data.replace("announce_", "")
        ctx.update(audience=audience)
        ctx.enter("send_announcement")

    async def choose_class_list(self, ctx: FlowContext):
        async with get_db_context() as db:
            classes = await StudentService(db).class_names()
        if not classes:
            await ctx.edit("ℹ️ No classes found.")
            ctx.finish()
            return
        ctx.update(classes=classes)
        rows = [
            [InlineKeyboardButton(f"🏫 {name}", callback_data=f"announce_class_{index}")]
            for index, name in enumerate(classes)
        ]
        rows.append([InlineKeyboardButton("⬅️ Cancel", callback_data="cancel_announcement")])
        await ctx.edit("🏫 Which class?", reply_markup=InlineKeyboardMarkup(rows))

    async def choose_class(self, ctx: FlowContext):
        classes = ctx.get("classes") or []
        index = int(ctx.args[0])
        if index >= len(classes):
            await ctx.edit("❌ Unknown class. Please start again.")
            ctx.finish()
            return
        ctx.update(audience="class", class_name=classes[index])
        ctx.enter("send_announcement")

    def _audience_label(self, ctx: FlowContext) -> str:
        audience = ctx.get("audience")
        if audience == "class":
            return f"parents of class {ctx.get('class_name')}"
        return audience

    async def send_enter(self, ctx: FlowContext):
        await self.prompt(
            ctx,
            f"✍️ Please type the announcement for {esc(self._audience_label(ctx))}.",
            cancel="cancel_announcement",
        )

    async def send_announcement(self, ctx: FlowContext):
        result = validate_text(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        audience = ctx.get("audience")
        async with get_db_context() as db:
            if audience == "parents":
                recipients = [u.telegram_id for u in await UserService(db).list_by_role("parent")]
            elif audience == "teachers":
                recipients = [u.telegram_id for u in await UserService(db).list_by_role("teacher")]
            else:
                recipients = await StudentService(db).parent_ids_for_class(ctx.get("class_name"))

        if not recipients:
            await ctx.reply(f"ℹ️ There are no {esc(self._audience_label(ctx))} to notify.")
            ctx.finish()
            return
        report = await self.notifier.broadcast(recipients, f"📢 <b>Announcement</b>\n\n{esc(result.value)}")
        await ctx.reply(f"✅ Announcement sent.\n{report.summary()}")
        ctx.audit_detail = f"announcement to {self._audience_label(ctx)}: {report.sent}/{report.total} delivered"
        ctx.finish()

    # Teacher announcements

    async def teacher_enter(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            ctx.finish()
            return
        subjects = list(teacher.subjects or [])
        if not subjects:
            await ctx.reply("ℹ️ You have no subjects yet. Add one from 🧑‍🎓 My Profile.")
            ctx.finish()
            return
        ctx.update(subjects=subjects)
        rows = [
            [InlineKeyboardButton(f"📚 {subject}", callback_data=f"announce_subject_{index}")]
            for index, subject in enumerate(subjects)
        ]
        rows.append([kb.cancel_button()])
        await ctx.reply("📢 Which subject's parents should receive the announcement?", reply_markup=InlineKeyboardMarkup(rows))

    async def teacher_choose_subject(self, ctx: FlowContext):
        subjects = ctx.get("subjects") or []
        index = int(ctx.args[0])
        if index >= len(subjects):
            await ctx.edit("❌ Unknown subject. Please start again.")
            ctx.finish()
            return
        ctx.update(subject=subjects[index])
        await ctx.edit(f"✍️ Please type the announcement for your {esc(subjects[index])} students' parents.")

    async def teacher_send(self, ctx: FlowContext):
        subject = ctx.get("subject")
        if not subject:
            await ctx.reply("👆 Please choose a subject first.")
            return
        result = validate_text(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        async with get_db_context() as db:
            service = TeacherService(db)
            teacher = await service.get_by_chat(ctx.user_id)
            recipients = await service.parent_ids_for_subject(teacher, subject) if teacher else []
        if not recipients:
            await ctx.reply("ℹ️ None of your students in this subject have a linked parent.")
            ctx.finish()
            return
        report = await self.notifier.broadcast(
            recipients,
            f"📢 <b>{esc(subject)}</b> announcement from {esc(teacher.name)}\n\n{esc(result.value)}",
        )
        await ctx.reply(f"✅ Announcement sent.\n{report.summary()}")
        ctx.finish()
