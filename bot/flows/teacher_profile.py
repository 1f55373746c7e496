"""Profiles, subjects, schedules and teacher rosters."""

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from database.connection import get_db_context
from services import ServiceError, StudentService, TeacherService, UserService

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import NOT_AUTHORIZED, BaseHandler, role_of
from ..models import EventKind, UserRole
from ..utils import bullet_list, esc
from ..validators import is_valid_student_id, validate_subject

logger = logging.getLogger(__name__)


class ProfileHandler(BaseHandler):
    """Profile pages for parents and teachers, subject requests and class lists."""

    def register(self, stage: Stage) -> None:
        stage.root.add_input(EventKind.TEXT, self.my_profile, text=kb.MY_PROFILE)
        stage.root.add_input(EventKind.TEXT, self.schedule, text=kb.SCHEDULE)
        stage.root.add_input(EventKind.TEXT, self.my_students, text=kb.MY_STUDENTS)
        stage.root.add_button("view_linked_children", self.view_linked_children)
        stage.root.add_button("add_new_subject", self.open_flow("add_subject", UserRole.TEACHER))
        stage.root.add_button("remove_subject", self.open_flow("remove_subject", UserRole.TEACHER))
        stage.root.add_button("teacher_add_student", self.open_flow("teacher_add_student", UserRole.TEACHER))

        add_subject = self.new_flow("add_subject")
        add_subject.on_enter(self.add_subject_enter)
        add_subject.add_input(EventKind.TEXT, self.request_subject, action="request_subject")

        remove_subject = self.new_flow("remove_subject")
        remove_subject.on_enter(self.remove_subject_enter)
        remove_subject.add_button(r"^remove_subject_(\d+)$", self.remove_subject, action="remove_subject")

        add_student = self.new_flow("teacher_add_student")
        add_student.on_enter(self.add_student_enter)
        add_student.add_input(EventKind.TEXT, self.add_student_lookup)
        add_student.add_button(r"^add_student_to_subject_(\d+)$", self.add_student_to_subject)
        add_student.add_button("add_student_all_subjects", self.add_student_to_subject)

        stage.register(add_subject, remove_subject, add_student)

    # Profile pages

    async def my_profile(self, ctx: FlowContext):
        user = await self.load_user(ctx)
        role = role_of(user)
        if role == UserRole.TEACHER:
            async with get_db_context() as db:
                teacher = await TeacherService(db).get_by_chat(ctx.user_id)
            if teacher is None:
                await ctx.reply("❌ No teacher profile is linked to this account.")
                return
            pending = teacher.pending_subjects or []
            text = (
                f"🧑‍🏫 <b>{esc(teacher.name)}</b>\n"
                f"🆔 Teacher ID: <code>{teacher.teacher_id}</code>\n"
                f"📚 Subjects: {esc(', '.join(teacher.subjects or []) or 'None')}"
            )
            if pending:
                text += f"\n⏳ Pending: {esc(', '.join(pending))}"
            if teacher.banned:
                text += "\n🚫 Account suspended"
            await ctx.reply(text, reply_markup=kb.teacher_profile_menu())
        elif role == UserRole.PARENT:
            async with get_db_context() as db:
                students = await UserService(db).students_for_parent(ctx.user_id)
            await ctx.reply(
                f"👤 <b>{esc(user.name)}</b>\n🧑‍🎓 Linked students: {len(students)}",
                reply_markup=kb.parent_profile_menu(),
            )
        else:
            await ctx.reply(NOT_AUTHORIZED)

    async def view_linked_children(self, ctx: FlowContext):
        if not await self.require_role(ctx, UserRole.PARENT):
            return
        await ctx.answer()
        async with get_db_context() as db:
            students = await UserService(db).students_for_parent(ctx.user_id)
        lines = [f"{esc(s.name)} ({esc(s.class_name)}) <code>{s.student_id}</code>" for s in students]
        await ctx.edit(
            "🔗 <b>Linked students</b>\n" + bullet_list(lines, empty="No linked students yet."),
            reply_markup=kb.parent_profile_menu(),
        )

    async def schedule(self, ctx: FlowContext):
        if not await self.require_role(ctx, UserRole.PARENT):
            return
        async with get_db_context() as db:
            students = await UserService(db).students_for_parent(ctx.user_id)
        if not students:
            await ctx.reply("ℹ️ No linked students yet.")
            return
        for student in students:
            entries = [f"{esc(day.title())}: {esc(slot)}" for day, slot in (student.schedule or {}).items()]
            await ctx.reply(
                f"🗓️ <b>Schedule for {esc(student.name)}</b> ({esc(student.class_name)})\n"
                + bullet_list(entries, empty="No schedule published yet.")
            )

    # Subjects

    async def add_subject_enter(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            ctx.finish()
            return
        await self.prompt(ctx, "📚 Please type the subject you want to add. An admin will verify it.")

    async def request_subject(self, ctx: FlowContext):
        result = validate_subject(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        subject = result.value
        try:
            async with get_db_context() as db:
                service = TeacherService(db)
                teacher = await service.get_by_chat(ctx.user_id)
                if teacher is None:
                    await ctx.reply("❌ No teacher profile is linked to this account.")
                    ctx.finish()
                    return
                await service.request_subject(teacher, subject)
        except ServiceError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            ctx.finish()
            return

        await self.notify_admins(
            f"📚 <b>Subject request</b>\nTeacher {esc(teacher.name)} (<code>{teacher.teacher_id}</code>) "
            f"wants to add: <b>{esc(subject)}</b>",
            reply_markup=kb.approval_buttons("subject", teacher.teacher_id, subject),
        )
        await ctx.reply(f"⏳ Your request to add {esc(subject)} was sent for verification.")
        ctx.audit_detail = f"subject requested: {subject}"
        ctx.finish()

    async def remove_subject_enter(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            ctx.finish()
            return
        subjects = list(teacher.subjects or [])
        if not subjects:
            await ctx.reply("ℹ️ You have no subjects to remove.")
            ctx.finish()
            return
        ctx.update(subjects=subjects)
        rows = [
            [InlineKeyboardButton(f"➖ {subject}", callback_data=f"remove_subject_{index}")]
            for index, subject in enumerate(subjects)
        ]
        rows.append([kb.cancel_button()])
        await ctx.reply("📚 Which subject do you want to remove?", reply_markup=InlineKeyboardMarkup(rows))

    async def remove_subject(self, ctx: FlowContext):
        subjects = ctx.get("subjects") or []
        index = int(ctx.args[0])
        if index >= len(subjects):
            await ctx.edit("❌ Selection expired. Please start again.")
            ctx.finish()
            return
        subject = subjects[index]
        try:
            async with get_db_context() as db:
                service = TeacherService(db)
                teacher = await service.get_by_chat(ctx.user_id)
                await service.remove_subject(teacher, subject)
        except ServiceError as e:
            await ctx.edit(f"❌ {esc(e.message)}")
            ctx.finish()
            return
        await ctx.edit(f"✅ {esc(subject)} removed from your subjects.")
        ctx.audit_detail = f"subject removed: {subject}"
        ctx.finish()

    # Class lists

    async def my_students(self, ctx: FlowContext):
        if not await self.require_role(ctx, UserRole.TEACHER):
            return
        async with get_db_context() as db:
            service = TeacherService(db)
            teacher = await service.get_by_chat(ctx.user_id)
            grouped = await service.students_by_subject(teacher) if teacher else {}
        if teacher is None:
            await ctx.reply("❌ No teacher profile is linked to this account.")
            return
        sections = []
        for subject, students in grouped.items():
            lines = [f"{esc(s.name)} ({esc(s.class_name)}) <code>{s.student_id}</code>" for s in students]
            sections.append(f"📚 <b>{esc(subject)}</b>\n" + bullet_list(lines))
        body = "\n\n".join(sections) if sections else "No students on your lists yet."
        await ctx.reply(
            f"📚 <b>My Students</b>\n\n{body}",
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton("➕ Add Student", callback_data="teacher_add_student")],
            ]),
        )

    async def add_student_enter(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            ctx.finish()
            return
        if not teacher.subjects:
            await ctx.reply("ℹ️ You need an approved subject before adding students.")
            ctx.finish()
            return
        ctx.update(subjects=list(teacher.subjects))
        await self.prompt(ctx, "🆔 Please provide the student ID to add to your list.")

    async def add_student_lookup(self, ctx: FlowContext):
        if not is_valid_student_id(ctx.text):
            await ctx.reply("❌ Student ID must be exactly 10 digits.")
            return
        async with get_db_context() as db:
            student = await StudentService(db).get_student(ctx.text)
        if student is None:
            await ctx.reply("❌ Student ID not found. Please try again.")
            return
        ctx.update(student_id=student.student_id)
        subjects = ctx.get("subjects") or []
        rows = [
            [InlineKeyboardButton(f"📚 {subject}", callback_data=f"add_student_to_subject_{index}")]
            for index, subject in enumerate(subjects)
        ]
        if len(subjects) > 1:
            rows.append([InlineKeyboardButton("📚 All my subjects", callback_data="add_student_all_subjects")])
        rows.append([kb.cancel_button()])
        await ctx.reply(
            f"🧑‍🎓 {esc(student.name)} ({esc(student.class_name)})\nAdd to which subject?",
            reply_markup=InlineKeyboardMarkup(rows),
        )

    async def add_student_to_subject(self, ctx: FlowContext):
        subjects = ctx.get("subjects") or []
        student_id = ctx.get("student_id")
        if ctx.args:
            index = int(ctx.args[0])
            chosen = subjects[index:index + 1]
        else:
            chosen = subjects
        if not student_id or not chosen:
            await ctx.edit("❌ Selection expired. Please start again.")
            ctx.finish()
            return

        added = []
        async with get_db_context() as db:
            service = TeacherService(db)
            teacher = await service.get_by_chat(ctx.user_id)
            student = await StudentService(db).get_student(student_id)
            if teacher is None or student is None:
                await ctx.edit("❌ Student or teacher profile not found.")
                ctx.finish()
                return
            for subject in chosen:
                if await service.link_student(teacher, student, subject):
                    added.append(subject)

        if added:
            await ctx.edit(f"✅ {esc(student.name)} added to: {esc(', '.join(added))}.")
        else:
            await ctx.edit(f"ℹ️ {esc(student.name)} is already on those lists.")
        ctx.finish()
