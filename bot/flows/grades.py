"""Grade entry for teachers, grade viewing and reports for parents."""

import logging
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from database.connection import get_db_context
from services import ExportService, GradeService, ServiceError, StudentService, TeacherService, UserService

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import NOT_AUTHORIZED, BaseHandler, role_of
from ..models import EventKind, UserRole
from ..utils import esc, format_date, truncate_text
from ..validators import is_valid_student_id, validate_score, validate_text

logger = logging.getLogger(__name__)

MAX_STUDENT_BUTTONS = 30
MAX_PURPOSE_LENGTH = 255


def format_grades(student, grades_by_subject) -> str:
    lines = [f"🧑‍🎓 <b>{esc(student.name)}</b> ({esc(student.class_name)})"]
    if not grades_by_subject:
        lines.append("  No grades recorded yet.")
    for subject, grades in grades_by_subject.items():
        lines.append(f"📚 <b>{esc(subject)}</b>")
        for grade in grades:
            line = f"  • {grade.score}/100 {esc(grade.purpose)} ({format_date(grade.created_at)})"
            if grade.comments:
                line += f"\n    💬 {esc(truncate_text(grade.comments, 200))}"
            lines.append(line)
    return "\n".join(lines)


class GradeHandler(BaseHandler):
    """Grade entry, editing, viewing and report export."""

    def register(self, stage: Stage) -> None:
        stage.root.add_input(
            EventKind.TEXT, self.open_flow("manage_grades", UserRole.TEACHER), text=kb.MANAGE_GRADES
        )
        stage.root.add_input(EventKind.TEXT, self.view_grades, text=kb.VIEW_GRADES)
        stage.root.add_input(EventKind.TEXT, self.grade_report_menu, text=kb.GRADE_REPORT)
        stage.root.add_button(r"^grade_report_(\d{10})$", self.parent_grade_report)

        manage = self.new_flow("manage_grades")
        manage.on_enter(self.manage_enter)
        manage.add_button(r"^manage_grades_(\d{10})$", self.pick_student)
        manage.add_button(r"^select_subject_(\d+)$", self.pick_subject)
        manage.add_button(r"^edit_grade_([0-9a-f]{32})$", self.edit_grade)
        manage.add_button("new_grade", self.new_grade)
        manage.add_input(EventKind.TEXT, self.type_student)

        score = self.new_flow("enter_grade_score", requires=["student_id", "subject"])
        score.on_enter(self.score_enter)
        score.add_input(EventKind.TEXT, self.enter_score)

        purpose = self.new_flow("enter_grade_purpose", requires=["score"])
        purpose.on_enter(self.purpose_enter)
        purpose.add_input(EventKind.TEXT, self.enter_purpose)

        comments = self.new_flow("enter_grade_comments", requires=["purpose"])
        comments.on_enter(self.comments_enter)
        comments.add_button("skip_comments", self.skip_comments, action="save_grade")
        comments.add_input(EventKind.TEXT, self.enter_comments, action="save_grade")

        report = self.new_flow("grade_report")
        report.on_enter(self.report_enter)
        report.add_input(EventKind.TEXT, self.teacher_grade_report)

        stage.register(manage, score, purpose, comments, report)

    # Student and subject selection

    async def manage_enter(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            ctx.finish()
            return
        if not teacher.subjects:
            await ctx.reply("ℹ️ You have no approved subjects yet. Add one from 🧑‍🎓 My Profile.")
            ctx.finish()
            return
        async with get_db_context() as db:
            grouped = await TeacherService(db).students_by_subject(teacher)

        seen = {}
        for students in grouped.values():
            for student in students:
                seen.setdefault(student.student_id, student)
        rows = [
            [InlineKeyboardButton(f"{s.name} ({s.class_name})", callback_data=f"manage_grades_{s.student_id}")]
            for s in list(seen.values())[:MAX_STUDENT_BUTTONS]
        ]
        rows.append([kb.cancel_button()])
        await ctx.reply(
            "💯 <b>Manage Grades</b>\nChoose a student or type their 10-digit student ID.",
            reply_markup=InlineKeyboardMarkup(rows),
        )

    async def type_student(self, ctx: FlowContext):
        if not is_valid_student_id(ctx.text):
            await ctx.reply("❌ Student ID must be exactly 10 digits.")
            return
        await self._select_student(ctx, ctx.text)

    async def pick_student(self, ctx: FlowContext):
        await ctx.answer()
        await self._select_student(ctx, ctx.args[0])

    async def _select_student(self, ctx: FlowContext, student_id: str):
        async with get_db_context() as db:
            student = await StudentService(db).get_student(student_id)
            teacher = await TeacherService(db).get_by_chat(ctx.user_id)
        if student is None:
            await ctx.reply("❌ Student ID not found. Please try again.")
            return
        subjects = list(teacher.subjects or []) if teacher else []
        ctx.update(student_id=student.student_id, student_name=student.name, subjects=subjects)
        rows = [
            [InlineKeyboardButton(f"📚 {subject}", callback_data=f"select_subject_{index}")]
            for index, subject in enumerate(subjects)
        ]
        rows.append([kb.cancel_button()])
        await ctx.reply(
            f"🧑‍🎓 {esc(student.name)} ({esc(student.class_name)})\nWhich subject?",
            reply_markup=InlineKeyboardMarkup(rows),
        )

    async def pick_subject(self, ctx: FlowContext):
        subjects = ctx.get("subjects") or []
        index = int(ctx.args[0])
        if not ctx.get("student_id") or index >= len(subjects):
            await ctx.edit("❌ Selection expired. Please start again.")
            ctx.finish()
            return
        subject = subjects[index]
        ctx.update(subject=subject)

        async with get_db_context() as db:
            teacher = await TeacherService(db).get_by_chat(ctx.user_id)
            grades = await GradeService(db).grades_for_student(ctx.get("student_id"), subject)
        own = [g for g in grades if teacher and g.teacher_id == teacher.teacher_id]
        if not own:
            ctx.enter("enter_grade_score")
            return

        rows = [
            [InlineKeyboardButton(
                f"✏️ {g.score}/100 {truncate_text(g.purpose, 30)}", callback_data=f"edit_grade_{g.grade_id}"
            )]
            for g in own[-10:]
        ]
        rows.append([InlineKeyboardButton("➕ New Grade", callback_data="new_grade")])
        rows.append([kb.cancel_button()])
        await ctx.edit(
            f"📚 {esc(subject)}: existing grades for {esc(ctx.get('student_name'))}.\n"
            "Edit one or add a new grade.",
            reply_markup=InlineKeyboardMarkup(rows),
        )

    async def new_grade(self, ctx: FlowContext):
        if not ctx.get("subject"):
            await ctx.edit("❌ Selection expired. Please start again.")
            ctx.finish()
            return
        ctx.pop("grade_id")
        ctx.enter("enter_grade_score")

    async def edit_grade(self, ctx: FlowContext):
        grade_id = ctx.args[0]
        async with get_db_context() as db:
            grade = await GradeService(db).get_grade(grade_id)
            teacher = await TeacherService(db).get_by_chat(ctx.user_id)
        if grade is None or teacher is None or grade.teacher_id != teacher.teacher_id:
            await ctx.edit("❌ You can only edit grades you entered.")
            return
        ctx.update(grade_id=grade_id, student_id=grade.student_id, subject=grade.subject)
        ctx.enter("enter_grade_score")

    # Score, purpose, comments

    async def score_enter(self, ctx: FlowContext):
        verb = "new score" if ctx.get("grade_id") else "score"
        await self.prompt(
            ctx,
            f"💯 Enter the {verb} (0-100) for {esc(ctx.get('student_name', ctx.get('student_id')))} "
            f"in {esc(ctx.get('subject'))}.",
        )

    async def enter_score(self, ctx: FlowContext):
        result = validate_score(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        ctx.update(score=result.value)
        ctx.enter("enter_grade_purpose")

    async def purpose_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "📝 What is this grade for? (e.g. Midterm exam, Homework 3)")

    async def enter_purpose(self, ctx: FlowContext):
        result = validate_text(ctx.text, max_length=MAX_PURPOSE_LENGTH)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        ctx.update(purpose=result.value)
        ctx.enter("enter_grade_comments")

    async def comments_enter(self, ctx: FlowContext):
        await ctx.reply(
            "💬 Add a comment for the parent, or skip.",
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton("⏭️ Skip", callback_data="skip_comments")],
                [kb.cancel_button()],
            ]),
        )

    async def enter_comments(self, ctx: FlowContext):
        result = validate_text(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        await self._save_grade(ctx, result.value)

    async def skip_comments(self, ctx: FlowContext):
        await ctx.answer()
        await self._save_grade(ctx, None)

    async def _save_grade(self, ctx: FlowContext, comments: Optional[str]):
        student_id = ctx.get("student_id")
        subject = ctx.get("subject")
        score = ctx.get("score")
        purpose = ctx.get("purpose")
        grade_id = ctx.get("grade_id")
        try:
            async with get_db_context() as db:
                teacher = await TeacherService(db).get_by_chat(ctx.user_id)
                if teacher is None:
                    await ctx.reply("❌ No teacher profile is linked to this account.")
                    ctx.finish()
                    return
                grades = GradeService(db)
                if grade_id:
                    await grades.update_grade(grade_id, teacher.teacher_id, score, purpose, comments)
                else:
                    await grades.add_grade(student_id, teacher.teacher_id, subject, score, purpose, comments)
                student = await StudentService(db).get_student(student_id)
        except ServiceError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            ctx.finish()
            return

        verb = "updated" if grade_id else "saved"
        await ctx.reply(f"✅ Grade {verb}: {score}/100 in {esc(subject)} ({esc(purpose)}).")
        ctx.audit_detail = f"grade {verb} for {student_id} in {subject}: {score}"
        if student is not None and student.parent_id:
            text = (
                f"💯 <b>{'Updated' if grade_id else 'New'} grade</b> for {esc(student.name)}\n"
                f"📚 {esc(subject)}: <b>{score}/100</b>\n📝 {esc(purpose)}"
            )
            if comments:
                text += f"\n💬 {esc(comments)}"
            text += f"\n🧑‍🏫 {esc(teacher.name)}"
            await self.notifier.send(student.parent_id, text)
        ctx.finish()

    # Viewing and reports

    async def view_grades(self, ctx: FlowContext):
        user = await self.require_role(ctx, UserRole.PARENT)
        if not user:
            return
        async with get_db_context() as db:
            students = await UserService(db).students_for_parent(ctx.user_id)
            grades = GradeService(db)
            sections = [format_grades(s, await grades.grades_by_subject(s.student_id)) for s in students]
        if not sections:
            await ctx.reply("ℹ️ No linked students yet. Use 🔗 Link Another Student to add one.")
            return
        for section in sections:
            await ctx.reply(section)

    async def grade_report_menu(self, ctx: FlowContext):
        user = await self.load_user(ctx)
        role = role_of(user)
        if role == UserRole.TEACHER:
            ctx.enter("grade_report")
            return
        if role != UserRole.PARENT:
            await ctx.reply(NOT_AUTHORIZED)
            return
        async with get_db_context() as db:
            students = await UserService(db).students_for_parent(ctx.user_id)
        if not students:
            await ctx.reply("ℹ️ No linked students yet.")
            return
        rows = [
            [InlineKeyboardButton(f"📄 {s.name}", callback_data=f"grade_report_{s.student_id}")]
            for s in students
        ]
        await ctx.reply("📄 Which student's report would you like?", reply_markup=InlineKeyboardMarkup(rows))

    async def parent_grade_report(self, ctx: FlowContext):
        student_id = ctx.args[0]
        async with get_db_context() as db:
            students = await UserService(db).students_for_parent(ctx.user_id)
        if student_id not in [s.student_id for s in students]:
            await ctx.answer(NOT_AUTHORIZED)
            return
        await ctx.answer()
        await self._send_report(ctx, student_id)

    async def report_enter(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            ctx.finish()
            return
        await self.prompt(ctx, "🆔 Please provide the student ID for the grade report.")

    async def teacher_grade_report(self, ctx: FlowContext):
        if not is_valid_student_id(ctx.text):
            await ctx.reply("❌ Student ID must be exactly 10 digits.")
            return
        async with get_db_context() as db:
            teacher = await TeacherService(db).get_by_chat(ctx.user_id)
            teaches = teacher is not None and await TeacherService(db).teaches_student(teacher, ctx.text)
        if not teaches:
            await ctx.reply("❌ You can only export reports for students on your lists.")
            return
        await self._send_report(ctx, ctx.text)
        ctx.finish()

    async def _send_report(self, ctx: FlowContext, student_id: str):
        async with get_db_context() as db:
            student = await StudentService(db).get_student(student_id)
            grouped = await GradeService(db).grades_by_subject(student_id) if student else {}
        if student is None:
            await ctx.reply("❌ Student ID not found.")
            return
        content = ExportService.grade_report(student, grouped)
        await ctx.reply_document(
            content.encode("utf-8"),
            filename=f"grade_report_{student.student_id}.txt",
            caption=f"📄 Grade report for {esc(student.name)}",
        )