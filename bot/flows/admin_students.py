"""Admin student management."""

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from database.connection import get_db_context
from services import NotFoundError, ServiceError, StudentService, UserService
from services.student_service import parse_student_file

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import ADMINS, BaseHandler
from ..models import EventKind
from ..utils import Page, bullet_list, esc, pagination_row
from ..validators import is_valid_student_id, is_valid_telegram_id, validate_class_name, validate_name

logger = logging.getLogger(__name__)


def _confirm_markup(payload: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("✅ Confirm", callback_data=payload)],
        [kb.cancel_button()],
    ])


class StudentAdminHandler(BaseHandler):
    """Add, import, edit and remove students; unbind parents; delete whole classes."""

    def register(self, stage: Stage) -> None:
        root = stage.root
        root.add_input(EventKind.TEXT, self.show_menu_panel, text=kb.STUDENTS)
        root.add_input(EventKind.TEXT, self.open_flow("add_student", *ADMINS), text=kb.ADD_STUDENT)
        root.add_input(EventKind.TEXT, self.open_flow("remove_student", *ADMINS), text=kb.REMOVE_STUDENT)
        root.add_input(EventKind.TEXT, self.open_flow("edit_student", *ADMINS), text=kb.EDIT_STUDENT)
        root.add_input(EventKind.TEXT, self.open_flow("upload_student_db", *ADMINS), text=kb.UPLOAD_STUDENT_DB)
        root.add_input(EventKind.TEXT, self.open_flow("unbind_parent", *ADMINS), text=kb.UNBIND_PARENT)
        root.add_input(EventKind.TEXT, self.open_flow("delete_class", *ADMINS), text=kb.DELETE_CLASS)
        root.add_input(EventKind.TEXT, self.view_students, text=kb.VIEW_STUDENTS)
        root.add_button(r"^students_page_(\d+)$", self.view_students)

        add = self.new_flow("add_student")
        add.on_enter(self.add_student_enter)
        add.add_input(EventKind.TEXT, self.add_student_name)

        add_class = self.new_flow("add_student_class", requires=["student_name"])
        add_class.on_enter(self.add_student_class_enter)
        add_class.add_input(EventKind.TEXT, self.add_student_class, action="create_student")

        upload = self.new_flow("upload_student_db")
        upload.on_enter(self.upload_enter)
        upload.add_input(EventKind.DOCUMENT, self.upload_document, action="import_students")
        upload.add_input(EventKind.ANY, self.upload_expected_file)

        remove = self.new_flow("remove_student")
        remove.on_enter(self.remove_enter)
        remove.add_input(EventKind.TEXT, self.remove_lookup)
        remove.add_button("confirm_remove_student", self.remove_confirm, action="remove_student")

        edit = self.new_flow("edit_student")
        edit.on_enter(self.edit_enter)
        edit.add_input(EventKind.TEXT, self.edit_lookup)
        edit.add_button("edit_student_name", self.open_flow("edit_student_name"))
        edit.add_button("edit_student_class", self.open_flow("edit_student_class"))
        edit.add_button("edit_student_parent", self.open_flow("edit_student_parent"))
        edit.add_button("cancel_edit_student", self.cancel)

        edit_name = self.new_flow("edit_student_name", requires=["student_id"])
        edit_name.on_enter(self.edit_name_enter)
        edit_name.add_input(EventKind.TEXT, self.edit_name)

        edit_class = self.new_flow("edit_student_class", requires=["student_id"])
        edit_class.on_enter(self.edit_class_enter)
        edit_class.add_input(EventKind.TEXT, self.edit_class)

        edit_parent = self.new_flow("edit_student_parent", requires=["student_id"])
        edit_parent.on_enter(self.edit_parent_enter)
        edit_parent.add_input(EventKind.TEXT, self.edit_parent)

        unbind = self.new_flow("unbind_parent")
        unbind.on_enter(self.unbind_enter)
        unbind.add_input(EventKind.TEXT, self.unbind, action="unbind_parent")

        delete_class = self.new_flow("delete_class")
        delete_class.on_enter(self.delete_class_enter)
        delete_class.add_button(r"^delete_class_pick_(\d+)$", self.delete_class_pick)
        delete_class.add_button("confirm_delete_class", self.delete_class_confirm, action="delete_class")

        stage.register(
            add, add_class, upload, remove, edit, edit_name, edit_class, edit_parent, unbind, delete_class
        )

    async def show_menu_panel(self, ctx: FlowContext):
        if await self.require_role(ctx, *ADMINS):
            await ctx.reply("🧑‍🎓 Student Management", reply_markup=kb.student_management_menu())

    # Listing

    async def view_students(self, ctx: FlowContext):
        if not await self.require_role(ctx, *ADMINS):
            return
        number = int(ctx.args[0]) if ctx.args else 1
        async with get_db_context() as db:
            service = StudentService(db)
            page = Page.clamp(number, self.page_size, await service.count_students())
            students = await service.list_students(limit=page.size, offset=page.offset)
        if not students:
            await ctx.edit("ℹ️ No students found.")
            return
        lines = [f"{esc(s.name)} | {esc(s.class_name)} | <code>{s.student_id}</code>" for s in students]
        text = f"🧑‍🎓 <b>Students</b> ({page.total})\n\n" + bullet_list(lines)
        row = pagination_row("students_page", page)
        await ctx.edit(text, reply_markup=InlineKeyboardMarkup([row]) if row else None)

    # Add

    async def add_student_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "📝 Please provide the student's full name.")

    async def add_student_name(self, ctx: FlowContext):
        result = validate_name(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        ctx.update(student_name=result.value)
        ctx.enter("add_student_class")

    async def add_student_class_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🏫 Please provide the student's class (e.g. Grade 5).")

    async def add_student_class(self, ctx: FlowContext):
        result = validate_class_name(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        async with get_db_context() as db:
            student = await StudentService(db).create_student(ctx.get("student_name"), result.value)
        await ctx.reply(
            "✅ <b>Student added!</b>\n"
            f"Name: {esc(student.name)}\n"
            f"Class: {esc(student.class_name)}\n"
            f"Student ID: <code>{student.student_id}</code>\n\n"
            "Share this ID with the parent so they can register.",
            reply_markup=kb.student_management_menu(),
        )
        ctx.audit_detail = f"added student {student.student_id} ({student.name}, {student.class_name})"
        ctx.finish()

    # Bulk import

    async def upload_enter(self, ctx: FlowContext):
        await self.prompt(
            ctx,
            "📂 Please upload the student database as a JSON array or a CSV file.\n"
            "Each record needs <code>name</code> and <code>class</code>; <code>parentId</code> is optional.",
        )

    async def upload_expected_file(self, ctx: FlowContext):
        await ctx.reply("📎 Please send a JSON or CSV file, or press Cancel.")

    async def upload_document(self, ctx: FlowContext):
        data = await ctx.transport.download_file(ctx.event.file_id)
        try:
            records = parse_student_file(data, ctx.event.file_name or "")
        except ValueError as e:
            logger.warning(f"Rejected student upload from chat {ctx.chat_id}: {e}")
            await ctx.reply("❌ Could not read the file. Please send a JSON array or a CSV file with a header row.")
            return
        async with get_db_context() as db:
            result = await StudentService(db).import_students(records)
        lines = [f"✅ Imported {result.added} student(s).", f"⏭️ Skipped {result.skipped} incomplete row(s)."]
        if result.unknown_parents:
            lines.append(f"⚠️ Unknown parent IDs: {esc(', '.join(result.unknown_parents))}")
        await ctx.reply("\n".join(lines), reply_markup=kb.student_management_menu())
        ctx.audit_detail = f"imported {result.added} students from {ctx.event.file_name or 'upload'}"
        ctx.finish()

    # Remove

    async def remove_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🆔 Please provide the student ID to remove.")

    async def remove_lookup(self, ctx: FlowContext):
        if not is_valid_student_id(ctx.text):
            await ctx.reply("❌ Student ID must be exactly 10 digits.")
            return
        async with get_db_context() as db:
            student = await StudentService(db).get_student(ctx.text)
        if student is None:
            await ctx.reply("❌ Student ID not found. Please try again.")
            return
        ctx.update(student_id=student.student_id)
        await ctx.reply(
            f"⚠️ Remove {esc(student.name)} ({esc(student.class_name)}, <code>{student.student_id}</code>)?\n"
            "All grades and class links of this student will be deleted.",
            reply_markup=_confirm_markup("confirm_remove_student"),
        )

    async def remove_confirm(self, ctx: FlowContext):
        student_id = ctx.get("student_id")
        if not student_id:
            await ctx.edit("🆔 Please send the student ID first.")
            return
        try:
            async with get_db_context() as db:
                student = await StudentService(db).remove_student(student_id)
        except NotFoundError as e:
            await ctx.edit(f"❌ {esc(e.message)}")
            ctx.finish()
            return
        await ctx.edit(f"✅ Student {esc(student.name)} removed.")
        ctx.audit_detail = f"removed student {student_id} ({student.name})"
        ctx.finish()

    # Edit

    async def edit_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🆔 Please provide the student ID to edit.")

    async def edit_lookup(self, ctx: FlowContext):
        if not is_valid_student_id(ctx.text):
            await ctx.reply("❌ Student ID must be exactly 10 digits.")
            return
        async with get_db_context() as db:
            student = await StudentService(db).get_student(ctx.text)
        if student is None:
            await ctx.reply("❌ Student ID not found. Please try again.")
            return
        ctx.update(student_id=student.student_id)
        await ctx.reply(
            f"✏️ <b>{esc(student.name)}</b>\n"
            f"Class: {esc(student.class_name)}\n"
            f"Parent: <code>{student.parent_id or 'none'}</code>\n\n"
            "What would you like to change?",
            reply_markup=InlineKeyboardMarkup([
                [
                    InlineKeyboardButton("📝 Name", callback_data="edit_student_name"),
                    InlineKeyboardButton("🏫 Class", callback_data="edit_student_class"),
                    InlineKeyboardButton("👤 Parent", callback_data="edit_student_parent"),
                ],
                [InlineKeyboardButton("⬅️ Cancel", callback_data="cancel_edit_student")],
            ]),
        )

    async def edit_name_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "📝 Please enter the new name.")

    async def edit_name(self, ctx: FlowContext):
        result = validate_name(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        async with get_db_context() as db:
            student = await StudentService(db).rename_student(ctx.get("student_id"), result.value)
        await ctx.reply(f"✅ Student renamed to {esc(student.name)}.", reply_markup=kb.student_management_menu())
        ctx.audit_detail = f"renamed student {student.student_id} to {student.name}"
        ctx.finish()

    async def edit_class_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🏫 Please enter the new class.")

    async def edit_class(self, ctx: FlowContext):
        result = validate_class_name(ctx.text)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        async with get_db_context() as db:
            student = await StudentService(db).move_student(ctx.get("student_id"), result.value)
        await ctx.reply(
            f"✅ {esc(student.name)} moved to {esc(student.class_name)}.",
            reply_markup=kb.student_management_menu(),
        )
        ctx.audit_detail = f"moved student {student.student_id} to {student.class_name}"
        ctx.finish()

    async def edit_parent_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "👤 Please enter the Telegram ID of the new parent.")

    async def edit_parent(self, ctx: FlowContext):
        if not is_valid_telegram_id(ctx.text):
            await ctx.reply("❌ Invalid Telegram ID. Please enter digits only.")
            return
        try:
            async with get_db_context() as db:
                student = await StudentService(db).set_parent(ctx.get("student_id"), int(ctx.text))
        except NotFoundError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            return
        await ctx.reply(
            f"✅ {esc(student.name)} is now linked to parent <code>{student.parent_id}</code>.",
            reply_markup=kb.student_management_menu(),
        )
        ctx.audit_detail = f"set parent of {student.student_id} to {student.parent_id}"
        ctx.finish()

    # Unbind parent

    async def unbind_enter(self, ctx: FlowContext):
        await self.prompt(ctx, "🔗 Please provide the Telegram ID of the parent to unbind.")

    async def unbind(self, ctx: FlowContext):
        if not is_valid_telegram_id(ctx.text):
            await ctx.reply("❌ Invalid Telegram ID. Please enter digits only.")
            return
        parent_id = int(ctx.text)
        try:
            async with get_db_context() as db:
                count = await UserService(db).unbind_parent(parent_id)
        except ServiceError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            return
        await ctx.reply(f"✅ Parent unbound from {count} student(s).", reply_markup=kb.student_management_menu())
        await self.notifier.send(parent_id, "ℹ️ Your student links were removed by the school. Contact the admins for help.")
        ctx.audit_detail = f"unbound parent {parent_id} from {count} students"
        ctx.finish()

    # Delete a class

    async def delete_class_enter(self, ctx: FlowContext):
        async with get_db_context() as db:
            classes = await StudentService(db).class_names()
        if not classes:
            await ctx.reply("ℹ️ No classes found.")
            ctx.finish()
            return
        ctx.update(classes=classes)
        rows = [
            [InlineKeyboardButton(f"🗑️ {name}", callback_data=f"delete_class_pick_{index}")]
            for index, name in enumerate(classes)
        ]
        rows.append([kb.cancel_button()])
        await ctx.reply("🗑️ Which class do you want to delete?", reply_markup=InlineKeyboardMarkup(rows))

    async def delete_class_pick(self, ctx: FlowContext):
        classes = ctx.get("classes") or []
        index = int(ctx.args[0])
        if index >= len(classes):
            await ctx.edit("❌ Unknown class. Please start again.")
            ctx.finish()
            return
        class_name = classes[index]
        async with get_db_context() as db:
            count = await StudentService(db).count_students(class_name)
        ctx.update(class_name=class_name)
        await ctx.edit(
            f"⚠️ Delete class <b>{esc(class_name)}</b> with {count} student(s)?\n"
            "Students, their grades and class links will be removed. This cannot be undone.",
            reply_markup=_confirm_markup("confirm_delete_class"),
        )

    async def delete_class_confirm(self, ctx: FlowContext):
        class_name = ctx.get("class_name")
        if not class_name:
            await ctx.edit("❌ Please choose a class first.")
            return
        try:
            async with get_db_context() as db:
                removed = await StudentService(db).delete_class(class_name)
        except NotFoundError as e:
            await ctx.edit(f"❌ {esc(e.message)}")
            ctx.finish()
            return

        log = self.exports.class_deletion_log(class_name, removed, ctx.user_id)
        path = self.exports.write(f"class_deletion_{class_name}", log)
        await self.notifier.notify_oversight(
            f"🗑️ Class <b>{esc(class_name)}</b> deleted by <code>{ctx.user_id}</code> ({len(removed)} students).",
            document=path,
            filename=path.name,
        )
        await ctx.edit(f"🗑️ Class {esc(class_name)} deleted ({len(removed)} students).")
        ctx.audit_detail = f"deleted class {class_name} ({len(removed)} students)"
        ctx.finish()
