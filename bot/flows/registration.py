"""Registration and login flows."""

import hmac
import logging

from database.connection import get_db_context
from services import CodeCheck, LoginCheck, NotFoundError, ServiceError, TeacherService, UserService
from services.helpers import hash_password

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import BaseHandler, role_of
from ..models import EventKind, UserRole
from ..utils import esc
from ..validators import (
    is_valid_otp,
    is_valid_student_id,
    is_valid_teacher_id,
    parse_subjects,
    validate_name,
    validate_password,
    validate_subject,
)

logger = logging.getLogger(__name__)

CLAIM_PURPOSE = "teacher_registration"
RESET_PURPOSE = "password_reset"
LOCKED_TEXT = "🚫 Too many failed attempts. Please try again later."
CODE_NOT_CONFIGURED = "⛔ Registration with a code is not available yet. Please contact the school."


def _matches(candidate: str, secret: str) -> bool:
    return hmac.compare_digest(candidate.strip().encode("utf-8"), secret.encode("utf-8"))


class RegistrationHandler(BaseHandler):
    """Parent links, teacher sign-up and claim, teacher login, password reset and admin login."""

    def register(self, stage: Stage) -> None:
        root = stage.root
        root.add_button("register_parent", self.open_flow("register_parent"))
        root.add_button("register_teacher", self.open_flow("register_teacher"))
        root.add_button("teacher_registration", self.open_flow("teacher_registration"))
        root.add_button("teacher_login", self.open_flow("teacher_login"))
        root.add_button("password_reset", self.open_flow("password_reset"))
        root.add_input(EventKind.TEXT, self.open_flow("link_another_student", UserRole.PARENT), text=kb.LINK_STUDENT)

        parent = self.new_flow("register_parent")
        parent.on_enter(self.ask_student_id)
        parent.add_input(EventKind.TEXT, self.submit_parent_link)

        link = self.new_flow("link_another_student")
        link.on_enter(self.ask_another_student_id)
        link.add_input(EventKind.TEXT, self.submit_parent_link)

        signup = self.new_flow("teacher_registration")
        signup.on_enter(self.signup_enter)
        signup.add_input(EventKind.TEXT, self.signup_input)

        claim = self.new_flow("register_teacher")
        claim.on_enter(self.claim_enter)
        claim.add_input(EventKind.TEXT, self.claim_input)

        login = self.new_flow("teacher_login")
        login.on_enter(self.login_enter)
        login.add_input(EventKind.TEXT, self.login_input)

        reset = self.new_flow("password_reset")
        reset.on_enter(self.reset_enter)
        reset.add_input(EventKind.TEXT, self.reset_input)

        admin = self.new_flow("admin_login")
        admin.on_enter(self.admin_login_enter)
        admin.add_input(EventKind.TEXT, self.admin_login, action="admin_login")

        stage.register(parent, link, signup, claim, login, reset, admin)

    # Parent registration

    async def ask_student_id(self, ctx: FlowContext):
        await self.prompt(ctx, "👤 To register, please provide your child's unique 10-digit student ID.")

    async def ask_another_student_id(self, ctx: FlowContext):
        await self.prompt(ctx, "🔗 Please provide the 10-digit student ID of the child you want to link.")

    async def submit_parent_link(self, ctx: FlowContext):
        student_id = ctx.text
        if not is_valid_student_id(student_id):
            await ctx.reply("❌ Invalid student ID. It must be exactly 10 digits. Please try again.")
            return
        try:
            async with get_db_context() as db:
                student = await UserService(db).request_parent_link(ctx.user_id, ctx.event.first_name, student_id)
        except NotFoundError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            return
        except ServiceError as e:
            await ctx.reply(f"⚠️ {esc(e.message)}")
            ctx.finish()
            return

        await self.notify_admins(
            "🔔 <b>Parent link request</b>\n"
            f"Parent: {esc(ctx.event.first_name)} (<code>{ctx.user_id}</code>)\n"
            f"Student: {esc(student.name)} (<code>{student.student_id}</code>), class {esc(student.class_name)}",
            reply_markup=kb.approval_buttons("parent", ctx.user_id, student.student_id),
        )
        await ctx.reply("✅ Your request has been sent to the admins. You will be notified once it is approved.")
        ctx.finish()

    # Teacher self-registration: school code, name, subjects, password, then admin approval

    async def signup_enter(self, ctx: FlowContext):
        if not self.settings.school_code_configured:
            logger.warning("Teacher sign-up refused: school registration code is not configured")
            await ctx.reply(CODE_NOT_CONFIGURED)
            ctx.finish()
            return
        async with get_db_context() as db:
            teacher = await TeacherService(db).get_by_chat(ctx.user_id)
            user = await UserService(db).get_user(ctx.user_id)
        if teacher is not None:
            await ctx.reply("ℹ️ This account is already linked to a teacher profile. Use /start.")
            ctx.finish()
            return
        if user is not None and user.pending_registration:
            await ctx.reply("⏳ Your registration is already awaiting approval.")
            ctx.finish()
            return
        ctx.update(step="code")
        await self.prompt(ctx, "🔑 Please enter the school registration code.")

    async def signup_input(self, ctx: FlowContext):
        step = ctx.get("step")
        if step == "code":
            if not self.settings.school_code_configured or not _matches(
                ctx.text, self.settings.school_registration_code
            ):
                logger.warning(f"Wrong school registration code from chat {ctx.chat_id}")
                await ctx.reply("❌ Invalid registration code.")
                ctx.finish()
                return
            ctx.update(step="name")
            await self.prompt(ctx, "📝 Please enter your full name.")

        elif step == "name":
            result = validate_name(ctx.text)
            if not result.valid:
                await ctx.reply(f"❌ {result.message}")
                return
            ctx.update(step="subjects", name=result.value)
            await self.prompt(ctx, "📚 Enter the subjects you teach, separated by commas (e.g. Math, Science).")

        elif step == "subjects":
            subjects = parse_subjects(ctx.text)
            invalid = [s for s in subjects if not validate_subject(s).valid]
            if not subjects or invalid:
                await ctx.reply("❌ Please enter at least one valid subject (1-30 characters each).")
                return
            ctx.update(step="password", subjects=subjects)
            await self.prompt(ctx, "🔐 Choose a password (at least 6 characters, mixing letters and digits).")

        elif step == "password":
            result = validate_password(ctx.text)
            if not result.valid:
                await ctx.reply(f"❌ {result.message}")
                return
            name, subjects = ctx.get("name"), ctx.get("subjects")
            try:
                async with get_db_context() as db:
                    await TeacherService(db).submit_registration(
                        ctx.user_id, name, subjects, hash_password(result.value)
                    )
            except ServiceError as e:
                await ctx.reply(f"⚠️ {esc(e.message)}")
                ctx.finish()
                return
            await self.notify_admins(
                "🧑‍🏫 <b>Teacher registration request</b>\n"
                f"Name: {esc(name)}\n"
                f"Subjects: {esc(', '.join(subjects))}\n"
                f"Chat: <code>{ctx.user_id}</code>",
                reply_markup=kb.approval_buttons("registration", ctx.user_id),
            )
            await ctx.reply("✅ Registration submitted. You will be notified once an admin approves it.")
            ctx.finish()

    # Claiming an admin-created teacher profile

    async def claim_enter(self, ctx: FlowContext):
        ctx.update(step="teacher_id")
        await self.prompt(ctx, "🆔 Please enter the 10-digit teacher ID given to you by the school.")

    async def claim_input(self, ctx: FlowContext):
        step = ctx.get("step")
        if step == "teacher_id":
            teacher_id = ctx.text
            if not is_valid_teacher_id(teacher_id):
                await ctx.reply("❌ Teacher ID must be exactly 10 digits.")
                return
            async with get_db_context() as db:
                teacher = await TeacherService(db).get_teacher(teacher_id)
                if teacher is None or teacher.telegram_id is not None:
                    code = None
                else:
                    code = await self.credentials(db).issue_code(CLAIM_PURPOSE, teacher_id, ctx.user_id)
            if code is None:
                await ctx.reply("❌ Invalid or already linked teacher ID.")
                ctx.finish()
                return
            await self.notify_admins(
                "🔐 <b>Teacher verification</b>\n"
                f"Chat <code>{ctx.user_id}</code> ({esc(ctx.event.first_name)}) is claiming teacher "
                f"{esc(teacher.name)} (<code>{teacher_id}</code>).\n"
                f"Code: <code>{code.code}</code>\n"
                "Share it with the teacher only after confirming their identity."
            )
            ctx.update(step="code", teacher_id=teacher_id)
            await self.prompt(ctx, "📨 A verification code was sent to the school admins. Please enter it here.")

        elif step == "code":
            if not is_valid_otp(ctx.text):
                await ctx.reply("❌ The code has 6 digits.")
                return
            teacher_id = ctx.get("teacher_id")
            async with get_db_context() as db:
                credentials = self.credentials(db)
                check = await credentials.verify_code(CLAIM_PURPOSE, teacher_id, ctx.user_id, ctx.text)
                left = await credentials.attempts_left(CLAIM_PURPOSE, teacher_id, ctx.user_id)
            if check == CodeCheck.INVALID and left:
                await ctx.reply(f"❌ Incorrect code. {left} attempt(s) left.")
                return
            if check != CodeCheck.OK:
                await ctx.reply("❌ The code is no longer valid. Please start again.")
                ctx.finish()
                return
            try:
                async with get_db_context() as db:
                    teacher = await TeacherService(db).claim_teacher(teacher_id, ctx.user_id, ctx.event.first_name)
                    has_password = await self.credentials(db).has_password(teacher_id)
            except ServiceError as e:
                await ctx.reply(f"❌ {esc(e.message)}")
                ctx.finish()
                return
            if has_password:
                await self.show_menu(ctx, UserRole.TEACHER, f"✅ Welcome, {esc(teacher.name)}! Your account is linked.")
                ctx.finish()
                return
            ctx.update(step="password")
            await self.prompt(ctx, "🔐 Account linked. Choose a password for future logins.")

        elif step == "password":
            result = validate_password(ctx.text)
            if not result.valid:
                await ctx.reply(f"❌ {result.message}")
                return
            async with get_db_context() as db:
                await self.credentials(db).set_password(ctx.get("teacher_id"), result.value)
            await self.show_menu(ctx, UserRole.TEACHER, "✅ Password saved. Welcome aboard!")
            ctx.finish()

    # Login from a new account

    async def login_enter(self, ctx: FlowContext):
        ctx.update(step="teacher_id")
        await self.prompt(ctx, "🆔 Please enter your teacher ID.")

    async def login_input(self, ctx: FlowContext):
        if ctx.get("step") == "teacher_id":
            teacher_id = ctx.text
            if not is_valid_teacher_id(teacher_id):
                await ctx.reply("❌ Teacher ID must be exactly 10 digits.")
                return
            async with get_db_context() as db:
                teacher = await TeacherService(db).get_teacher(teacher_id)
                credentials = self.credentials(db)
                has_password = teacher is not None and await credentials.has_password(teacher_id)
                locked = has_password and await credentials.is_locked(teacher_id)
            if teacher is None or not has_password:
                await ctx.reply("❌ Teacher ID not found or no password set.")
                ctx.finish()
                return
            if teacher.banned:
                await ctx.reply("🚫 This teacher account is suspended. Please contact the school.")
                ctx.finish()
                return
            if locked:
                await ctx.reply(LOCKED_TEXT)
                ctx.finish()
                return
            ctx.update(step="password", teacher_id=teacher_id)
            await self.prompt(ctx, "🔐 Please enter your password.")
            return

        teacher_id = ctx.get("teacher_id")
        async with get_db_context() as db:
            check, left = await self.credentials(db).attempt_login(teacher_id, ctx.text)
            if check == LoginCheck.OK:
                service = TeacherService(db)
                teacher = await service.require_teacher(teacher_id)
                previous_chat = teacher.telegram_id
                await service.link_chat(teacher, ctx.user_id, ctx.event.first_name)
        if check == LoginCheck.LOCKED:
            logger.warning(f"Locked login for teacher {teacher_id} from chat {ctx.chat_id}")
            await ctx.reply(LOCKED_TEXT)
            ctx.finish()
            return
        if check == LoginCheck.WRONG:
            logger.warning(f"Failed login for teacher {teacher_id} from chat {ctx.chat_id}")
            await ctx.reply(f"❌ Wrong password. {left} attempt(s) left.")
            return

        if previous_chat and previous_chat != ctx.user_id:
            await self.notifier.send(
                previous_chat,
                "⚠️ Your teacher account was signed in from another Telegram account and is no longer linked here.",
            )
        await self.show_menu(ctx, UserRole.TEACHER, f"✅ Logged in as {esc(teacher.name)}.")
        ctx.finish()

    # Password reset

    async def reset_enter(self, ctx: FlowContext):
        async with get_db_context() as db:
            teacher = await TeacherService(db).get_by_chat(ctx.user_id)
        if teacher is not None:
            await self._issue_reset_code(ctx, teacher)
            return
        ctx.update(step="teacher_id")
        await self.prompt(ctx, "🆔 Please enter your teacher ID.")

    async def _issue_reset_code(self, ctx: FlowContext, teacher):
        async with get_db_context() as db:
            code = await self.credentials(db).issue_code(RESET_PURPOSE, teacher.teacher_id, ctx.user_id)
        minutes = self.settings.otp_ttl_seconds // 60
        if teacher.telegram_id:
            await self.notifier.send(
                teacher.telegram_id,
                f"🔐 Password reset code: <code>{code.code}</code>\n"
                f"It expires in {minutes} minutes. Ignore this message if you did not ask for it.",
            )
            where = "the Telegram account linked to this teacher"
        else:
            await self.notify_admins(
                "🔐 <b>Password reset</b>\n"
                f"Chat <code>{ctx.user_id}</code> requested a reset for {esc(teacher.name)} "
                f"(<code>{teacher.teacher_id}</code>).\nCode: <code>{code.code}</code>"
            )
            where = "the school admins"
        ctx.update(step="code", teacher_id=teacher.teacher_id)
        await self.prompt(ctx, f"📨 A verification code was sent to {where}. Please enter it here.")

    async def reset_input(self, ctx: FlowContext):
        step = ctx.get("step")
        if step == "teacher_id":
            if not is_valid_teacher_id(ctx.text):
                await ctx.reply("❌ Teacher ID must be exactly 10 digits.")
                return
            async with get_db_context() as db:
                teacher = await TeacherService(db).get_teacher(ctx.text)
            if teacher is None:
                await ctx.reply("❌ Teacher ID not found.")
                ctx.finish()
                return
            await self._issue_reset_code(ctx, teacher)

        elif step == "code":
            teacher_id = ctx.get("teacher_id")
            async with get_db_context() as db:
                credentials = self.credentials(db)
                check = await credentials.verify_code(RESET_PURPOSE, teacher_id, ctx.user_id, ctx.text)
                left = await credentials.attempts_left(RESET_PURPOSE, teacher_id, ctx.user_id)
            if check == CodeCheck.INVALID and left:
                await ctx.reply(f"❌ Incorrect code. {left} attempt(s) left.")
                return
            if check != CodeCheck.OK:
                await ctx.reply("❌ The code is no longer valid. Please start again.")
                ctx.finish()
                return
            ctx.update(step="password")
            await self.prompt(ctx, "🔐 Enter your new password.")

        elif step == "password":
            result = validate_password(ctx.text)
            if not result.valid:
                await ctx.reply(f"❌ {result.message}")
                return
            teacher_id = ctx.get("teacher_id")
            async with get_db_context() as db:
                await self.credentials(db).set_password(teacher_id, result.value)
                teacher = await TeacherService(db).get_teacher(teacher_id)
            if teacher is not None and teacher.telegram_id == ctx.user_id:
                await ctx.reply("✅ Password updated.")
            else:
                await ctx.reply("✅ Password updated. Use 🔐 Teacher Login to sign in.")
            ctx.finish()

    # Admin login

    async def admin_login_enter(self, ctx: FlowContext):
        if not self.settings.admin_code_configured:
            logger.warning("Admin login refused: admin registration code is not configured")
            await ctx.reply(CODE_NOT_CONFIGURED)
            ctx.finish()
            return
        await self.prompt(ctx, "🔑 Please enter the secret admin code.")

    async def admin_login(self, ctx: FlowContext):
        if not self.settings.admin_code_configured or not _matches(ctx.text, self.settings.admin_registration_code):
            logger.warning(f"Wrong admin code from chat {ctx.chat_id}")
            await ctx.reply("❌ Invalid admin code.")
            ctx.finish()
            return
        user = await self.load_user(ctx)
        if not role_of(user).is_admin:
            async with get_db_context() as db:
                await UserService(db).set_role(ctx.user_id, "admin")
        ctx.audit_detail = f"{ctx.event.first_name} ({ctx.user_id}) registered as admin with the admin code"
        await ctx.reply("⚙️ Admin Panel\n✅ You are now an admin.", reply_markup=kb.admin_menu())
        ctx.finish()
