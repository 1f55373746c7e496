"""Reply and inline keyboards."""

from typing import Iterable, List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, ReplyKeyboardMarkup

from .models import UserRole
from .utils import callback_data

# Admin menu
STUDENTS = "🧑‍🎓 Students"
USERS = "👥 Users"
ANNOUNCEMENTS = "📢 Announcements"
SEARCH = "🔍 Search"
ATTENDANCE = "🗓️ Attendance"
MASTER_PANEL = "🛡️ Master Panel"

# User management
ADD_ADMIN = "➕ Add Admin"
REMOVE_ADMIN = "➖ Remove Admin"
EDIT_TEACHER = "✏️ Edit Teacher"
ADD_TEACHER = "➕ Add Teacher"
REMOVE_TEACHER = "➖ Remove Teacher"
BAN_TEACHER = "🚫 Ban/Unban Teacher"
VIEW_ADMINS = "👀 View Admins"
VIEW_TEACHERS = "👀 View Teachers"
VIEW_PARENTS = "👀 View Parents"
BACK_TO_ADMIN = "⬅️ Back to Admin Menu"

# Student management
ADD_STUDENT = "➕ Add Student"
REMOVE_STUDENT = "➖ Remove Student"
EDIT_STUDENT = "✏️ Edit Student"
UPLOAD_STUDENT_DB = "📂 Upload Student DB"
UNBIND_PARENT = "🔗 Unbind Parent"
DELETE_CLASS = "🗑️ Delete Class"
VIEW_STUDENTS = "👀 View All Students"

# Parent menu
VIEW_GRADES = "💯 View Grades"
SCHEDULE = "🗓️ Schedule"
MY_PROFILE = "🧑‍🎓 My Profile"
LINK_STUDENT = "🔗 Link Another Student"
CONTACT_ADMIN = "💬 Contact Admin"
FIND_TUTOR = "🧑‍🏫 Find Tutor"
GRADE_REPORT = "📄 Grade Report"

# Teacher menu
MANAGE_GRADES = "💯 Manage Grades"
MY_STUDENTS = "📚 My Students"
ANNOUNCE_CLASS = "📢 Announce Class"
CONTACT_PARENT = "💬 Contact Parent"
SEARCH_STUDENT = "🔍 Search Student"
FREELANCE = "💼 Freelance"

CANCEL = "cancel"


def _reply(rows: List[List[str]]) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(rows, resize_keyboard=True)


def admin_menu(master: bool = False) -> ReplyKeyboardMarkup:
    rows = [
        [STUDENTS, USERS],
        [ANNOUNCEMENTS, SEARCH],
        [ATTENDANCE],
    ]
    if master:
        rows[-1].append(MASTER_PANEL)
    return _reply(rows)


def user_management_menu() -> ReplyKeyboardMarkup:
    return _reply([
        [ADD_ADMIN, REMOVE_ADMIN, EDIT_TEACHER],
        [ADD_TEACHER, REMOVE_TEACHER, BAN_TEACHER],
        [VIEW_ADMINS, VIEW_TEACHERS, VIEW_PARENTS],
        [BACK_TO_ADMIN],
    ])


def student_management_menu() -> ReplyKeyboardMarkup:
    return _reply([
        [ADD_STUDENT, REMOVE_STUDENT, EDIT_STUDENT],
        [UPLOAD_STUDENT_DB, UNBIND_PARENT, DELETE_CLASS],
        [VIEW_STUDENTS],
        [BACK_TO_ADMIN],
    ])


def parent_menu() -> ReplyKeyboardMarkup:
    return _reply([
        [VIEW_GRADES, SCHEDULE],
        [MY_PROFILE, LINK_STUDENT],
        [GRADE_REPORT, FIND_TUTOR],
        [CONTACT_ADMIN],
    ])


def teacher_menu() -> ReplyKeyboardMarkup:
    return _reply([
        [MANAGE_GRADES, MY_STUDENTS],
        [ANNOUNCE_CLASS, CONTACT_PARENT],
        [ATTENDANCE, GRADE_REPORT],
        [MY_PROFILE, SEARCH_STUDENT],
        [FREELANCE],
    ])


def menu_for(role: UserRole) -> Optional[ReplyKeyboardMarkup]:
    """Main reply keyboard for a role, or None for visitors."""
    if role == UserRole.MASTER_ADMIN:
        return admin_menu(master=True)
    if role == UserRole.ADMIN:
        return admin_menu()
    if role == UserRole.TEACHER:
        return teacher_menu()
    if role == UserRole.PARENT:
        return parent_menu()
    return None


def registration_menu() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("🧑‍🏫 Register as Teacher", callback_data="register_teacher")],
        [InlineKeyboardButton("📝 New Teacher Sign-up", callback_data="teacher_registration")],
        [InlineKeyboardButton("👨‍👩‍👧‍👦 Register as Parent", callback_data="register_parent")],
        [InlineKeyboardButton("🔐 Teacher Login", callback_data="teacher_login")],
    ])


def teacher_profile_menu() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("➕ Add New Subject", callback_data="add_new_subject"),
            InlineKeyboardButton("➖ Remove Subject", callback_data="remove_subject"),
        ],
        [InlineKeyboardButton("🔑 Reset Password", callback_data="password_reset")],
        [InlineKeyboardButton("⬅️ Back to Teacher Menu", callback_data="back_to_teacher")],
    ])


def parent_profile_menu() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("🔗 Linked Students", callback_data="view_linked_children")],
        [InlineKeyboardButton("⬅️ Back to Parent Menu", callback_data="back_to_parent")],
    ])


def freelance_menu() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("➕ New Offer", callback_data="freelance_new")],
        [InlineKeyboardButton("📋 My Offers", callback_data="freelance_mine")],
    ])


def master_menu() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("📜 Admin Activity", callback_data="master_activity_1")],
        [InlineKeyboardButton("📤 Export Activity Log", callback_data="master_export")],
        [InlineKeyboardButton("📊 Statistics", callback_data="master_stats")],
        [InlineKeyboardButton("🧹 Purge Old Records", callback_data="master_purge")],
        [InlineKeyboardButton("⬅️ Close", callback_data="master_close")],
    ])


def approval_buttons(kind: str, *parts) -> InlineKeyboardMarkup:
    """Approve/deny buttons for an approval request of ``kind``."""
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("✅ Approve", callback_data=callback_data("approve", kind, *parts))],
        [InlineKeyboardButton("❌ Deny", callback_data=callback_data("deny", kind, *parts))],
    ])


def choice_buttons(prefix: str, options: Iterable[str], extra: Optional[List[InlineKeyboardButton]] = None) -> InlineKeyboardMarkup:
    """One button per option, payload ``<prefix>_<option>``."""
    rows = [[InlineKeyboardButton(option, callback_data=callback_data(prefix, option))] for option in options]
    if extra:
        rows.append(extra)
    return InlineKeyboardMarkup(rows)


def cancel_button(payload: str = CANCEL) -> InlineKeyboardButton:
    return InlineKeyboardButton("⬅️ Cancel", callback_data=payload)


def cancel_markup(payload: str = CANCEL) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[cancel_button(payload)]])
