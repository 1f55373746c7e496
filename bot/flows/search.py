"""Name and ID search over students and teachers."""

import logging

from database.connection import get_db_context
from services import StudentService, TeacherService

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import ADMINS, BaseHandler
from ..models import EventKind, UserRole
from ..utils import bullet_list, esc

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
RESULT_LIMIT = 20


class SearchHandler(BaseHandler):

    def register(self, stage: Stage) -> None:
        stage.root.add_input(EventKind.TEXT, self.open_flow("search", *ADMINS, scope="all"), text=kb.SEARCH)
        stage.root.add_input(
            EventKind.TEXT, self.open_flow("search", UserRole.TEACHER, scope="students"), text=kb.SEARCH_STUDENT
        )

        flow = self.new_flow("search", requires=["scope"])
        flow.on_enter(self.search_enter)
        flow.add_input(EventKind.TEXT, self.run_search)
        stage.register(flow)

    async def search_enter(self, ctx: FlowContext):
        what = "students and teachers" if ctx.get("scope") == "all" else "students"
        await self.prompt(ctx, f"🔍 Type a name or ID to search {what}.")

    async def run_search(self, ctx: FlowContext):
        query = " ".join(ctx.text.split())
        if len(query) < MIN_QUERY_LENGTH:
            await ctx.reply(f"❌ Please type at least {MIN_QUERY_LENGTH} characters.")
            return

        async with get_db_context() as db:
            students = await StudentService(db).search(query, limit=RESULT_LIMIT)
            teachers = []
            if ctx.get("scope") == "all":
                teachers = await TeacherService(db).search(query, limit=RESULT_LIMIT)

        sections = [
            "🧑‍🎓 <b>Students</b>\n" + bullet_list(
                [f"{esc(s.name)} ({esc(s.class_name)}) <code>{s.student_id}</code>" for s in students],
                empty="No matches.",
            )
        ]
        if ctx.get("scope") == "all":
            sections.append(
                "🧑‍🏫 <b>Teachers</b>\n" + bullet_list(
                    [
                        f"{esc(t.name)} <code>{t.teacher_id}</code>{' 🚫' if t.banned else ''}"
                        for t in teachers
                    ],
                    empty="No matches.",
                )
            )
        await ctx.reply(f"🔍 Results for <b>{esc(query)}</b>\n\n" + "\n\n".join(sections))
        ctx.finish()
