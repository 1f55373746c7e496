"""Freelance tutoring: teacher offers and parent requests."""

import logging
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from database.connection import get_db_context
from services import Delivery, FreelanceService, ServiceError, TeacherService

from .. import keyboards as kb
from ..engine import FlowContext, Stage
from ..handlers import BaseHandler
from ..models import EventKind, UserRole
from ..utils import Page, bullet_list, esc, pagination_row
from ..validators import validate_number

logger = logging.getLogger(__name__)

OFFER_STEPS = {
    "rate": ("💵 Hourly rate (1-1000)?", 1, 1000, False),
    "hours": ("⏱️ Hours available per day (1-12)?", 1, 12, True),
    "days": ("🗓️ Days available per week (1-7)?", 1, 7, True),
}
NEXT_STEP = {"rate": "hours", "hours": "days", "days": None}


def describe_offer(offer, teacher=None) -> str:
    who = f"{esc(teacher.name)}: " if teacher is not None else ""
    return (
        f"{who}{esc(offer.subject)} | {offer.hourly_rate:g}/h | "
        f"{offer.hours_per_day}h/day, {offer.days_per_week} days/week"
    )


class FreelanceHandler(BaseHandler):
    """Teachers publish tutoring offers; parents browse them and send requests."""

    def register(self, stage: Stage) -> None:
        root = stage.root
        root.add_input(EventKind.TEXT, self.freelance_home, text=kb.FREELANCE)
        root.add_input(EventKind.TEXT, self.open_flow("find_tutor", UserRole.PARENT), text=kb.FIND_TUTOR)
        root.add_button("freelance_new", self.open_flow("freelance_offer", UserRole.TEACHER))
        root.add_button("freelance_mine", self.my_offers)
        root.add_button(r"^withdraw_offer_(\d+)$", self.withdraw_offer, action="withdraw_offer")
        root.add_button(r"^(accept|decline)_tutor_(\d+)$", self.resolve_request, action="resolve_tutor_request")

        offer = self.new_flow("freelance_offer")
        offer.on_enter(self.offer_enter)
        offer.add_button(r"^offer_subject_(\d+)$", self.offer_subject)
        offer.add_input(EventKind.TEXT, self.offer_step)

        find = self.new_flow("find_tutor")
        find.on_enter(self.find_enter)
        find.add_button(r"^tutor_subject_(\d+)$", self.find_subject)
        find.add_button("tutor_subject_all", self.find_subject)
        find.add_button(r"^tutor_page_(\d+)$", self.find_page)
        find.add_button(r"^request_tutor_(\d+)$", self.request_tutor, action="request_tutor")

        stage.register(offer, find)

    # Teacher side

    async def freelance_home(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            return
        await ctx.reply(
            "💼 <b>Freelance tutoring</b>\nPublish an hourly offer per subject; parents can request you.",
            reply_markup=kb.freelance_menu(),
        )

    async def offer_enter(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            ctx.finish()
            return
        subjects = list(teacher.subjects or [])
        if not subjects:
            await ctx.reply("ℹ️ You need an approved subject before publishing an offer.")
            ctx.finish()
            return
        ctx.update(subjects=subjects)
        rows = [
            [InlineKeyboardButton(f"📚 {subject}", callback_data=f"offer_subject_{index}")]
            for index, subject in enumerate(subjects)
        ]
        rows.append([kb.cancel_button()])
        await ctx.edit("💼 Which subject is this offer for?", reply_markup=InlineKeyboardMarkup(rows))

    async def offer_subject(self, ctx: FlowContext):
        subjects = ctx.get("subjects") or []
        index = int(ctx.args[0])
        if index >= len(subjects):
            await ctx.edit("❌ Selection expired. Please start again.")
            ctx.finish()
            return
        ctx.update(subject=subjects[index], step="rate")
        await ctx.edit(f"📚 {esc(subjects[index])}\n{OFFER_STEPS['rate'][0]}", reply_markup=kb.cancel_markup())

    async def offer_step(self, ctx: FlowContext):
        step = ctx.get("step")
        if step not in OFFER_STEPS:
            await ctx.reply("👆 Please choose a subject first.")
            return
        _, minimum, maximum, integer = OFFER_STEPS[step]
        result = validate_number(ctx.text, minimum, maximum, integer=integer)
        if not result.valid:
            await ctx.reply(f"❌ {result.message}")
            return
        ctx.update(**{step: result.value})

        following = NEXT_STEP[step]
        if following is not None:
            ctx.update(step=following)
            await self.prompt(ctx, OFFER_STEPS[following][0])
            return

        try:
            async with get_db_context() as db:
                teacher = await TeacherService(db).get_by_chat(ctx.user_id)
                offer = await FreelanceService(db).publish_offer(
                    teacher.teacher_id, ctx.get("subject"), ctx.get("rate"), ctx.get("hours"), ctx.get("days")
                )
        except ServiceError as e:
            await ctx.reply(f"❌ {esc(e.message)}")
            ctx.finish()
            return
        await ctx.reply(f"✅ Offer published:\n{describe_offer(offer)}")
        ctx.audit_detail = f"freelance offer {offer.id} for {offer.subject}"
        ctx.finish()

    async def my_offers(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            return
        await ctx.answer()
        async with get_db_context() as db:
            offers = await FreelanceService(db).offers_for_teacher(teacher.teacher_id)
        active = [o for o in offers if o.active]
        rows = [
            [InlineKeyboardButton(f"🗑️ Withdraw {o.subject}", callback_data=f"withdraw_offer_{o.id}")]
            for o in active
        ]
        await ctx.edit(
            "📋 <b>My offers</b>\n" + bullet_list([describe_offer(o) for o in active], empty="No active offers."),
            reply_markup=InlineKeyboardMarkup(rows) if rows else None,
        )

    async def withdraw_offer(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            return
        try:
            async with get_db_context() as db:
                offer = await FreelanceService(db).withdraw_offer(int(ctx.args[0]), teacher.teacher_id)
        except ServiceError as e:
            await ctx.answer(e.message)
            return
        await ctx.answer()
        await ctx.edit(f"🗑️ Offer for {esc(offer.subject)} withdrawn.")

    async def resolve_request(self, ctx: FlowContext):
        teacher = await self.require_teacher(ctx)
        if teacher is None:
            return
        accept = ctx.args[0] == "accept"
        try:
            async with get_db_context() as db:
                request, offer = await FreelanceService(db).resolve_request(
                    int(ctx.args[1]), teacher.teacher_id, accept
                )
        except ServiceError as e:
            await ctx.answer(e.message)
            await ctx.edit(f"❌ {esc(e.message)}")
            return

        await ctx.answer()
        if accept:
            await ctx.edit("✅ Request accepted. The parent has been sent your contact details.")
            contact = f"@{ctx.event.username}" if ctx.event.username else f"chat ID {ctx.user_id}"
            text = (
                f"✅ {esc(teacher.name)} accepted your tutoring request for {esc(offer.subject)}.\n"
                f"Contact: {esc(contact)}"
            )
        else:
            await ctx.edit("❌ Request declined.")
            text = f"ℹ️ {esc(teacher.name)} is not available for {esc(offer.subject)} tutoring right now."
        await self.notifier.send(request.parent_id, text)
        ctx.audit_detail = f"tutor request {request.id} {request.status}"

    # Parent side

    async def find_enter(self, ctx: FlowContext):
        async with get_db_context() as db:
            subjects = await FreelanceService(db).subjects()
        if not subjects:
            await ctx.reply("ℹ️ No tutoring offers are available right now.")
            ctx.finish()
            return
        ctx.update(subjects=subjects)
        rows = [
            [InlineKeyboardButton(f"📚 {subject}", callback_data=f"tutor_subject_{index}")]
            for index, subject in enumerate(subjects)
        ]
        rows.append([InlineKeyboardButton("📚 All subjects", callback_data="tutor_subject_all")])
        rows.append([kb.cancel_button()])
        await ctx.reply("🧑‍🏫 <b>Find a tutor</b>\nWhich subject?", reply_markup=InlineKeyboardMarkup(rows))

    async def find_subject(self, ctx: FlowContext):
        subject: Optional[str] = None
        if ctx.args:
            subjects = ctx.get("subjects") or []
            index = int(ctx.args[0])
            if index >= len(subjects):
                await ctx.edit("❌ Selection expired. Please start again.")
                ctx.finish()
                return
            subject = subjects[index]
        ctx.update(tutor_subject=subject or "")
        await self._show_offers(ctx, 1)

    async def find_page(self, ctx: FlowContext):
        await self._show_offers(ctx, int(ctx.args[0]))

    async def _show_offers(self, ctx: FlowContext, number: int):
        subject = ctx.get("tutor_subject") or None
        async with get_db_context() as db:
            service = FreelanceService(db)
            page = Page.clamp(number, self.page_size, await service.count_offers(subject))
            offers = await service.search_offers(subject, limit=page.size, offset=page.offset)
        if not offers:
            await ctx.edit("ℹ️ No tutoring offers match.")
            ctx.finish()
            return
        rows = [
            [InlineKeyboardButton(f"📨 Request {teacher.name} ({offer.subject})", callback_data=f"request_tutor_{offer.id}")]
            for offer, teacher in offers
        ]
        nav = pagination_row("tutor_page", page)
        if nav:
            rows.append(nav)
        rows.append([kb.cancel_button()])
        title = esc(subject) if subject else "All subjects"
        await ctx.edit(
            f"🧑‍🏫 <b>Tutors: {title}</b> ({page.total})\n\n"
            + bullet_list([describe_offer(offer, teacher) for offer, teacher in offers]),
            reply_markup=InlineKeyboardMarkup(rows),
        )

    async def request_tutor(self, ctx: FlowContext):
        offer_id = int(ctx.args[0])
        try:
            async with get_db_context() as db:
                service = FreelanceService(db)
                request = await service.request_tutor(offer_id, ctx.user_id)
                offer = await service.get_offer(offer_id)
                teacher = await TeacherService(db).get_teacher(offer.teacher_id)
        except ServiceError as e:
            await ctx.answer(e.message)
            await ctx.reply(f"❌ {esc(e.message)}")
            return

        await ctx.answer()
        outcome = Delivery.FAILED
        if teacher is not None and teacher.telegram_id:
            outcome = await self.notifier.send(
                teacher.telegram_id,
                f"📨 <b>Tutoring request</b>\nParent {esc(ctx.event.first_name)} would like lessons in "
                f"{esc(offer.subject)} at {offer.hourly_rate:g}/h.",
                reply_markup=InlineKeyboardMarkup([[
                    InlineKeyboardButton("✅ Accept", callback_data=f"accept_tutor_{request.id}"),
                    InlineKeyboardButton("❌ Decline", callback_data=f"decline_tutor_{request.id}"),
                ]]),
            )
        if outcome == Delivery.SENT:
            await ctx.edit(f"📨 Request sent to {esc(teacher.name)}. You will be notified when they respond.")
        else:
            await ctx.edit("⏳ Request saved, but the teacher could not be reached right now.")
        ctx.audit_detail = f"tutor request {request.id} for offer {offer_id}"
        ctx.finish()
