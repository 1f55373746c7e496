"""Tests for the tutoring marketplace."""

import pytest

from database.connection import get_db_context
from services import DuplicateError, FreelanceService, InvalidStateError, NotFoundError, TeacherService


async def make_teacher(name):
    async with get_db_context() as db:
        return await TeacherService(db).create_teacher(name, ["Math", "Art"])


class TestOffers:
    """Publishing and searching offers."""

    @pytest.mark.asyncio
    async def test_publish_upserts(self, db):
        teacher = await make_teacher("Lim")
        async with get_db_context() as session:
            first = await FreelanceService(session).publish_offer(teacher.teacher_id, "Math", 50, 2, 3)
        async with get_db_context() as session:
            service = FreelanceService(session)
            second = await service.publish_offer(teacher.teacher_id, "Math", 40, 1, 5)
            assert second.id == first.id
            assert (second.hourly_rate, second.hours_per_day, second.days_per_week) == (40, 1, 5)
            assert len(await service.offers_for_teacher(teacher.teacher_id)) == 1

    @pytest.mark.asyncio
    async def test_search_cheapest_first_excluding_banned_and_inactive(self, db):
        lim = await make_teacher("Lim")
        aisyah = await make_teacher("Aisyah")
        raj = await make_teacher("Raj")
        async with get_db_context() as session:
            service = FreelanceService(session)
            await service.publish_offer(lim.teacher_id, "Math", 60, 2, 3)
            await service.publish_offer(aisyah.teacher_id, "Math", 45, 2, 3)
            await service.publish_offer(aisyah.teacher_id, "Art", 30, 1, 2)
            raj_offer = await service.publish_offer(raj.teacher_id, "Math", 20, 1, 1)
            lim_art = await service.publish_offer(lim.teacher_id, "Art", 25, 1, 1)

        async with get_db_context() as session:
            await TeacherService(session).toggle_ban(raj.teacher_id)
            await FreelanceService(session).withdraw_offer(lim_art.id, lim.teacher_id)

        async with get_db_context() as session:
            service = FreelanceService(session)
            results = await service.search_offers("math")
            assert [(teacher.name, offer.hourly_rate) for offer, teacher in results] == [("Aisyah", 45), ("Lim", 60)]
            assert await service.count_offers() == 3
            assert await service.subjects() == ["Art", "Math"]
            assert len(await service.search_offers(limit=1, offset=1)) == 1
            assert raj_offer.id not in [offer.id for offer, _ in await service.search_offers()]

    @pytest.mark.asyncio
    async def test_withdraw_requires_owner(self, db):
        lim = await make_teacher("Lim")
        async with get_db_context() as session:
            offer = await FreelanceService(session).publish_offer(lim.teacher_id, "Math", 60, 2, 3)
        async with get_db_context() as session:
            with pytest.raises(NotFoundError):
                await FreelanceService(session).withdraw_offer(offer.id, "0000000000")


class TestTutorRequests:
    """Parent requests and teacher decisions."""

    @pytest.mark.asyncio
    async def test_request_and_resolve(self, db):
        lim = await make_teacher("Lim")
        async with get_db_context() as session:
            offer = await FreelanceService(session).publish_offer(lim.teacher_id, "Math", 60, 2, 3)

        async with get_db_context() as session:
            request = await FreelanceService(session).request_tutor(offer.id, 100)
        async with get_db_context() as session:
            with pytest.raises(DuplicateError):
                await FreelanceService(session).request_tutor(offer.id, 100)

        async with get_db_context() as session:
            service = FreelanceService(session)
            with pytest.raises(NotFoundError):
                await service.resolve_request(request.id, "0000000000", True)
            resolved, resolved_offer = await service.resolve_request(request.id, lim.teacher_id, True)
            assert resolved.status == "accepted"
            assert resolved_offer.id == offer.id

        async with get_db_context() as session:
            service = FreelanceService(session)
            with pytest.raises(InvalidStateError):
                await service.resolve_request(request.id, lim.teacher_id, False)
            again = await service.request_tutor(offer.id, 100)
            declined, _ = await service.resolve_request(again.id, lim.teacher_id, False)
            assert declined.status == "declined"

    @pytest.mark.asyncio
    async def test_request_withdrawn_offer(self, db):
        lim = await make_teacher("Lim")
        async with get_db_context() as session:
            offer = await FreelanceService(session).publish_offer(lim.teacher_id, "Math", 60, 2, 3)
        async with get_db_context() as session:
            await FreelanceService(session).withdraw_offer(offer.id, lim.teacher_id)
        async with get_db_context() as session:
            with pytest.raises(NotFoundError):
                await FreelanceService(session).request_tutor(offer.id, 100)
