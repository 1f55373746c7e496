"""Freelance tutoring marketplace."""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import FreelanceOffer, Teacher, TutorRequest
from database.repository import Repository

from .errors import DuplicateError, InvalidStateError, NotFoundError
from .helpers import utcnow

logger = logging.getLogger(__name__)


class FreelanceService:
    """Rate cards published by teachers and booking requests from parents."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.offers = Repository(db, FreelanceOffer)
        self.requests = Repository(db, TutorRequest)

    async def publish_offer(
        self,
        teacher_id: str,
        subject: str,
        hourly_rate: float,
        hours_per_day: int,
        days_per_week: int,
    ) -> FreelanceOffer:
        """Create or refresh the teacher's offer for a subject."""
        offer = await self.offers.find_one(teacher_id=teacher_id, subject=subject)
        if offer is None:
            try:
                offer = await self.offers.insert(
                    teacher_id=teacher_id,
                    subject=subject,
                    hourly_rate=hourly_rate,
                    hours_per_day=hours_per_day,
                    days_per_week=days_per_week,
                    active=True,
                )
            except IntegrityError as e:
                raise DuplicateError("You already have an offer for this subject.") from e
        else:
            offer.hourly_rate = hourly_rate
            offer.hours_per_day = hours_per_day
            offer.days_per_week = days_per_week
            offer.active = True
        logger.info(f"Teacher {teacher_id} published offer for {subject} at {hourly_rate}/h")
        return offer

    async def get_offer(self, offer_id: int) -> Optional[FreelanceOffer]:
        return await self.offers.find_one(id=offer_id)

    async def offers_for_teacher(self, teacher_id: str) -> List[FreelanceOffer]:
        return await self.offers.find_many({"teacher_id": teacher_id}, order_by="subject")

    async def withdraw_offer(self, offer_id: int, teacher_id: str) -> FreelanceOffer:
        offer = await self.get_offer(offer_id)
        if offer is None or offer.teacher_id != teacher_id:
            raise NotFoundError("Offer not found.")
        offer.active = False
        return offer

    def _market(self, subject: Optional[str]):
        query = (
            select(FreelanceOffer, Teacher)
            .join(Teacher, Teacher.teacher_id == FreelanceOffer.teacher_id)
            .where(FreelanceOffer.active.is_(True), Teacher.banned.is_(False))
        )
        if subject:
            query = query.where(func.lower(FreelanceOffer.subject) == subject.lower())
        return query

    async def search_offers(
        self,
        subject: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Tuple[FreelanceOffer, Teacher]]:
        """Active offers of teachers in good standing, cheapest first."""
        query = self._market(subject).order_by(FreelanceOffer.hourly_rate, FreelanceOffer.id).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return [(offer, teacher) for offer, teacher in result.all()]

    async def count_offers(self, subject: Optional[str] = None) -> int:
        query = select(func.count()).select_from(self._market(subject).subquery())
        result = await self.db.execute(query)
        return int(result.scalar() or 0)

    async def subjects(self) -> List[str]:
        result = await self.db.execute(
            select(FreelanceOffer.subject)
            .join(Teacher, Teacher.teacher_id == FreelanceOffer.teacher_id)
            .where(FreelanceOffer.active.is_(True), Teacher.banned.is_(False))
            .distinct()
            .order_by(FreelanceOffer.subject)
        )
        return [row[0] for row in result.all()]

    async def request_tutor(self, offer_id: int, parent_id: int) -> TutorRequest:
        offer = await self.get_offer(offer_id)
        if offer is None or not offer.active:
            raise NotFoundError("This offer is no longer available.")
        existing = await self.requests.find_one(offer_id=offer_id, parent_id=parent_id, status="pending")
        if existing is not None:
            raise DuplicateError("You already have a pending request for this offer.")
        request = await self.requests.insert(offer_id=offer_id, parent_id=parent_id, status="pending", created_at=utcnow())
        logger.info(f"Parent {parent_id} requested tutoring offer {offer_id}")
        return request

    async def resolve_request(self, request_id: int, teacher_id: str, accept: bool) -> Tuple[TutorRequest, FreelanceOffer]:
        request = await self.requests.find_one(id=request_id)
        offer = await self.get_offer(request.offer_id) if request else None
        if request is None or offer is None or offer.teacher_id != teacher_id:
            raise NotFoundError("Request not found.")
        if request.status != "pending":
            raise InvalidStateError("Request already processed.")
        request.status = "accepted" if accept else "declined"
        request.resolved_at = utcnow()
        return request, offer
