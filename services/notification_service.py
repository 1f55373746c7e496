"""Notification service for sending messages."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from telegram.error import BadRequest, Forbidden, NetworkError, TelegramError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


class Delivery(Enum):
    SENT = "sent"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class DeliveryReport:
    """Tally of a bulk send."""
    sent: int = 0
    blocked: int = 0
    failed: int = 0
    failed_ids: List[int] = field(default_factory=list)

    def add(self, chat_id: int, outcome: Delivery) -> None:
        if outcome == Delivery.SENT:
            self.sent += 1
        elif outcome == Delivery.BLOCKED:
            self.blocked += 1
        else:
            self.failed += 1
            self.failed_ids.append(chat_id)

    @property
    def total(self) -> int:
        return self.sent + self.blocked + self.failed

    def summary(self) -> str:
        return f"📬 Delivered: {self.sent} | 🚫 Blocked: {self.blocked} | ❌ Failed: {self.failed}"


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, NetworkError) and not isinstance(error, BadRequest)


class NotificationService:
    """
    Sends messages to third parties (admins, oversight, parents).

    Transient network errors are retried; a blocked bot or any other Telegram
    error is logged and counted, never raised, so bulk sends always finish.
    """

    def __init__(self, transport, oversight_chat_ids: Iterable[int] = (), max_attempts: int = 3, wait=None):
        self.transport = transport
        self.oversight_chat_ids = list(oversight_chat_ids)
        self.max_attempts = max_attempts
        self.wait = wait or wait_exponential(multiplier=1, min=1, max=8)

    async def _with_retry(self, call, *args, **kwargs):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                return await call(*args, **kwargs)

    async def send(self, chat_id: int, text: str, reply_markup=None) -> Delivery:
        """Send one message and report the outcome."""
        try:
            await self._with_retry(self.transport.send_text, chat_id, text, reply_markup=reply_markup)
            return Delivery.SENT
        except Forbidden:
            logger.info(f"User {chat_id} has blocked the bot.")
            return Delivery.BLOCKED
        except TelegramError as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return Delivery.FAILED

    async def send_document(self, chat_id: int, document, filename: str, caption: Optional[str] = None) -> Delivery:
        try:
            await self._with_retry(
                self.transport.send_document, chat_id, document, filename=filename, caption=caption
            )
            return Delivery.SENT
        except Forbidden:
            logger.info(f"User {chat_id} has blocked the bot.")
            return Delivery.BLOCKED
        except TelegramError as e:
            logger.error(f"Failed to send document to {chat_id}: {e}")
            return Delivery.FAILED

    async def broadcast(self, chat_ids: Iterable[int], text: str, reply_markup=None) -> DeliveryReport:
        """Send the same message to many chats, one at a time."""
        report = DeliveryReport()
        for chat_id in dict.fromkeys(chat_ids):
            report.add(chat_id, await self.send(chat_id, text, reply_markup=reply_markup))
        logger.info(f"Broadcast finished: sent={report.sent} blocked={report.blocked} failed={report.failed}")
        return report

    async def notify_oversight(
        self,
        text: str,
        document=None,
        filename: Optional[str] = None,
    ) -> DeliveryReport:
        """Forward a status message (and optional file) to the oversight recipients."""
        if not self.oversight_chat_ids:
            logger.debug("No oversight recipients configured")
            return DeliveryReport()
        report = await self.broadcast(self.oversight_chat_ids, text)
        if document is not None:
            for chat_id in self.oversight_chat_ids:
                await self.send_document(chat_id, document, filename=filename or "log.txt")
        return report
