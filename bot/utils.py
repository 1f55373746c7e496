"""Utility functions for Telegram Bot."""

import html
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Sequence

from telegram import InlineKeyboardButton

logger = logging.getLogger(__name__)

MAX_CALLBACK_BYTES = 64


def callback_data(*parts: Any) -> str:
    """Join parts into a button payload. Spaces become underscores."""
    payload = "_".join(str(part).replace(" ", "_") for part in parts)
    if len(payload.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ValueError(f"Callback payload exceeds {MAX_CALLBACK_BYTES} bytes: {payload!r}")
    return payload


def unpack(segment: str) -> str:
    """Reverse the space substitution done by ``callback_data``."""
    return segment.replace("_", " ")


def esc(value: Any) -> str:
    """HTML-escape a value for an HTML-formatted message."""
    return html.escape(str(value if value is not None else ""), quote=False)


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """Truncate text to max length."""
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)] + suffix


def chunk_list(items: List, chunk_size: int) -> List[List]:
    """Split list into chunks."""
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]


def format_date(dt: Optional[datetime]) -> str:
    """Format date for display."""
    if dt is None:
        return "N/A"
    return dt.strftime("%d %b %Y")


@dataclass
class Page:
    """One page of a paginated listing (pages are 1-based)."""
    number: int
    size: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.size)) if self.size else 1

    @property
    def offset(self) -> int:
        return (self.number - 1) * self.size

    @classmethod
    def clamp(cls, number: int, size: int, total: int) -> "Page":
        page = cls(1, size, total)
        page.number = min(max(1, number), page.pages)
        return page


def pagination_row(prefix: str, page: Page) -> List[InlineKeyboardButton]:
    """Previous/next buttons whose payloads are ``<prefix>_<page>``."""
    row = []
    if page.number > 1:
        row.append(InlineKeyboardButton("⬅️ Prev", callback_data=callback_data(prefix, page.number - 1)))
    if page.pages > 1:
        row.append(InlineKeyboardButton(f"{page.number}/{page.pages}", callback_data="noop"))
    if page.number < page.pages:
        row.append(InlineKeyboardButton("Next ➡️", callback_data=callback_data(prefix, page.number + 1)))
    return row


def bullet_list(lines: Sequence[str], empty: str = "None") -> str:
    return "\n".join(f"• {line}" for line in lines) if lines else empty
