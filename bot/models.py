"""Runtime models for the Telegram bot."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class UserRole(Enum):
    """User roles."""
    VISITOR = "visitor"
    PARENT = "parent"
    TEACHER = "teacher"
    ADMIN = "admin"
    MASTER_ADMIN = "master_admin"

    @property
    def is_admin(self) -> bool:
        return self in (UserRole.ADMIN, UserRole.MASTER_ADMIN)


class EventKind(Enum):
    """Inbound event kinds."""
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    AUDIO = "audio"
    VOICE = "voice"
    VIDEO = "video"
    CALLBACK = "callback"
    # Handler registration only: matches every non-callback message
    ANY = "any"


MESSAGE_KINDS = (
    EventKind.TEXT,
    EventKind.PHOTO,
    EventKind.DOCUMENT,
    EventKind.AUDIO,
    EventKind.VOICE,
    EventKind.VIDEO,
)


@dataclass
class InboundEvent:
    """A message or button press, independent of the chat transport."""
    chat_id: int
    user_id: int
    kind: EventKind
    text: Optional[str] = None
    callback_data: Optional[str] = None
    callback_id: Optional[str] = None
    message_id: Optional[int] = None
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    first_name: str = ""
    username: Optional[str] = None
    answered: bool = False

    @property
    def is_callback(self) -> bool:
        return self.kind == EventKind.CALLBACK


@dataclass
class DispatchRecord:
    """Summary of a successfully handled event, passed to dispatch hooks."""
    chat_id: int
    user_id: int
    flow: Optional[str]
    kind: EventKind
    action: Optional[str] = None
    detail: Optional[str] = None
    args: Tuple[Optional[str], ...] = field(default_factory=tuple)
