"""Shared pytest fixtures."""

import itertools
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from tenacity import wait_none

from bot.models import EventKind, InboundEvent
from bot.transport import ChatTransport
from config.settings import Settings
from database.connection import close_db, configure_engine, init_db
from services import ExportService, NotificationService

MASTER_ID = 900


class FakeTransport(ChatTransport):
    """Records every outbound call instead of talking to Telegram."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.edits: List[Dict[str, Any]] = []
        self.answers: List[Dict[str, Any]] = []
        self.documents: List[Dict[str, Any]] = []
        self.files: Dict[str, bytes] = {}
        # sent and edited messages in the order they happened
        self.outbox: List[Dict[str, Any]] = []
        self._message_ids = itertools.count(1)

    async def send_text(self, chat_id, text, reply_markup=None, parse_mode="HTML"):
        message_id = next(self._message_ids)
        message = {"chat_id": chat_id, "text": text, "reply_markup": reply_markup, "message_id": message_id}
        self.sent.append(message)
        self.outbox.append(message)
        return SimpleNamespace(message_id=message_id)

    async def send_document(self, chat_id, document, filename=None, caption=None):
        self.documents.append({"chat_id": chat_id, "document": document, "filename": filename, "caption": caption})
        return SimpleNamespace(message_id=next(self._message_ids))

    async def edit_message(self, chat_id, message_id, text, reply_markup=None):
        message = {"chat_id": chat_id, "message_id": message_id, "text": text, "reply_markup": reply_markup}
        self.edits.append(message)
        self.outbox.append(message)
        return SimpleNamespace(message_id=message_id)

    async def answer_callback(self, callback_id, text=None):
        self.answers.append({"callback_id": callback_id, "text": text})

    async def download_file(self, file_id):
        return self.files[file_id]

    # Inspection helpers

    def texts(self, chat_id: Optional[int] = None) -> List[str]:
        """Sent and edited texts, in order, optionally for one chat."""
        return [m["text"] for m in self.outbox if chat_id is None or m["chat_id"] == chat_id]

    def last_text(self, chat_id: int) -> str:
        texts = [m["text"] for m in self.sent if m["chat_id"] == chat_id]
        return texts[-1] if texts else ""

    def buttons(self, chat_id: int) -> List[str]:
        """Callback payloads of the newest inline keyboard shown to a chat."""
        for message in reversed(self.outbox):
            markup = message.get("reply_markup")
            if message["chat_id"] == chat_id and markup is not None and hasattr(markup, "inline_keyboard"):
                return [button.callback_data for row in markup.inline_keyboard for button in row]
        return []


class ChatDriver:
    """Sends events into a stage on behalf of chat users."""

    def __init__(self, stage, transport: FakeTransport):
        self.stage = stage
        self.transport = transport
        self._callback_ids = itertools.count(1)

    async def say(self, chat_id: int, text: str, first_name: str = "Tester", username: Optional[str] = None):
        event = InboundEvent(
            chat_id=chat_id, user_id=chat_id, kind=EventKind.TEXT, text=text,
            first_name=first_name, username=username,
        )
        return await self.stage.dispatch(event)

    async def press(self, chat_id: int, data: str, message_id: int = 1, first_name: str = "Tester"):
        event = InboundEvent(
            chat_id=chat_id, user_id=chat_id, kind=EventKind.CALLBACK, callback_data=data,
            callback_id=str(next(self._callback_ids)), message_id=message_id, first_name=first_name,
        )
        return await self.stage.dispatch(event)

    async def command(self, chat_id: int, name: str, first_name: str = "Tester"):
        event = InboundEvent(
            chat_id=chat_id, user_id=chat_id, kind=EventKind.TEXT, text=f"/{name}", first_name=first_name,
        )
        return await self.stage.run_command(name, event)

    async def upload(self, chat_id: int, data: bytes, filename: str):
        file_id = f"file-{filename}"
        self.transport.files[file_id] = data
        event = InboundEvent(
            chat_id=chat_id, user_id=chat_id, kind=EventKind.DOCUMENT,
            file_id=file_id, file_name=filename, first_name="Tester",
        )
        return await self.stage.dispatch(event)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        master_admin_ids=str(MASTER_ID),
        school_registration_code="SCHOOL123",
        admin_registration_code="ADMIN123",
        page_size=2,
        export_dir=str(tmp_path / "exports"),
    )


@pytest.fixture
def notifier(transport, settings):
    return NotificationService(transport, settings.oversight_chat_ids, wait=wait_none())


@pytest.fixture
def exports(settings):
    return ExportService(settings.export_dir)


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test."""
    configure_engine("sqlite+aiosqlite://")
    await init_db()
    yield
    await close_db()


@pytest.fixture
def stage(db, transport, settings, notifier, exports):
    from bot.flows import build_stage

    return build_stage(transport, settings, notifier=notifier, exports=exports)


@pytest.fixture
def chat(stage, transport):
    return ChatDriver(stage, transport)
