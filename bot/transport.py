"""Outbound chat operations used by the conversation engine and services."""

import logging
from pathlib import Path
from typing import Optional, Union

from telegram import Bot
from telegram.error import BadRequest

logger = logging.getLogger(__name__)

FileInput = Union[bytes, str, Path]


class ChatTransport:
    """Interface for sending to chats. ``TelegramTransport`` is the live implementation."""

    async def send_text(self, chat_id: int, text: str, reply_markup=None, parse_mode: Optional[str] = "HTML"):
        raise NotImplementedError

    async def send_photo(self, chat_id: int, photo: FileInput, caption: Optional[str] = None, reply_markup=None):
        raise NotImplementedError

    async def send_document(self, chat_id: int, document: FileInput, filename: Optional[str] = None, caption: Optional[str] = None):
        raise NotImplementedError

    async def send_audio(self, chat_id: int, audio: FileInput, caption: Optional[str] = None):
        raise NotImplementedError

    async def send_voice(self, chat_id: int, voice: FileInput, caption: Optional[str] = None):
        raise NotImplementedError

    async def send_video(self, chat_id: int, video: FileInput, caption: Optional[str] = None):
        raise NotImplementedError

    async def edit_message(self, chat_id: int, message_id: int, text: str, reply_markup=None):
        raise NotImplementedError

    async def answer_callback(self, callback_id: str, text: Optional[str] = None):
        raise NotImplementedError

    async def download_file(self, file_id: str) -> bytes:
        raise NotImplementedError


class TelegramTransport(ChatTransport):
    """ChatTransport backed by a python-telegram-bot ``Bot``."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_text(self, chat_id, text, reply_markup=None, parse_mode="HTML"):
        return await self.bot.send_message(chat_id, text, reply_markup=reply_markup, parse_mode=parse_mode)

    async def send_photo(self, chat_id, photo, caption=None, reply_markup=None):
        return await self.bot.send_photo(chat_id, photo, caption=caption, reply_markup=reply_markup, parse_mode="HTML")

    async def send_document(self, chat_id, document, filename=None, caption=None):
        if isinstance(document, str):
            document = Path(document)
        if isinstance(document, Path):
            filename = filename or document.name
            document = document.read_bytes()
        return await self.bot.send_document(chat_id, document, filename=filename, caption=caption)

    async def send_audio(self, chat_id, audio, caption=None):
        return await self.bot.send_audio(chat_id, audio, caption=caption)

    async def send_voice(self, chat_id, voice, caption=None):
        return await self.bot.send_voice(chat_id, voice, caption=caption)

    async def send_video(self, chat_id, video, caption=None):
        return await self.bot.send_video(chat_id, video, caption=caption)

    async def edit_message(self, chat_id, message_id, text, reply_markup=None):
        try:
            return await self.bot.edit_message_text(
                text,
                chat_id=chat_id,
                message_id=message_id,
                reply_markup=reply_markup,
                parse_mode="HTML",
            )
        except BadRequest as e:
            # Editing to identical content is rejected by Telegram
            if "not modified" in str(e).lower():
                logger.debug(f"Message {message_id} in chat {chat_id} not modified")
                return None
            raise

    async def answer_callback(self, callback_id, text=None):
        return await self.bot.answer_callback_query(callback_id, text=text)

    async def download_file(self, file_id):
        file = await self.bot.get_file(file_id)
        data = await file.download_as_bytearray()
        return bytes(data)
