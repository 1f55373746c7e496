"""Main Telegram Bot Application."""

import asyncio
import logging
from typing import Optional

from dotenv import load_dotenv
from telegram import Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from config.settings import Settings, get_settings
from database.connection import close_db, init_db
from services import ExportService, NotificationService

from .config import BotConfig
from .engine import Stage
from .flows import build_stage
from .logging_config import setup_secure_logging
from .models import EventKind, InboundEvent
from .transport import TelegramTransport

logger = logging.getLogger(__name__)

MESSAGE_FILTERS = (
    (filters.TEXT & ~filters.COMMAND, EventKind.TEXT),
    (filters.PHOTO, EventKind.PHOTO),
    (filters.Document.ALL, EventKind.DOCUMENT),
    (filters.AUDIO, EventKind.AUDIO),
    (filters.VOICE, EventKind.VOICE),
    (filters.VIDEO, EventKind.VIDEO),
)


def to_event(update: Update) -> Optional[InboundEvent]:
    """Translate a Telegram update into a transport-independent event."""
    user = update.effective_user
    chat = update.effective_chat
    if user is None or chat is None:
        return None
    common = {
        "chat_id": chat.id,
        "user_id": user.id,
        "first_name": user.first_name or "",
        "username": user.username,
    }

    query = update.callback_query
    if query is not None:
        return InboundEvent(
            kind=EventKind.CALLBACK,
            callback_data=query.data,
            callback_id=query.id,
            message_id=query.message.message_id if query.message else None,
            **common,
        )

    message = update.effective_message
    if message is None:
        return None
    if message.text is not None:
        return InboundEvent(kind=EventKind.TEXT, text=message.text, message_id=message.message_id, **common)
    if message.photo:
        return InboundEvent(kind=EventKind.PHOTO, file_id=message.photo[-1].file_id, text=message.caption, **common)
    if message.document is not None:
        return InboundEvent(
            kind=EventKind.DOCUMENT,
            file_id=message.document.file_id,
            file_name=message.document.file_name,
            text=message.caption,
            **common,
        )
    for kind, attachment in (
        (EventKind.AUDIO, message.audio),
        (EventKind.VOICE, message.voice),
        (EventKind.VIDEO, message.video),
    ):
        if attachment is not None:
            return InboundEvent(kind=kind, file_id=attachment.file_id, text=message.caption, **common)
    return None


class SchoolSystemBot:
    """Main Telegram Bot class."""

    def __init__(self, config: BotConfig, settings: Optional[Settings] = None):
        self.config = config
        self.settings = settings or get_settings()
        self.application: Optional[Application] = None
        self.stage: Optional[Stage] = None
        self._sweeper: Optional[asyncio.Task] = None

    def setup(self):
        """Setup the bot application."""
        self.application = (
            Application.builder()
            .token(self.config.bot_token)
            .concurrent_updates(self.config.concurrent_updates)
            .post_init(self._post_init)
            .post_shutdown(self._post_shutdown)
            .build()
        )

        transport = TelegramTransport(self.application.bot)
        notifier = NotificationService(transport, self.settings.oversight_chat_ids)
        exports = ExportService(self.settings.export_dir)
        self.stage = build_stage(transport, self.settings, notifier=notifier, exports=exports)

        self._register_commands()
        self._register_messages()
        self._register_callbacks()

        self.application.add_error_handler(self._error_handler)

        logger.info(f"Bot setup complete: {len(self.stage.flow_names)} flows registered")

    def _register_commands(self):
        """One CommandHandler per engine command."""
        for name in self.stage.command_names:
            self.application.add_handler(CommandHandler(name, self._command(name)))

    def _command(self, name: str):
        async def handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
            event = to_event(update)
            if event is not None:
                await self.stage.run_command(name, event)
        handler.__name__ = f"cmd_{name}"
        return handler

    def _register_messages(self):
        for message_filter, _ in MESSAGE_FILTERS:
            self.application.add_handler(MessageHandler(message_filter, self._dispatch))

    def _register_callbacks(self):
        self.application.add_handler(CallbackQueryHandler(self._dispatch))

    async def _dispatch(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        event = to_event(update)
        if event is None:
            logger.debug(f"Ignoring update {update.update_id}")
            return
        await self.stage.dispatch(event)

    async def _sweep_sessions(self):
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            expired = self.stage.sweep()
            if expired:
                logger.info(f"Expired {expired} idle sessions")

    async def _post_init(self, application: Application):
        await init_db()
        self._sweeper = asyncio.create_task(self._sweep_sessions())

    async def _post_shutdown(self, application: Application):
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
        await close_db()

    async def _error_handler(self, update: Optional[object], context: ContextTypes.DEFAULT_TYPE):
        """Handle errors raised outside the conversation engine."""
        logger.error(f"Update {update} caused error {context.error}", exc_info=context.error)

        if isinstance(update, Update) and update.effective_message:
            await update.effective_message.reply_text("❌ Something went wrong. Please try again.")

    def run(self):
        """Run the bot."""
        self.setup()

        if self.config.use_webhook and self.config.webhook_url:
            logger.info(f"Starting bot with webhook: {self.config.webhook_url}")
            self.application.run_webhook(
                listen="0.0.0.0",
                port=self.config.webhook_port,
                webhook_url=self.config.webhook_url,
                secret_token=self.config.webhook_secret,
            )
        else:
            logger.info("Starting bot with polling")
            self.application.run_polling(allowed_updates=Update.ALL_TYPES)


def main():
    """Main entry point."""
    load_dotenv()
    setup_secure_logging(logging.INFO)

    config = BotConfig.from_env()
    if not config.bot_token:
        logger.error("TELEGRAM_BOT_TOKEN not set!")
        return

    bot = SchoolSystemBot(config)
    bot.run()


if __name__ == "__main__":
    main()
