"""Telegram Bot Configuration."""

import os
import re
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class BotConfig:
    """Transport-level bot settings."""

    # Telegram
    bot_token: str
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    use_webhook: bool = False
    webhook_port: int = 8080

    # Updates are processed concurrently; the conversation engine serialises per chat
    concurrent_updates: int = 64

    # Seconds between idle-session sweeps
    sweep_interval: int = 60

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables with validation."""
        token = os.getenv("TELEGRAM_BOT_TOKEN", "")

        # Validate token format (9-10 digits : 35 alphanumeric chars)
        if token and not re.match(r'^\d{9,10}:[A-Za-z0-9_-]{35}$', token):
            logger.warning("TELEGRAM_BOT_TOKEN format appears invalid")

        use_webhook = os.getenv("USE_WEBHOOK", "false").lower() == "true"
        webhook_secret = os.getenv("TELEGRAM_WEBHOOK_SECRET")
        if use_webhook and not webhook_secret:
            logger.warning("Webhook enabled but TELEGRAM_WEBHOOK_SECRET not set")

        return cls(
            bot_token=token,
            webhook_url=os.getenv("TELEGRAM_WEBHOOK_URL"),
            webhook_secret=webhook_secret,
            use_webhook=use_webhook,
            webhook_port=int(os.getenv("PORT", "8080")),
            concurrent_updates=int(os.getenv("CONCURRENT_UPDATES", "64")),
            sweep_interval=int(os.getenv("SESSION_SWEEP_INTERVAL", "60")),
        )
