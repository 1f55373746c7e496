"""Logging setup that keeps bot tokens, passwords and one-time codes out of the logs."""
import logging
import re


class SecretRedactionFilter(logging.Filter):
    """Redacts credentials from log records."""

    # Patterns to redact
    SENSITIVE_PATTERNS = [
        (r'\d{9,10}:[A-Za-z0-9_-]{35}', '[TELEGRAM_BOT_TOKEN_REDACTED]'),
        (r'(?i)(password|passwd|pwd)["\']?\s*[:=]\s*["\']?[^\s,"\'}]+', r'\1=[REDACTED]'),
        (r'(?i)(password_hash)["\']?\s*[:=]\s*["\']?[0-9a-f]{64}', r'\1=[REDACTED]'),
        (r'(?i)(code|otp)["\']?\s*[:=]\s*["\']?\d{6}\b', r'\1=[REDACTED]'),
        (r'(?i)(registration_code)["\']?\s*[:=]\s*["\']?\S+', r'\1=[REDACTED]'),
        (r'secret["\']?\s*[:=]\s*["\']?[a-zA-Z0-9]{16,}', 'secret=[REDACTED]'),
    ]

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = self._redact(record.msg)
        # Also check args if it's a formatted string
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self._redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True

    def _redact(self, message):
        """Redact sensitive patterns from a message string."""
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            message = re.sub(pattern, replacement, message)
        return message


def setup_secure_logging(level=logging.INFO):
    """Configure secure logging with token redaction."""
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=level,
    )

    redaction = SecretRedactionFilter()
    root_logger = logging.getLogger()
    root_logger.addFilter(redaction)
    # Filters on a logger do not apply to records from child loggers; attach to handlers too
    for handler in root_logger.handlers:
        handler.addFilter(redaction)

    # httpx logs request URLs, which contain the bot token
    logging.getLogger("httpx").addFilter(redaction)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").addFilter(redaction)

    return root_logger
