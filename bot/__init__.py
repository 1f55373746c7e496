"""
School System Telegram Bot Module

Provides the conversation engine and the flows for school administration,
teacher and parent interactions.
"""

__version__ = "1.0.0"
__author__ = "School System Team"

from .config import BotConfig
from .engine import Flow, FlowContext, Stage
from .handlers import BaseHandler, CommonHandler
from .models import DispatchRecord, EventKind, InboundEvent, UserRole
from .session_store import SessionStore
from .transport import ChatTransport, TelegramTransport

__all__ = [
    "BotConfig",
    "Flow",
    "FlowContext",
    "Stage",
    "BaseHandler",
    "CommonHandler",
    "DispatchRecord",
    "EventKind",
    "InboundEvent",
    "UserRole",
    "SessionStore",
    "ChatTransport",
    "TelegramTransport",
]
