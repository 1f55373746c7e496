"""Chat-scoped session state: active flow marker and scratch data."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    """Transient per-chat state. Lost on process restart."""
    chat_id: int
    active_flow: Optional[str] = None
    scratch: Dict[str, Any] = field(default_factory=dict)
    touched_at: float = 0.0
    idle_timeout_ms: Optional[int] = None


class SessionStore:
    """
    In-memory session store with an idle-clear policy.

    Every ``set`` and every ``touch`` (done by the engine on each dispatch)
    restarts the idle clock. Once a session has been idle for longer than its
    timeout, its scratch data and active flow are dropped the next time the
    session is read, or eagerly by ``sweep``.
    """

    def __init__(
        self,
        idle_timeout_ms: Optional[int] = 5 * 60 * 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_timeout_ms = idle_timeout_ms
        self._clock = clock
        self._sessions: Dict[int, ChatSession] = {}

    def _session(self, chat_id: int) -> ChatSession:
        session = self._sessions.get(chat_id)
        if session is None:
            session = ChatSession(chat_id=chat_id, touched_at=self._clock())
            self._sessions[chat_id] = session
        else:
            self._expire_if_idle(session)
        return session

    def _timeout_for(self, session: ChatSession) -> Optional[int]:
        if session.active_flow and session.idle_timeout_ms is not None:
            return session.idle_timeout_ms
        return self.idle_timeout_ms

    def _is_idle(self, session: ChatSession) -> bool:
        timeout = self._timeout_for(session)
        if not timeout:
            return False
        return (self._clock() - session.touched_at) * 1000 > timeout

    def _expire_if_idle(self, session: ChatSession) -> bool:
        if not self._is_idle(session):
            return False
        if session.scratch or session.active_flow:
            logger.info(
                f"Session for chat {session.chat_id} idle, clearing flow {session.active_flow!r}"
            )
        session.scratch = {}
        session.active_flow = None
        session.idle_timeout_ms = None
        session.touched_at = self._clock()
        return True

    # Scratch data

    def get(self, chat_id: int) -> Dict[str, Any]:
        """Copy of the chat's scratch data."""
        return dict(self._session(chat_id).scratch)

    def set(self, chat_id: int, patch: Mapping[str, Any]) -> None:
        """Merge ``patch`` into the chat's scratch data."""
        session = self._session(chat_id)
        session.scratch.update(patch)
        session.touched_at = self._clock()

    def pop(self, chat_id: int, *keys: str) -> None:
        session = self._session(chat_id)
        for key in keys:
            session.scratch.pop(key, None)

    def clear(self, chat_id: int) -> None:
        if chat_id in self._sessions:
            self._sessions[chat_id].scratch = {}

    # Flow marker

    def active_flow(self, chat_id: int) -> Optional[str]:
        session = self._sessions.get(chat_id)
        if session is None:
            return None
        self._expire_if_idle(session)
        return session.active_flow

    def set_active_flow(self, chat_id: int, name: Optional[str], idle_timeout_ms: Optional[int] = None) -> None:
        session = self._session(chat_id)
        session.active_flow = name
        session.idle_timeout_ms = idle_timeout_ms if name else None
        session.touched_at = self._clock()

    def touch(self, chat_id: int) -> bool:
        """Restart the idle clock. Returns True if the session had expired first."""
        session = self._sessions.get(chat_id)
        if session is None:
            self._session(chat_id)
            return False
        expired = self._expire_if_idle(session)
        session.touched_at = self._clock()
        return expired

    def sweep(self) -> int:
        """Expire idle sessions and forget empty ones. Returns the number expired."""
        expired = 0
        for chat_id in list(self._sessions):
            session = self._sessions[chat_id]
            had_state = bool(session.scratch or session.active_flow)
            if self._expire_if_idle(session) and had_state:
                expired += 1
            if not session.scratch and not session.active_flow:
                del self._sessions[chat_id]
        return expired

    def __len__(self) -> int:
        return len(self._sessions)
