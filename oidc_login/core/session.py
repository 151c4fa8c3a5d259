"""
Application sessions as seen by the login flow.

The flow only needs an addressable attribute bag: `Session` is that protocol.
`MemorySession` / `SessionStore` are the in-process implementation the bundled
HTTP app uses, addressed by a cookie.
"""

import secrets
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from loguru import logger

LOG_PREFIX = "[SessionStore]"


@runtime_checkable
class Session(Protocol):
    @property
    def id(self) -> str: ...

    def set_attr(self, key: str, value: Any) -> None: ...

    def attr(self, key: str, default: Any = None) -> Any: ...


class MemorySession:
    """Session kept in process memory."""

    def __init__(self, session_id: Optional[str] = None):
        self._id = session_id or secrets.token_urlsafe(32)
        self._lock = threading.Lock()
        self._attrs: Dict[str, Any] = {}

    @property
    def id(self) -> str:
        return self._id

    def set_attr(self, key: str, value: Any) -> None:
        with self._lock:
            if value is None:
                self._attrs.pop(key, None)
            else:
                self._attrs[key] = value

    def attr(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._attrs.get(key, default)

    def __repr__(self) -> str:
        return f"<MemorySession id={self._id[:8]}...>"


class SessionStore:
    """
    Sessions by id, evicted after `idle_ttl_seconds` without a lookup.

    Args:
        idle_ttl_seconds: idle lifetime of a session; `None` or 0 keeps sessions forever
        clock: monotonic time source (seconds)
    """

    def __init__(
        self,
        idle_ttl_seconds: Optional[float] = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_ttl_seconds = idle_ttl_seconds or None
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, MemorySession] = {}
        self._last_seen: Dict[str, float] = {}

    def _expired(self, session_id: str, now: float) -> bool:
        return self.idle_ttl_seconds is not None and now - self._last_seen[session_id] > self.idle_ttl_seconds

    def _drop(self, session_id: str) -> None:
        del self._sessions[session_id]
        del self._last_seen[session_id]

    def get(self, session_id: Optional[str]) -> Optional[MemorySession]:
        """Session by id, `None` when unknown or idle for too long. A hit counts as activity."""
        if not session_id:
            return None
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._expired(session_id, now):
                self._drop(session_id)
                return None
            self._last_seen[session_id] = now
            return session

    def create(self) -> MemorySession:
        session = MemorySession()
        with self._lock:
            self._sessions[session.id] = session
            self._last_seen[session.id] = self._clock()
        return session

    def get_or_create(self, session_id: Optional[str]) -> tuple[MemorySession, bool]:
        """Returns (session, created)."""
        session = self.get(session_id)
        if session is not None:
            return session, False
        return self.create(), True

    def sweep(self) -> int:
        """Drop idle sessions, returning how many were removed."""
        if self.idle_ttl_seconds is None:
            return 0
        now = self._clock()
        with self._lock:
            expired = [sid for sid in self._sessions if self._expired(sid, now)]
            for session_id in expired:
                self._drop(session_id)
        if expired:
            logger.debug(f"{LOG_PREFIX} Swept {len(expired)} idle sessions")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
