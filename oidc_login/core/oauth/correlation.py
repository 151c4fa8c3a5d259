"""
Pending login correlation.

Maps one-time state tokens to the session that started the login. A state
resolves at most once: lookup and removal happen under the same lock, so two
callbacks racing on one state cannot both succeed.
"""

import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from loguru import logger

from oidc_login.core.session import Session

LOG_PREFIX = "[CorrelationStore]"

# 32 bytes = 256 bits of entropy per state token
STATE_TOKEN_BYTES = 32


@dataclass(frozen=True)
class PendingLogin:
    state: str
    session: Session = field(repr=False)
    provider: Optional[str] = None
    created_at: float = 0.0


class CorrelationStore:
    """
    Thread-safe state -> pending login map with optional TTL.

    Args:
        ttl_seconds: lifetime of a pending login; `None` or 0 keeps entries forever
        clock: monotonic time source (seconds)
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = 600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds or None
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingLogin] = {}

    def _expired(self, pending: PendingLogin, now: float) -> bool:
        return self.ttl_seconds is not None and now - pending.created_at > self.ttl_seconds

    def begin(self, session: Session, provider: Optional[str] = None) -> str:
        """Mint a state token bound to `session` (and optionally a provider name)."""
        while True:
            state = secrets.token_urlsafe(STATE_TOKEN_BYTES)
            with self._lock:
                if state in self._pending:
                    continue
                self._pending[state] = PendingLogin(
                    state=state,
                    session=session,
                    provider=provider,
                    created_at=self._clock(),
                )
                return state

    def resolve(self, state: Optional[str]) -> Optional[PendingLogin]:
        """
        Consume `state`. Returns `None` for unknown, already used or expired states;
        callers cannot tell those apart.
        """
        if not state:
            return None
        with self._lock:
            pending = self._pending.pop(state, None)
        if pending is None or self._expired(pending, self._clock()):
            return None
        return pending

    def sweep(self) -> int:
        """Drop expired pending logins, returning how many were removed."""
        if self.ttl_seconds is None:
            return 0
        now = self._clock()
        with self._lock:
            expired = [s for s, p in self._pending.items() if self._expired(p, now)]
            for state in expired:
                del self._pending[state]
        if expired:
            logger.debug(f"{LOG_PREFIX} Swept {len(expired)} expired pending logins")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
