from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from services.api.app.checkout.session import CheckoutSession

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    session: CheckoutSession
    touched_at: float


class InMemoryStore:
    """Process-local checkout sessions, addressed by session id.

    Finished sessions (committed, abandoned, failed) stay readable for a short grace
    period so the browser can show the final state, then they are dropped. Open
    sessions that nobody touches for the idle TTL are dropped too.

    ``locked_session`` serializes steps for one session id, so a double-clicked
    button runs the second request against the outcome of the first.
    """

    def __init__(
        self,
        *,
        terminal_ttl_s: float | None = None,
        idle_ttl_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if terminal_ttl_s is None:
            terminal_ttl_s = float(os.getenv("TABLEFRONT_SESSION_RETENTION_S", "900"))
        if idle_ttl_s is None:
            idle_ttl_s = float(os.getenv("TABLEFRONT_SESSION_IDLE_TTL_S", "7200"))

        self._terminal_ttl_s = terminal_ttl_s
        self._idle_ttl_s = idle_ttl_s
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, _Entry] = {}
        self._step_locks: dict[str, threading.Lock] = {}

    def save_session(self, session: CheckoutSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = _Entry(session, self._clock())
            self._sweep()

    def get_session(self, session_id: str) -> CheckoutSession | None:
        with self._lock:
            self._sweep()
            entry = self._sessions.get(session_id)
            return entry.session if entry is not None else None

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
            self._step_locks.pop(session_id, None)

    @contextmanager
    def locked_session(self, session_id: str) -> Iterator[CheckoutSession | None]:
        with self._lock:
            step_lock = self._step_locks.setdefault(session_id, threading.Lock())

        with step_lock:
            session = self.get_session(session_id)
            try:
                yield session
            finally:
                if session is not None:
                    self._touch(session_id)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._step_locks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _touch(self, session_id: str) -> None:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is not None:
                entry.touched_at = self._clock()

    def _sweep(self) -> None:
        now = self._clock()
        expired = [
            session_id
            for session_id, entry in self._sessions.items()
            if now - entry.touched_at
            >= (self._terminal_ttl_s if entry.session.is_terminal else self._idle_ttl_s)
        ]
        for session_id in expired:
            entry = self._sessions.pop(session_id)
            self._step_locks.pop(session_id, None)
            logger.info(
                "checkout.session_evicted session_id=%s step=%s",
                session_id,
                entry.session.step.value,
            )


store = InMemoryStore()
