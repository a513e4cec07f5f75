"""In-memory, thread-safe registry of chat sessions with idle expiry."""

import logging
import threading
import time
from typing import Dict, List, Optional

from .errors import SessionNotFound
from .session import Session

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


class SessionRegistry:
    """Map of session id -> Session guarded by a single lock.

    The registry lock only protects the mapping itself; per-session
    state is protected by each session's own lock.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def insert(self, session: Session) -> None:
        with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Session {session.session_id} already registered")
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Session:
        """Return a session or raise SessionNotFound."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def remove(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def sweep_expired(self, now: Optional[float] = None) -> List[str]:
        """Remove sessions idle for longer than the TTL.

        Sessions with a turn in flight (lock held) are skipped and picked
        up on a later sweep.
        """
        now = time.time() if now is None else now
        with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session.is_idle(now, self.ttl_seconds) and not session.lock.locked()
            ]
            for session_id in expired:
                del self._sessions[session_id]
        if expired:
            logger.info("Evicted %d idle chat session(s)", len(expired))
        return expired

    def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        """Run ``sweep_expired`` every ``interval`` seconds on a daemon thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, args=(interval,), name="session-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop_sweeper(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed")
