"""
Chat session domain model.

A session is an explicit state machine (Created -> Active -> Ended) with
a bounded conversation history. Every status change goes through
``Session.apply`` which validates it against ``TRANSITIONS``.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

from .errors import InvalidTransition, SessionEnded
from .token_counter import TokenUsage

DEFAULT_HISTORY_WINDOW = 20


class Role(Enum):
    """Author of a turn."""
    USER = "user"
    ASSISTANT = "assistant"


class SessionStatus(Enum):
    """Lifecycle states of a chat session."""
    CREATED = "created"
    ACTIVE = "active"
    ENDED = "ended"


class SessionEvent(Enum):
    """Events that drive the session state machine."""
    ACTIVATE = "activate"
    SEND = "send"
    END = "end"


TRANSITIONS: Dict[Tuple[SessionStatus, SessionEvent], SessionStatus] = {
    (SessionStatus.CREATED, SessionEvent.ACTIVATE): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, SessionEvent.SEND): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, SessionEvent.END): SessionStatus.ENDED,
    (SessionStatus.ENDED, SessionEvent.END): SessionStatus.ENDED,
}


@dataclass(frozen=True)
class Turn:
    """One message in a conversation."""
    role: Role
    text: str
    timestamp: float = field(default_factory=time.time)
    item_ids: Tuple[str, ...] = ()
    usage: Optional[TokenUsage] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.role is Role.USER and (self.item_ids or self.usage is not None):
            raise ValueError("user turns carry no item ids or token usage")

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(role=Role.USER, text=text)

    @classmethod
    def assistant(
        cls,
        text: str,
        item_ids: Tuple[str, ...] = (),
        usage: Optional[TokenUsage] = None,
        **metadata: Any
    ) -> "Turn":
        return cls(role=Role.ASSISTANT, text=text, item_ids=tuple(item_ids), usage=usage, metadata=metadata)


class Session:
    """In-memory state for one conversation.

    History is a fixed-capacity ring buffer: once ``history_window`` turns
    are held, appending drops the oldest turn. Callers must hold ``lock``
    while mutating a session that is visible to other threads.
    """

    def __init__(
        self,
        session_id: str,
        owner_id: Optional[str] = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        now: Optional[float] = None
    ):
        if history_window <= 0:
            raise ValueError("history_window must be > 0")
        created = time.time() if now is None else now
        self.session_id = session_id
        self.owner_id = owner_id
        self.status = SessionStatus.CREATED
        self.created_at = created
        self.last_activity = created
        self.ended_at: Optional[float] = None
        self.history_window = history_window
        self.lock = threading.Lock()
        self._history: Deque[Turn] = deque(maxlen=history_window)

    @property
    def history(self) -> List[Turn]:
        """Turns currently retained, oldest first."""
        return list(self._history)

    def can_apply(self, event: SessionEvent) -> bool:
        return (self.status, event) in TRANSITIONS

    def apply(self, event: SessionEvent) -> SessionStatus:
        """Move to the next state for ``event`` or raise a typed error."""
        target = TRANSITIONS.get((self.status, event))
        if target is None:
            if self.status is SessionStatus.ENDED and event is SessionEvent.SEND:
                raise SessionEnded(self.session_id)
            raise InvalidTransition(self.session_id, self.status, event.value)
        self.status = target
        return target

    def touch(self, now: Optional[float] = None) -> None:
        self.last_activity = time.time() if now is None else now

    def append(self, turn: Turn) -> None:
        """Record a turn; the oldest turn is evicted when the window is full."""
        if self.status is SessionStatus.ENDED:
            raise SessionEnded(self.session_id)
        self._history.append(turn)
        self.touch(turn.timestamp)

    def end(self, now: Optional[float] = None) -> bool:
        """End the session and drop its history.

        Returns True if this call ended the session, False if it was
        already ended.
        """
        already_ended = self.status is SessionStatus.ENDED
        self.apply(SessionEvent.END)
        if already_ended:
            return False
        self.ended_at = time.time() if now is None else now
        self.last_activity = self.ended_at
        self._history.clear()
        return True

    def is_idle(self, now: float, ttl_seconds: float) -> bool:
        return now - self.last_activity > ttl_seconds
