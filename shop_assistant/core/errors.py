"""
Error taxonomy for the assistant session engine.

Session errors are user-recoverable, provider and retrieval failures are
converted into degraded replies by the session manager, and ledger
invariant violations abort only the request that hit them.
"""

from decimal import Decimal
from typing import Optional


class AssistantError(Exception):
    """Base class for all session engine errors."""


class SessionNotFound(AssistantError):
    """Raised when a session id is unknown or has expired."""

    def __init__(self, session_id: str):
        super().__init__(f"Chat session {session_id} not found")
        self.session_id = session_id


class SessionEnded(AssistantError):
    """Raised when a message is sent to a session that has ended."""

    def __init__(self, session_id: str):
        super().__init__(f"Chat session {session_id} has ended; start a new session")
        self.session_id = session_id


class InvalidTransition(AssistantError):
    """Raised when a session event is not allowed from its current state."""

    def __init__(self, session_id: str, status, event: str):
        super().__init__(
            f"Cannot apply '{event}' to session {session_id} in state {status.value}"
        )
        self.session_id = session_id
        self.status = status
        self.event = event


class BudgetExceeded(AssistantError):
    """Raised by admission control when no budget is left for a call.

    No provider call has been made when this is raised.
    """

    def __init__(self, remaining: Decimal, estimated_cost: Optional[Decimal] = None):
        message = f"AI budget exhausted (remaining ${remaining:.6f})"
        if estimated_cost is not None:
            message += f"; request would cost up to ${estimated_cost:.6f}"
        super().__init__(message)
        self.remaining = remaining
        self.estimated_cost = estimated_cost


class ProviderFailure(AssistantError):
    """Base class for failures of the text-generation provider."""


class ProviderTimeout(ProviderFailure):
    """The provider did not answer within the configured timeout."""


class ProviderError(ProviderFailure):
    """The provider call failed (transport error or bad response)."""


class ProviderRateLimited(ProviderFailure):
    """The provider rejected the call because of rate limiting."""


class RetrievalError(AssistantError):
    """The catalog lookup failed; treated as 'no context found'."""


class RequestCancelled(AssistantError):
    """The caller went away before the provider answered."""


class LedgerInvariantError(AssistantError):
    """A debit or token count violated a ledger invariant (programming error)."""
