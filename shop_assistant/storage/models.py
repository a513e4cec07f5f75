"""
Data models for the usage audit log.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one provider call made for a chat turn.
    
    ``billed`` is False when the ledger rejected the debit because the
    budget was exhausted; the provider was still paid for the call.
    """
    timestamp: datetime
    session_id: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    cost: Decimal
    billed: bool = True
    request_id: Optional[str] = None
    
    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class UsageSummary:
    """Aggregate figures over the usage audit log."""
    total_requests: int
    total_cost: Decimal
    billed_cost: Decimal
    total_tokens: int
    sessions: int
