"""
Generation provider interface.

The session manager depends only on this protocol, so any provider
(OpenAI, the offline mock, a test double) can be plugged in.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from ..core.token_counter import TokenUsage


@dataclass(frozen=True)
class Completion:
    """Text returned by the provider together with its billed usage."""
    text: str
    usage: TokenUsage
    request_id: Optional[str] = None


class GenerationClient(Protocol):
    """Sends one chat prompt to a text-generation provider.

    Implementations must honour ``timeout`` for the single call they make,
    must not retry, and must raise ProviderTimeout, ProviderRateLimited or
    ProviderError on failure.
    """

    model: str

    def complete(self, messages: List[Dict[str, str]], timeout: float) -> Completion:
        ...
