"""
Token counting and usage tracking.

Holds provider-reported token usage and a rough length-based estimate
used for pre-flight admission checks.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Mapping

# Average characters per token for English-like text.
CHARS_PER_TOKEN = 4

# Per-message framing overhead charged by chat-style providers.
MESSAGE_OVERHEAD_TOKENS = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.
    
    Contains exact token counts as reported by the provider.
    """
    prompt_tokens: int
    completion_tokens: int
    
    def __post_init__(self):
        """Validate token counts are non-negative."""
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts must be >= 0")
    
    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_text_tokens(text: str) -> int:
    """Estimate the token count of a piece of text from its length."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_prompt_tokens(messages: Iterable[Mapping[str, str]]) -> int:
    """Estimate prompt tokens for a list of chat messages.
    
    Deliberately errs on the high side: the estimate feeds worst-case
    admission checks, never billing.
    """
    total = 0
    for message in messages:
        total += MESSAGE_OVERHEAD_TOKENS + estimate_text_tokens(message.get("content", ""))
    return total
