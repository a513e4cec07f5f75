"""
Pricing calculations and rate management.

Converts provider token usage into a monetary cost using fixed per-1K
token rates. All arithmetic is done in Decimal so thousands of small
debits never accumulate floating-point drift.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Union

from .token_counter import TokenUsage

# Smallest monetary unit we track (1e-8 dollars).
COST_QUANTUM = Decimal("0.00000001")

_THOUSAND = Decimal("1000")


def to_money(value: Union[str, int, float, Decimal]) -> Decimal:
    """Convert a config or user value into a Decimal amount.
    
    Floats are routed through ``str`` so that ``0.0005`` becomes
    ``Decimal("0.0005")`` rather than its binary approximation.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("monetary value must be a number")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for the configured model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens
    
    def __post_init__(self):
        """Validate rates are non-negative."""
        if self.prompt_cost_per_1k < 0:
            raise ValueError("prompt_cost_per_1k must be >= 0")
        if self.completion_cost_per_1k < 0:
            raise ValueError("completion_cost_per_1k must be >= 0")


class CostEstimator:
    """Turns token counts into dollars for a single provider rate card."""
    
    def __init__(self, pricing: ModelPricing):
        self.pricing = pricing
    
    @classmethod
    def from_rates(cls, input_rate_per_1k, output_rate_per_1k) -> "CostEstimator":
        """Build an estimator from raw per-1K rates (str, float or Decimal)."""
        return cls(ModelPricing(
            prompt_cost_per_1k=to_money(input_rate_per_1k),
            completion_cost_per_1k=to_money(output_rate_per_1k)
        ))
    
    def estimate(self, prompt_tokens: int, completion_tokens: int) -> Decimal:
        """Calculate the cost of a call with conservative rounding.
        
        Args:
            prompt_tokens: Tokens sent to the provider
            completion_tokens: Tokens generated by the provider
            
        Returns:
            Cost in dollars, rounded UP to COST_QUANTUM
            
        Raises:
            ValueError: If either token count is negative
        """
        if prompt_tokens < 0 or completion_tokens < 0:
            raise ValueError("Token counts must be non-negative integers.")
        
        # Calculate prompt cost: (tokens / 1000) * cost_per_1k
        prompt_cost = (Decimal(prompt_tokens) / _THOUSAND) * self.pricing.prompt_cost_per_1k
        
        # Calculate completion cost: (tokens / 1000) * cost_per_1k
        completion_cost = (Decimal(completion_tokens) / _THOUSAND) * self.pricing.completion_cost_per_1k
        
        total_cost = prompt_cost + completion_cost
        return total_cost.quantize(COST_QUANTUM, rounding=ROUND_UP)
    
    def estimate_usage(self, usage: TokenUsage) -> Decimal:
        """Calculate the cost of a provider-reported usage record."""
        return self.estimate(usage.prompt_tokens, usage.completion_tokens)
