"""
Pre-flight admission control.

Refuses provider calls that are certain to fail budget accounting, before
any money is spent.

Enforcement Order:
1. Ledger exhausted - a previous debit was rejected, nothing more is admitted
2. Remaining budget - nothing is admitted once remaining <= 0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from .errors import BudgetExceeded
from .ledger import LedgerSnapshot
from .pricing import CostEstimator
from .token_counter import estimate_prompt_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admitted pre-flight check."""
    estimated_prompt_tokens: int
    worst_case_cost: Decimal
    remaining: Decimal

    @property
    def within_remaining(self) -> bool:
        """Whether even the worst case fits in what is left."""
        return self.worst_case_cost <= self.remaining


def check_admission(
    snapshot: LedgerSnapshot,
    estimator: CostEstimator,
    messages: List[Dict[str, str]],
    max_completion_tokens: int
) -> AdmissionDecision:
    """Estimate the worst-case cost of a call and admit or refuse it.

    The worst case assumes the provider generates ``max_completion_tokens``.
    A call is refused only when no budget remains; a worst case above the
    remaining budget is admitted (the actual reply is usually shorter) and
    settled by the ledger's atomic debit afterwards.

    Raises:
        BudgetExceeded: If the ledger is exhausted or remaining <= 0
    """
    prompt_tokens = estimate_prompt_tokens(messages)
    worst_case = estimator.estimate(prompt_tokens, max_completion_tokens)

    if snapshot.exhausted or snapshot.remaining <= 0:
        logger.warning(
            "Refusing generation call: remaining budget $%s, worst case $%s",
            snapshot.remaining, worst_case
        )
        raise BudgetExceeded(snapshot.remaining, worst_case)

    decision = AdmissionDecision(
        estimated_prompt_tokens=prompt_tokens,
        worst_case_cost=worst_case,
        remaining=snapshot.remaining
    )
    if not decision.within_remaining:
        logger.info(
            "Worst-case cost $%s exceeds remaining budget $%s; admitting anyway",
            worst_case, snapshot.remaining
        )
    return decision
