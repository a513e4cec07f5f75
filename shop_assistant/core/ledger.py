"""
Process-wide budget ledger.

The ledger is the single synchronization point for spend across every
chat session. All mutation happens inside a compare-and-commit section
guarded by one lock, so two concurrent requests can never both observe
"room available" and jointly overspend the ceiling.
"""

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal

from .errors import LedgerInvariantError
from .pricing import to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Consistent point-in-time view of the ledger."""
    ceiling: Decimal
    spent: Decimal
    remaining: Decimal
    tokens_used: int
    exhausted: bool = False


class BudgetLedger:
    """Shared spend counter enforcing ``spent <= ceiling``.

    The ceiling is fixed for the lifetime of the ledger. ``try_debit`` is
    the only way to add spend; a rejected debit leaves ``spent`` untouched
    and latches the ledger as exhausted until the next ``reset``.
    """

    def __init__(self, ceiling):
        ceiling = to_money(ceiling)
        if ceiling <= 0:
            raise ValueError("budget ceiling must be > 0")
        self._ceiling = ceiling
        self._spent = Decimal("0")
        self._tokens_used = 0
        self._exhausted = False
        self._lock = threading.Lock()

    @property
    def ceiling(self) -> Decimal:
        return self._ceiling

    def try_debit(self, amount: Decimal, tokens: int = 0) -> bool:
        """Atomically add ``amount`` to spend if it fits under the ceiling.

        Tokens are counted whether or not the debit commits, since the
        provider consumed them either way.

        Args:
            amount: Cost to debit, must be >= 0
            tokens: Tokens consumed by the call, must be >= 0

        Returns:
            True if the debit was committed, False if it was rejected

        Raises:
            LedgerInvariantError: If amount or tokens is negative
        """
        amount = to_money(amount)
        if amount < 0:
            raise LedgerInvariantError(f"debit amount must be >= 0, got {amount}")
        if tokens < 0:
            raise LedgerInvariantError(f"token count must be >= 0, got {tokens}")

        with self._lock:
            self._tokens_used += tokens
            if self._spent + amount > self._ceiling:
                self._exhausted = True
                committed = False
            else:
                self._spent += amount
                committed = True
            spent = self._spent

        if committed:
            logger.debug("Debited $%s (spent $%s of $%s)", amount, spent, self._ceiling)
        else:
            logger.warning(
                "Rejected debit of $%s: would exceed ceiling $%s (spent $%s)",
                amount, self._ceiling, spent
            )
        return committed

    def snapshot(self) -> LedgerSnapshot:
        """Return a consistent read of ceiling, spend and tokens."""
        with self._lock:
            spent = self._spent
            tokens = self._tokens_used
            exhausted = self._exhausted
        remaining = Decimal("0") if exhausted else self._ceiling - spent
        return LedgerSnapshot(
            ceiling=self._ceiling,
            spent=spent,
            remaining=remaining,
            tokens_used=tokens,
            exhausted=exhausted
        )

    def reset(self) -> None:
        """Zero spend and tokens. The ceiling is never changed."""
        with self._lock:
            previous = self._spent
            self._spent = Decimal("0")
            self._tokens_used = 0
            self._exhausted = False
        logger.info("Budget ledger reset (previous spend $%s)", previous)
