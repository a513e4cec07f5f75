"""
Chat session orchestration.

The session manager owns the per-turn pipeline:

1. Validate the session state (SessionNotFound / SessionEnded)
2. Retrieve catalog context (failures degrade to no context)
3. Build the prompt from history plus the new message and run pre-flight
   admission control
4. Call the generation provider once, with a timeout and no retries
5. Price the reported usage and debit the shared ledger atomically
6. Record the user and assistant turns and return a cost snapshot

A refused or cancelled turn leaves history untouched. Steps 2-6 run while
holding the session's own lock, so turns of one session never interleave
while different sessions proceed in parallel.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple
from uuid import uuid4

from .catalog import CatalogItem, load_catalog
from .errors import ProviderError, ProviderFailure, RequestCancelled, SessionNotFound
from .guardrails import check_admission
from .ledger import BudgetLedger, LedgerSnapshot
from .pricing import CostEstimator
from .prompts import APOLOGY_MESSAGE, WELCOME_MESSAGE, build_messages
from .registry import DEFAULT_SWEEP_INTERVAL_SECONDS, SessionRegistry
from .retriever import DEFAULT_K, CatalogLookup, CatalogRetriever
from .session import DEFAULT_HISTORY_WINDOW, Session, SessionEvent, SessionStatus, Turn
from ..config.loader import ProviderKind
from ..sdk import Completion, GenerationClient, MockGenerationClient, OpenAIGenerationClient
from ..storage.models import UsageEvent
from ..storage.repository import UsageRepository

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_COMPLETION_TOKENS = 500
DEFAULT_HISTORY_LIMIT = 50

# Remaining-budget fractions that trigger cost tips.
LOW_BUDGET_FRACTION = Decimal("0.2")
HALF_BUDGET_FRACTION = Decimal("0.5")

GENERAL_TIPS = (
    "Ask short, specific questions: shorter prompts cost less.",
    "Start a new chat for a new topic: long conversations resend more history with every message.",
)


@dataclass(frozen=True)
class CostInfo:
    """Cost of one turn plus the ledger state right after it."""
    request_cost: Decimal
    total_cost: Decimal
    remaining_budget: Decimal
    budget: Decimal
    tokens_used: int
    total_tokens_used: int


@dataclass(frozen=True)
class TurnResult:
    """Outcome of ``SessionManager.send_message``.

    ``success`` is False for degraded replies (provider failure); those
    carry an apology text and no cost information.
    """
    reply: str
    context_items: Tuple[CatalogItem, ...] = ()
    cost: Optional[CostInfo] = None
    success: bool = True
    budget_exhausted: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class CostStats:
    """Ledger snapshot with plain-language advice for the storefront."""
    snapshot: LedgerSnapshot
    tips: Tuple[str, ...]


def budget_tips(snapshot: LedgerSnapshot) -> Tuple[str, ...]:
    """Return cost tips appropriate for the current ledger state."""
    tips: List[str] = []
    if snapshot.exhausted or snapshot.remaining <= 0:
        tips.append(
            "The AI budget is exhausted: new messages are refused until an administrator resets costs."
        )
    else:
        fraction = snapshot.remaining / snapshot.ceiling
        if fraction < LOW_BUDGET_FRACTION:
            tips.append("Less than 20% of the AI budget remains: keep conversations brief.")
        elif fraction < HALF_BUDGET_FRACTION:
            tips.append("More than half of the AI budget has been used.")
    tips.extend(GENERAL_TIPS)
    return tuple(tips)


class SessionManager:
    """Creates, runs and ends chat sessions against a shared budget."""

    def __init__(
        self,
        retriever: CatalogLookup,
        generator: GenerationClient,
        estimator: CostEstimator,
        ledger: BudgetLedger,
        registry: Optional[SessionRegistry] = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        retrieval_k: int = DEFAULT_K,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_completion_tokens: int = DEFAULT_MAX_COMPLETION_TOKENS,
        usage_repository: Optional[UsageRepository] = None,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        welcome_message: str = WELCOME_MESSAGE,
        id_factory: Callable[[], str] = lambda: uuid4().hex
    ):
        if history_window <= 0:
            raise ValueError("history_window must be > 0")
        if retrieval_k <= 0:
            raise ValueError("retrieval_k must be > 0")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.retriever = retriever
        self.generator = generator
        self.estimator = estimator
        self.ledger = ledger
        self.registry = registry if registry is not None else SessionRegistry()
        self.history_window = history_window
        self.retrieval_k = retrieval_k
        self.timeout = timeout
        self.max_completion_tokens = max_completion_tokens
        self.usage_repository = usage_repository
        self.sweep_interval = sweep_interval
        self.welcome_message = welcome_message
        self._new_id = id_factory

    @classmethod
    def from_config(
        cls,
        config,
        generator: Optional[GenerationClient] = None,
        catalog: Optional[Sequence[CatalogItem]] = None
    ) -> "SessionManager":
        """Wire a manager from an ``AssistantConfig``.

        Args:
            config: Validated assistant configuration
            generator: Generation client; built from ``config.generation`` if omitted
            catalog: Catalog snapshot; loaded from ``config.retrieval.catalog_path`` if omitted
        """
        if catalog is None:
            path = config.retrieval.catalog_path
            catalog = load_catalog(path) if path else ()
            if not catalog:
                logger.warning("No catalog snapshot configured; replies will have no product context")
        if generator is None:
            generator = build_generation_client(config.generation)
        usage_repository = UsageRepository(config.usage_db_path) if config.usage_db_path else None

        return cls(
            retriever=CatalogRetriever(catalog),
            generator=generator,
            estimator=CostEstimator.from_rates(
                config.budget.input_rate_per_1k, config.budget.output_rate_per_1k
            ),
            ledger=BudgetLedger(config.budget.ceiling),
            registry=SessionRegistry(ttl_seconds=config.sessions.ttl_seconds),
            history_window=config.sessions.history_window,
            retrieval_k=config.retrieval.k,
            timeout=config.generation.timeout_seconds,
            max_completion_tokens=config.generation.max_completion_tokens,
            usage_repository=usage_repository,
            sweep_interval=config.sessions.sweep_interval_seconds
        )

    def start(self) -> None:
        """Start background eviction of idle sessions."""
        self.registry.start_sweeper(self.sweep_interval)

    def shutdown(self) -> None:
        self.registry.stop_sweeper()

    def create_session(self, owner_id: Optional[str] = None) -> Tuple[str, str]:
        """Create an active session seeded with a welcome turn.

        Returns:
            (session_id, welcome_text)
        """
        session = Session(self._new_id(), owner_id=owner_id, history_window=self.history_window)
        session.append(Turn.assistant(self.welcome_message, welcome=True))
        session.apply(SessionEvent.ACTIVATE)
        self.registry.insert(session)
        logger.info("Created chat session %s (owner=%s)", session.session_id, owner_id or "anonymous")
        return session.session_id, self.welcome_message

    def send_message(
        self,
        session_id: str,
        text: str,
        cancelled: Optional[Callable[[], bool]] = None
    ) -> TurnResult:
        """Run one conversational turn.

        Args:
            session_id: Target session
            text: User message
            cancelled: Polled after the provider returns; when it reports
                True the reply is discarded (its cost is still debited)

        Returns:
            TurnResult with reply, context items and cost snapshot, or a
            degraded result with ``success=False`` on provider failure

        Raises:
            ValueError: If text is empty
            SessionNotFound: If the session is unknown or expired
            SessionEnded: If the session has ended
            BudgetExceeded: If admission control refuses the call
            RequestCancelled: If ``cancelled`` reported True
        """
        if not text or not text.strip():
            raise ValueError("message is required and cannot be empty")
        text = text.strip()

        session = self.registry.get(session_id)
        with session.lock:
            # The sweeper may have evicted the session while we waited.
            if self.registry.get(session_id) is not session:
                raise SessionNotFound(session_id)
            session.apply(SessionEvent.SEND)

            # History is only written once the turn is known to complete.
            user_turn = Turn.user(text)
            items = self._retrieve(text)
            window = (session.history + [user_turn])[-self.history_window:]
            messages = build_messages(items, window)

            check_admission(
                self.ledger.snapshot(), self.estimator, messages, self.max_completion_tokens
            )

            try:
                completion = self.generator.complete(messages, timeout=self.timeout)
            except ProviderFailure as exc:
                return self._degraded(session, user_turn, exc)
            except Exception as exc:
                logger.exception("Generation client raised an unexpected error")
                return self._degraded(session, user_turn, ProviderError(str(exc)))

            cost = self.estimator.estimate_usage(completion.usage)
            committed = self.ledger.try_debit(cost, completion.usage.total_tokens)
            self._record_usage(session_id, completion, cost, committed)

            if cancelled is not None and cancelled():
                logger.info("Discarded reply for session %s: caller disconnected", session_id)
                raise RequestCancelled(f"Request for session {session_id} was cancelled")

            session.append(user_turn)
            session.append(Turn.assistant(
                completion.text,
                item_ids=tuple(item.id for item in items),
                usage=completion.usage,
                context_used=bool(items),
                budget_exhausted=not committed
            ))

        snapshot = self.ledger.snapshot()
        return TurnResult(
            reply=completion.text,
            context_items=tuple(items),
            cost=CostInfo(
                request_cost=cost,
                total_cost=snapshot.spent,
                remaining_budget=snapshot.remaining,
                budget=snapshot.ceiling,
                tokens_used=completion.usage.total_tokens,
                total_tokens_used=snapshot.tokens_used
            ),
            budget_exhausted=not committed
        )

    def end_session(self, session_id: str) -> bool:
        """End a session; ending an ended session is a no-op.

        Returns:
            True if this call ended the session, False if it already was
        """
        session = self.registry.get(session_id)
        with session.lock:
            ended = session.end()
        if ended:
            logger.info("Ended chat session %s", session_id)
        return ended

    def get_history(
        self,
        session_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT
    ) -> Tuple[SessionStatus, List[Turn]]:
        """Return the session status and its most recent ``limit`` turns."""
        if limit <= 0:
            raise ValueError("limit must be > 0")
        session = self.registry.get(session_id)
        with session.lock:
            return session.status, session.history[-limit:]

    def cost_stats(self) -> CostStats:
        snapshot = self.ledger.snapshot()
        return CostStats(snapshot=snapshot, tips=budget_tips(snapshot))

    def reset_costs(self) -> None:
        """Administrative reset of spend and token counters."""
        self.ledger.reset()

    def _retrieve(self, text: str) -> List[CatalogItem]:
        try:
            return list(self.retriever.rank(text, self.retrieval_k))
        except Exception:
            logger.exception("Catalog retrieval failed; continuing without context")
            return []

    def _degraded(self, session: Session, user_turn: Turn, exc: ProviderFailure) -> TurnResult:
        error = type(exc).__name__
        logger.warning("Generation failed for session %s (%s): %s", session.session_id, error, exc)
        session.append(user_turn)
        session.append(Turn.assistant(APOLOGY_MESSAGE, degraded=True, error=error))
        return TurnResult(reply=APOLOGY_MESSAGE, success=False, error=error)

    def _record_usage(self, session_id: str, completion: Completion, cost: Decimal, billed: bool) -> None:
        if self.usage_repository is None:
            return
        event = UsageEvent(
            timestamp=datetime.now(),
            session_id=session_id,
            model=getattr(self.generator, "model", "unknown"),
            prompt_tokens=completion.usage.prompt_tokens,
            completion_tokens=completion.usage.completion_tokens,
            cost=cost,
            billed=billed,
            request_id=completion.request_id
        )
        try:
            self.usage_repository.record(event)
        except Exception:
            logger.exception("Failed to record usage event for session %s", session_id)


def build_generation_client(generation_config):
    """Create the generation client selected by ``generation.provider``."""
    if generation_config.provider is ProviderKind.MOCK:
        return MockGenerationClient()
    return OpenAIGenerationClient(
        model=generation_config.model,
        max_completion_tokens=generation_config.max_completion_tokens,
        temperature=generation_config.temperature
    )
