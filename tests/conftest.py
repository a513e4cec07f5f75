"""Shared fixtures for shop assistant tests."""

from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from shop_assistant.core.catalog import CatalogItem
from shop_assistant.core.ledger import BudgetLedger
from shop_assistant.core.manager import SessionManager
from shop_assistant.core.pricing import CostEstimator
from shop_assistant.core.registry import SessionRegistry
from shop_assistant.core.retriever import CatalogRetriever
from shop_assistant.core.token_counter import TokenUsage
from shop_assistant.sdk.base import Completion


CATALOG = (
    CatalogItem(id="p001", name="ASUS ROG Strix Gaming Laptop", price=42990000,
                category="Gaming Laptop", brand="ASUS", description="RTX 4060, 16GB RAM"),
    CatalogItem(id="p002", name="Dell Latitude 5440", price=24490000,
                category="Office Laptop", brand="Dell", description="Long battery life"),
    CatalogItem(id="p003", name="MSI Katana Gaming Laptop", price=27990000,
                category="Gaming Laptop", brand="MSI", description="RTX 4050"),
    CatalogItem(id="p004", name="Acer Aspire 5", price=13990000,
                category="Student Laptop", brand="Acer", description="Light laptop for school"),
    CatalogItem(id="p005", name="Gigabyte Gaming PC", price=38990000,
                category="Gaming PC", brand="Gigabyte", description="RTX 4070 desktop"),
)


class ScriptedGenerator:
    """Generation client double that records prompts and replays results.

    ``results`` items are either a (prompt_tokens, completion_tokens)
    tuple or an exception instance to raise. The last item repeats.
    """

    model = "test-model"

    def __init__(self, results=None, text: str = "Here is what I found."):
        self.results = list(results or [(2000, 500)])
        self.text = text
        self.calls: List[List[Dict[str, str]]] = []
        self.timeouts: List[float] = []

    def complete(self, messages, timeout):
        self.calls.append(list(messages))
        self.timeouts.append(timeout)
        result = self.results[0] if len(self.results) == 1 else self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        prompt_tokens, completion_tokens = result
        return Completion(
            text=self.text,
            usage=TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
            request_id=f"req-{len(self.calls)}"
        )


def make_manager(
    generator: Optional[ScriptedGenerator] = None,
    ceiling: str = "5.00",
    history_window: int = 20,
    **kwargs
) -> SessionManager:
    return SessionManager(
        retriever=kwargs.pop("retriever", CatalogRetriever(CATALOG)),
        generator=generator or ScriptedGenerator(),
        estimator=CostEstimator.from_rates("0.0005", "0.0015"),
        ledger=BudgetLedger(Decimal(ceiling)),
        registry=kwargs.pop("registry", SessionRegistry()),
        history_window=history_window,
        **kwargs
    )


@pytest.fixture
def catalog():
    return CATALOG


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def manager(generator):
    return make_manager(generator)
