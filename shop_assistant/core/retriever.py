"""
Keyword retrieval over the catalog snapshot.

Ranks products by token overlap between the user's query and each
item's name, brand, category and description. Ranking is a pure function
of (snapshot, query, k), so it is safe to call from any number of
sessions at once without locking.
"""

import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Protocol, Sequence, Tuple

from .catalog import CatalogItem

DEFAULT_K = 3

# Points awarded per distinct query term matched in each field.
NAME_WEIGHT = 3
BRAND_WEIGHT = 2
CATEGORY_WEIGHT = 2
DESCRIPTION_WEIGHT = 1

MIN_TERM_LENGTH = 2

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_DIGITS_RE = re.compile(r"(\d+)")


def normalize_terms(text: str) -> FrozenSet[str]:
    """Lowercase ``text`` and split it into distinct word tokens."""
    if not text:
        return frozenset()
    return frozenset(
        token for token in _WORD_RE.findall(text.lower())
        if len(token) >= MIN_TERM_LENGTH
    )


def id_sort_key(item_id: str) -> Tuple:
    """Order ids naturally: digit runs compare as numbers, so "p2" < "p10"."""
    return tuple(
        int(part) if index % 2 else part
        for index, part in enumerate(_DIGITS_RE.split(item_id))
    )


class CatalogLookup(Protocol):
    """Anything that can rank catalog items for a query."""

    def rank(self, query: str, k: int = DEFAULT_K) -> List[CatalogItem]:
        ...


@dataclass(frozen=True)
class _IndexedItem:
    item: CatalogItem
    name: FrozenSet[str]
    brand: FrozenSet[str]
    category: FrozenSet[str]
    description: FrozenSet[str]

    def score(self, terms: Iterable[str]) -> int:
        total = 0
        for term in terms:
            if term in self.name:
                total += NAME_WEIGHT
            if term in self.brand:
                total += BRAND_WEIGHT
            if term in self.category:
                total += CATEGORY_WEIGHT
            if term in self.description:
                total += DESCRIPTION_WEIGHT
        return total


class CatalogRetriever:
    """Deterministic token-overlap ranking over an immutable snapshot.

    Items are indexed once, sorted by ``id_sort_key``, so ties in score
    always come back in ascending natural id order ("2" before "10").
    """

    def __init__(self, items: Sequence[CatalogItem]):
        ordered = sorted(items, key=lambda item: (id_sort_key(item.id), item.id))
        self._index: Tuple[_IndexedItem, ...] = tuple(
            _IndexedItem(
                item=item,
                name=normalize_terms(item.name),
                brand=normalize_terms(item.brand),
                category=normalize_terms(item.category),
                description=normalize_terms(item.description or "")
            )
            for item in ordered
        )

    def __len__(self) -> int:
        return len(self._index)

    @property
    def items(self) -> Tuple[CatalogItem, ...]:
        return tuple(entry.item for entry in self._index)

    def rank(self, query: str, k: int = DEFAULT_K) -> List[CatalogItem]:
        """Return up to ``k`` items ranked by relevance to ``query``.

        Items with no overlapping terms are excluded. Higher scores come
        first; equal scores keep catalog id order.
        """
        if k <= 0:
            return []
        terms = normalize_terms(query)
        if not terms:
            return []

        scored = []
        for position, entry in enumerate(self._index):
            score = entry.score(terms)
            if score > 0:
                scored.append((-score, position, entry.item))

        scored.sort(key=lambda row: (row[0], row[1]))
        return [item for _, _, item in scored[:k]]
