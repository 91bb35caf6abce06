"""Heuristic similarity between free-text invoice descriptions and catalog names.

A single scoring function is shared by supplier and product resolution so both
apply the same tiers, tie-break and thresholds.

Tiers, first qualifying one wins:

1. case-insensitive exact match: 1.0
2. substring containment (either direction): shorter/longer length ratio * 0.8
3. token overlap: share of query tokens found inside (or containing) a candidate
   token, over the larger token count, * 0.6
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

EXACT_CONFIDENCE = 1.0
SUBSTRING_WEIGHT = 0.8
TOKEN_WEIGHT = 0.6

PRODUCT_MATCH_THRESHOLD = 0.3
SUPPLIER_MATCH_THRESHOLD = 0.5


@dataclass(frozen=True)
class Match(Generic[T]):
    """Best candidate for a query and its confidence (0 when nothing matched)."""

    candidate: T | None = None
    confidence: float = 0.0

    @property
    def matched(self) -> bool:
        return self.candidate is not None


def match_confidence(a: str, b: str) -> float:
    """Score how well ``a`` (the query) matches ``b`` (a catalog name).

    Args:
        a: Query text, e.g. an OCR line description
        b: Candidate text, e.g. a product name

    Returns:
        Confidence in [0, 1]
    """
    query = (a or "").strip().lower()
    candidate = (b or "").strip().lower()

    if query == candidate:
        return EXACT_CONFIDENCE

    if query in candidate or candidate in query:
        return min(len(query), len(candidate)) / max(len(query), len(candidate)) * SUBSTRING_WEIGHT

    query_tokens = query.split()
    candidate_tokens = candidate.split()
    if not query_tokens or not candidate_tokens:
        return 0.0

    matching = sum(
        1
        for token in query_tokens
        if any(other in token or token in other for other in candidate_tokens)
    )
    return matching / max(len(query_tokens), len(candidate_tokens)) * TOKEN_WEIGHT


def best_match(
    query: str,
    candidates: Iterable[T],
    names: Callable[[T], Iterable[str | None]],
    threshold: float,
) -> Match[T]:
    """Pick the candidate whose names score highest against ``query``.

    Each candidate may expose several names (a supplier's trade and business
    name); the best of them counts. Ties keep the earliest candidate in
    iteration order. A best score below ``threshold`` is reported as no match.

    Args:
        query: Text to match
        candidates: Catalog entries in catalog order
        names: Returns the comparable names of a candidate (None/empty are skipped)
        threshold: Minimum confidence to accept

    Returns:
        Match with the winning candidate, or an empty Match
    """
    best: T | None = None
    best_confidence = 0.0

    for candidate in candidates:
        score = max(
            (match_confidence(query, name) for name in names(candidate) if name),
            default=0.0,
        )
        if best is None or score > best_confidence:
            best = candidate
            best_confidence = score

    if best is None or best_confidence < threshold:
        return Match()
    return Match(candidate=best, confidence=best_confidence)
