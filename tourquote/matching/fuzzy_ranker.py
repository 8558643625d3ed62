"""Fuzzy ranking using RapidFuzz for tourquote.

Scores free-text place names against catalog names (canonical and localized).
"""

from __future__ import annotations

from rapidfuzz import fuzz

from tourquote.models import CatalogEntry, DraftItem


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def similarity(draft: DraftItem, entry: CatalogEntry) -> float:
    """Best token_sort_ratio between any draft name and any catalog name.

    Returns:
        Similarity scaled to 0-1
    """
    draft_names = [n for n in (draft.name, draft.name_local) if n and n.strip()]
    best = 0.0
    for left in draft_names:
        for right in entry.names():
            score = fuzz.token_sort_ratio(_normalize(left), _normalize(right))
            if score > best:
                best = score
    return best / 100.0


class FuzzyRanker:
    """RapidFuzz string similarity ranker."""

    def __init__(self, threshold: float) -> None:
        """Initialize ranker.

        Args:
            threshold: Minimum accepted similarity (0-1)
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"fuzzy threshold must be within [0, 1], got {threshold}")
        self.threshold = threshold

    def rank(
        self, draft: DraftItem, candidates: list[CatalogEntry]
    ) -> list[tuple[CatalogEntry, float]]:
        """Rank candidates by fuzzy string similarity.

        Ranking logic:
        1. Score every candidate name against the draft name and alias
        2. Keep only scores >= threshold
        3. Sort descending by score, ties broken by lowest catalog id

        Returns:
            List of (entry, score) pairs, best first
        """
        ranked = []
        for candidate in candidates:
            score = similarity(draft, candidate)
            if score >= self.threshold:
                ranked.append((candidate, score))

        ranked.sort(key=lambda pair: (-pair[1], pair[0].id))
        return ranked

    def best(
        self, draft: DraftItem, candidates: list[CatalogEntry]
    ) -> tuple[CatalogEntry, float] | None:
        ranked = self.rank(draft, candidates)
        return ranked[0] if ranked else None
