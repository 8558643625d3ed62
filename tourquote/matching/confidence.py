"""Confidence scoring for generated itineraries."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from tourquote.models import MatchingStats, MatchTier, RetrievalSource

# Per-tier contribution to match quality
TIER_WEIGHTS: dict[MatchTier, float] = {
    MatchTier.DIRECT_ID: 1.0,
    MatchTier.EXACT: 1.0,
    MatchTier.PARTIAL: 0.8,
    MatchTier.FUZZY: 0.5,
}

WEIGHT_MATCH_QUALITY = 0.35
WEIGHT_RETRIEVAL = 0.25
WEIGHT_INTERESTS = 0.20
WEIGHT_RESOLVED = 0.20

TOP_SOURCES = 3


@dataclass(frozen=True)
class ConfidenceBreakdown:
    """Components of a confidence score."""

    match_quality: float = 0.0
    avg_retrieval_similarity: float = 0.0
    interest_coverage: float = 0.0
    placeholder_rate: float = 0.0
    score: int = 0

    def as_dict(self) -> dict[str, float]:
        return {
            "match_quality": round(self.match_quality, 4),
            "avg_retrieval_similarity": round(self.avg_retrieval_similarity, 4),
            "interest_coverage": round(self.interest_coverage, 4),
            "placeholder_rate": round(self.placeholder_rate, 4),
        }


def score_confidence(
    stats: MatchingStats,
    sources: Sequence[RetrievalSource],
    requested_interests: int,
    matched_interests: int,
) -> ConfidenceBreakdown:
    """Combine match quality, retrieval similarity and coverage into 0-100.

    Args:
        stats: Matching statistics (tier counts, placeholder count)
        sources: Retrieval sources, best first
        requested_interests: Number of interest keywords requested
        matched_interests: Number of those covered by resolved items

    Returns:
        ConfidenceBreakdown; score is 0 when there were no draft items
    """
    total = stats.total_draft_items
    if total <= 0:
        return ConfidenceBreakdown()

    weighted = sum(stats.count(tier) * weight for tier, weight in TIER_WEIGHTS.items())
    match_quality = weighted / total

    top = [s.similarity for s in list(sources)[:TOP_SOURCES]]
    avg_similarity = sum(top) / len(top) if top else 0.0

    coverage = matched_interests / requested_interests if requested_interests > 0 else 0.0
    placeholder_rate = stats.placeholder_count / total

    raw = (
        WEIGHT_MATCH_QUALITY * match_quality
        + WEIGHT_RETRIEVAL * avg_similarity
        + WEIGHT_INTERESTS * coverage
        + WEIGHT_RESOLVED * (1 - placeholder_rate)
    )
    score = round(100 * max(0.0, min(1.0, raw)))

    return ConfidenceBreakdown(
        match_quality=match_quality,
        avg_retrieval_similarity=avg_similarity,
        interest_coverage=coverage,
        placeholder_rate=placeholder_rate,
        score=int(score),
    )
