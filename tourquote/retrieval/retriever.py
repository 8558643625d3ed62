"""Similarity retriever: evidence search followed by generative drafting."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import structlog

from tourquote.errors import UpstreamUnavailableError
from tourquote.models import DraftItem, RetrievalSource, SurveyContext
from tourquote.retrieval.drafting import DraftingParams, GenerativeDrafter
from tourquote.retrieval.index import SimilarityIndex

logger = structlog.get_logger(__name__)


@dataclass
class RetrievalResult:
    draft_items: list[DraftItem] = field(default_factory=list)
    sources: list[RetrievalSource] = field(default_factory=list)
    raw_query: str = ""


class SimilarityRetriever:
    """Finds similar historical records and drafts an itinerary from them.

    Cancellation is cooperative: cancelling the awaiting task cancels the
    in-flight search or drafting call, and nothing is returned afterwards.
    """

    def __init__(self, index: SimilarityIndex, drafter: GenerativeDrafter) -> None:
        self.index = index
        self.drafter = drafter

    async def retrieve(
        self,
        query: str,
        limit: int,
        min_similarity: float,
        deadline: float | None,
        context: SurveyContext,
        params: DraftingParams | None = None,
    ) -> RetrievalResult:
        """Retrieve evidence and draft items.

        Args:
            query: Natural-language search query
            limit: Maximum number of records
            min_similarity: Records below this similarity are ignored
            deadline: Absolute event-loop time after which drafting is skipped
            context: Survey answers forwarded to the drafter
            params: Drafting parameters

        Returns:
            RetrievalResult; empty (no draft items) when nothing clears
            ``min_similarity``

        Raises:
            UpstreamUnavailableError: If search or drafting fails, or the
                deadline passed before drafting started
        """
        try:
            records = await self.index.search(query, limit, min_similarity)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError(f"similarity search failed: {e}") from e

        if not records:
            return RetrievalResult(raw_query=query)

        sources = [record.source for record in records]
        if deadline is not None and asyncio.get_running_loop().time() >= deadline:
            raise UpstreamUnavailableError("deadline elapsed before drafting")

        try:
            drafts = await self.drafter.draft(context, params or DraftingParams(), records)
        except asyncio.CancelledError:
            logger.info("drafting_cancelled", query=query)
            raise
        except Exception as e:
            raise UpstreamUnavailableError(f"drafting failed: {e}") from e

        return RetrievalResult(draft_items=drafts, sources=sources, raw_query=query)
