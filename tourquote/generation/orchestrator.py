"""End-to-end estimate generation for tourquote.

Coordinates retrieval → resolution → attraction merge → scoring →
persistence, with a placeholder fallback whenever retrieval yields nothing.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import uuid4

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from tourquote.catalog.repository import SqlCatalogLookup
from tourquote.config import AppConfig, get_config
from tourquote.db.connection import SessionScope, get_session
from tourquote.db.models import ChatSessionModel, EstimateModel
from tourquote.errors import (
    NotFoundError,
    PersistenceError,
    StateConflictError,
    UpstreamUnavailableError,
)
from tourquote.estimates.hooks import ESTIMATE_GENERATED, PostCommitHooks
from tourquote.estimates.lifecycle import compute_totals, estimate_payload
from tourquote.generation.attractions import interest_coverage, merge_attractions
from tourquote.generation.settings import GenerationSettings, GenerationSettingsService
from tourquote.matching.confidence import score_confidence
from tourquote.matching.engine import MatchingEngine, MatchOptions, build_placeholder
from tourquote.matching.filters import region_label, reindex_days
from tourquote.models import (
    CatalogItem,
    EstimateStatus,
    GenerationMetadata,
    GenerationSource,
    MatchingStats,
    PlaceholderItem,
    SurveyContext,
    dump_items,
)
from tourquote.retrieval.query import build_search_query
from tourquote.retrieval.retriever import RetrievalResult, SimilarityRetriever

logger = structlog.get_logger(__name__)

Item = PlaceholderItem | CatalogItem


class GenerationPhase(str, Enum):
    RETRIEVING = "retrieving"
    RESOLVING = "resolving"
    SCORING = "scoring"
    PERSISTING = "persisting"
    DONE = "done"
    FALLBACK = "fallback"


@dataclass
class GenerationResult:
    estimate_id: int
    share_token: str
    items: list[Item]
    has_placeholders: bool
    status: str
    metadata: GenerationMetadata


def build_title(survey: SurveyContext) -> str:
    region = region_label(survey.region) or "Korea"
    return f"AI Quote - {survey.customer_name or 'Guest'} ({region} {survey.days}D)"


def fallback_items(days: int, note: str | None = None) -> list[Item]:
    """One placeholder per requested day."""
    return [
        build_placeholder(day, f"Day {day} itinerary (TBD)", note=note)
        for day in range(1, days + 1)
    ]


class GenerationOrchestrator:
    """Drives one generation attempt per call.

    Upstream failures never escape: they select the fallback branch. Only
    not-found, state-conflict and persistence failures reach the caller.
    """

    def __init__(
        self,
        retriever: SimilarityRetriever | None,
        settings_service: GenerationSettingsService,
        hooks: PostCommitHooks | None = None,
        session_scope: SessionScope = get_session,
        config: AppConfig | None = None,
    ) -> None:
        self.retriever = retriever
        self.settings_service = settings_service
        self.hooks = hooks or PostCommitHooks()
        self.session_scope = session_scope
        self.config = config or get_config()

    def _enter(self, session_id: str, phase: GenerationPhase, **extra) -> None:
        logger.info("generation_phase", session_id=session_id, phase=phase.value, **extra)

    async def _load_survey(self, session_id: str) -> SurveyContext:
        async with self.session_scope() as session:
            chat = await session.get(ChatSessionModel, session_id)
            if chat is None:
                raise NotFoundError(f"Session {session_id} not found")
            if chat.is_completed:
                raise StateConflictError(f"Session {session_id} was already submitted")
            survey = dict(chat.survey or {})
            survey.setdefault("customer_name", chat.customer_name)
            return SurveyContext.model_validate(survey)

    async def _retrieve(
        self, session_id: str, query: str, survey: SurveyContext, settings: GenerationSettings
    ) -> tuple[RetrievalResult, str | None]:
        """Race retrieval against the deadline.

        Returns:
            (result, fallback reason); the reason is None when drafts exist
        """
        if self.retriever is None:
            return RetrievalResult(raw_query=query), "retrieval_disabled"

        deadline = asyncio.get_running_loop().time() + settings.deadline_seconds
        try:
            # wait_for cancels the in-flight retrieval on expiry; its result is discarded
            result = await asyncio.wait_for(
                self.retriever.retrieve(
                    query,
                    settings.search_limit,
                    settings.min_similarity,
                    deadline,
                    survey,
                    settings.drafting_params(),
                ),
                timeout=settings.deadline_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "generation_fallback",
                session_id=session_id,
                reason="timeout",
                deadline_seconds=settings.deadline_seconds,
            )
            return RetrievalResult(raw_query=query), "timeout"
        except UpstreamUnavailableError as e:
            logger.warning(
                "generation_fallback",
                session_id=session_id,
                reason="upstream_unavailable",
                error=str(e),
            )
            return RetrievalResult(raw_query=query), "upstream_unavailable"

        if not result.draft_items:
            reason = "no_draft_items" if result.sources else "below_similarity_threshold"
            logger.info("generation_fallback", session_id=session_id, reason=reason)
            return result, reason
        return result, None

    async def generate_estimate(self, session_id: str) -> GenerationResult:
        """Generate, score and persist an estimate for a completed survey.

        Raises:
            NotFoundError: If the session does not exist
            StateConflictError: If the session was already submitted
            PersistenceError: If the estimate could not be written; nothing
                was committed and the call may be retried
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        generated_at = datetime.now(timezone.utc)

        survey = await self._load_survey(session_id)
        settings = await self.settings_service.get()
        query = build_search_query(survey)

        self._enter(session_id, GenerationPhase.RETRIEVING, query=query)
        retrieval, fallback_reason = await self._retrieve(session_id, query, survey, settings)

        note = self.config.estimate.placeholder_note
        async with self.session_scope() as session:
            lookup = SqlCatalogLookup(session)

            if fallback_reason is None:
                self._enter(
                    session_id, GenerationPhase.RESOLVING, drafts=len(retrieval.draft_items)
                )
                outcome = await MatchingEngine(lookup).resolve(
                    retrieval.draft_items,
                    MatchOptions(
                        fuzzy_threshold=settings.fuzzy_threshold,
                        region=survey.region,
                        placeholder_note=note,
                    ),
                    pax=survey.total_pax,
                )
                items, stats = outcome.items, outcome.stats
                source = GenerationSource.RETRIEVAL
            else:
                self._enter(session_id, GenerationPhase.FALLBACK, reason=fallback_reason)
                items = fallback_items(survey.days, note)
                stats = MatchingStats(
                    total_draft_items=len(items), placeholder_count=len(items)
                )
                source = GenerationSource.PLACEHOLDER_FALLBACK

            attractions = await lookup.find_attractions(survey.attractions, survey.region)

        items, added = merge_attractions(
            items,
            [attractions[name] for name in survey.attractions if name in attractions],
            survey.days,
            pax=survey.total_pax,
        )
        items = reindex_days(items)
        coverage = interest_coverage(survey.interests, items)

        self._enter(session_id, GenerationPhase.SCORING)
        sources = retrieval.sources
        breakdown = score_confidence(
            stats, sources, len(coverage.requested), len(coverage.matched)
        )
        metadata = GenerationMetadata(
            generated_at=generated_at,
            elapsed_ms=int((loop.time() - started) * 1000),
            source=source,
            fallback_reason=fallback_reason,
            query=retrieval.raw_query or query,
            sources=sources[: self.config.retrieval.top_sources],
            matching=stats,
            interests=coverage,
            confidence_score=breakdown.score,
            confidence_breakdown=breakdown.as_dict(),
        )

        self._enter(
            session_id,
            GenerationPhase.PERSISTING,
            items=len(items),
            attractions_added=len(added),
        )
        try:
            payload = await asyncio.wait_for(
                self._persist(session_id, survey, items, metadata),
                timeout=self.config.estimate.persist_deadline_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error("estimate_persist_timeout", session_id=session_id)
            raise PersistenceError(f"Persisting estimate for session {session_id} timed out") from e
        except SQLAlchemyError as e:
            logger.error("estimate_persist_failed", session_id=session_id, error=str(e))
            raise PersistenceError(
                f"Persisting estimate for session {session_id} failed: {e}"
            ) from e

        self._enter(session_id, GenerationPhase.DONE, estimate_id=payload["id"])
        await self.hooks.run(ESTIMATE_GENERATED, payload)

        has_placeholders = any(isinstance(item, PlaceholderItem) for item in items)
        logger.info(
            "estimate_generated",
            session_id=session_id,
            estimate_id=payload["id"],
            source=source.value,
            confidence=breakdown.score,
            has_placeholders=has_placeholders,
        )
        return GenerationResult(
            estimate_id=payload["id"],
            share_token=payload["share_token"],
            items=items,
            has_placeholders=has_placeholders,
            status=payload["status"],
            metadata=metadata,
        )

    async def _persist(
        self,
        session_id: str,
        survey: SurveyContext,
        items: list[Item],
        metadata: GenerationMetadata,
    ) -> dict:
        """Insert the estimate and attach it to the session in one transaction."""
        has_placeholders = any(isinstance(item, PlaceholderItem) for item in items)
        total = compute_totals(items)

        async with self.session_scope() as session:
            estimate = EstimateModel(
                share_token=uuid4().hex[:16],
                title=build_title(survey),
                session_id=session_id,
                status=(EstimateStatus.PENDING if has_placeholders else EstimateStatus.DRAFT).value,
                customer_name=survey.customer_name,
                region=survey.region,
                travel_days=survey.days,
                adults=survey.adults,
                children=survey.children,
                infants=survey.infants,
                items=dump_items(items),
                subtotal=total,
                total_amount=total,
                revision_history=[],
                generation_metadata=metadata.model_dump(mode="json"),
                valid_until=metadata.generated_at
                + timedelta(days=self.config.estimate.validity_days),
            )
            session.add(estimate)
            await session.flush()

            chat = await session.get(ChatSessionModel, session_id)
            if chat is None:
                raise NotFoundError(f"Session {session_id} not found")
            estimate.customer_email = chat.customer_email

            await session.execute(
                update(ChatSessionModel)
                .where(ChatSessionModel.id == session_id)
                .values(estimate_id=estimate.id)
                .execution_options(synchronize_session=False)
            )
            await session.flush()
            return estimate_payload(estimate)
