"""Service wiring shared by the web app and the CLI."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from tourquote.config import AppConfig, get_config
from tourquote.db.connection import SessionScope, get_session
from tourquote.estimates.hooks import PostCommitHooks, build_default_hooks
from tourquote.estimates.lifecycle import EstimateLifecycle
from tourquote.events.bus import SessionBus, get_bus
from tourquote.generation.orchestrator import GenerationOrchestrator
from tourquote.generation.settings import GenerationSettingsService
from tourquote.notifications.email import EmailTransport
from tourquote.notifications.slack import SlackTransport
from tourquote.retrieval.drafting import OpenAIDrafter
from tourquote.retrieval.embeddings import Embedder
from tourquote.retrieval.index import SimilarityIndex
from tourquote.retrieval.retriever import SimilarityRetriever
from tourquote.utils.cache import RedisCache

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    bus: SessionBus
    hooks: PostCommitHooks
    settings: GenerationSettingsService
    lifecycle: EstimateLifecycle
    orchestrator: GenerationOrchestrator


def build_services(
    config: AppConfig | None = None,
    session_scope: SessionScope = get_session,
    bus: SessionBus | None = None,
    retriever: SimilarityRetriever | None = None,
    cache: RedisCache | None = None,
    hooks: PostCommitHooks | None = None,
) -> Services:
    """Assemble the pipeline from configuration.

    Without an OpenAI API key no retriever is built and every generation
    takes the placeholder fallback.
    """
    config = config or get_config()
    bus = bus or get_bus()
    cache = cache or RedisCache(default_ttl=config.cache.default_ttl_seconds)

    if retriever is None and config.drafting.api_key:
        retriever = SimilarityRetriever(
            SimilarityIndex(Embedder(cache=cache), session_scope),
            OpenAIDrafter(),
        )
    if retriever is None:
        logger.warning("retrieval_disabled", reason="no_api_key")

    if hooks is None:
        notifications = config.notifications
        hooks = build_default_hooks(
            bus=bus,
            email=EmailTransport(notifications) if notifications.enabled else None,
            slack=SlackTransport(notifications) if notifications.enabled else None,
        )

    settings = GenerationSettingsService(cache=cache, session_scope=session_scope, config=config)
    return Services(
        bus=bus,
        hooks=hooks,
        settings=settings,
        lifecycle=EstimateLifecycle(hooks=hooks, session_scope=session_scope),
        orchestrator=GenerationOrchestrator(
            retriever,
            settings,
            hooks=hooks,
            session_scope=session_scope,
            config=config,
        ),
    )
