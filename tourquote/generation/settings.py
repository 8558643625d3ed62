"""Admin-tunable generation settings.

Environment defaults from AppConfig, overridden by the single
``generation_settings`` row. Reads go through the Redis cache; every update
invalidates the cached copy.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select

from tourquote.config import AppConfig, get_config
from tourquote.db.connection import SessionScope, get_session
from tourquote.db.models import GenerationSettingsModel
from tourquote.retrieval.drafting import DraftingParams
from tourquote.utils.cache import RedisCache

logger = structlog.get_logger(__name__)

CACHE_KEY = "generation_settings"
SETTINGS_ROW_ID = 1

OVERRIDABLE = (
    "search_limit",
    "min_similarity",
    "deadline_seconds",
    "fuzzy_threshold",
    "places_per_day",
    "model",
    "temperature",
    "max_tokens",
    "prompt_addon",
)


class GenerationSettings(BaseModel):
    """Effective parameters for one generation attempt."""

    search_limit: int = Field(default=8, ge=1, le=50)
    min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)
    deadline_seconds: float = Field(default=25.0, gt=0.0, le=300.0)
    fuzzy_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    places_per_day: int = Field(default=4, ge=1, le=12)
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=256, le=32768)
    prompt_addon: str | None = None

    @classmethod
    def from_config(cls, config: AppConfig) -> GenerationSettings:
        return cls(
            search_limit=config.retrieval.search_limit,
            min_similarity=config.retrieval.min_similarity,
            deadline_seconds=config.retrieval.deadline_seconds,
            fuzzy_threshold=config.matching.fuzzy_threshold,
            places_per_day=config.drafting.places_per_day,
            model=config.drafting.model,
            temperature=config.drafting.temperature,
            max_tokens=config.drafting.max_tokens,
        )

    def drafting_params(self) -> DraftingParams:
        return DraftingParams(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            places_per_day=self.places_per_day,
            prompt_addon=self.prompt_addon,
        )


class GenerationSettingsService:
    """Reads and updates generation settings through the cache."""

    def __init__(
        self,
        cache: RedisCache | None = None,
        session_scope: SessionScope = get_session,
        config: AppConfig | None = None,
    ) -> None:
        self.cache = cache
        self.session_scope = session_scope
        self.config = config or get_config()

    def _merge(self, row: GenerationSettingsModel | None) -> GenerationSettings:
        values = GenerationSettings.from_config(self.config).model_dump()
        if row is not None:
            for name in OVERRIDABLE:
                override = getattr(row, name)
                if override is not None:
                    values[name] = override
        return GenerationSettings.model_validate(values)

    async def get(self) -> GenerationSettings:
        if self.cache is not None:
            cached = await self.cache.get(CACHE_KEY)
            if cached:
                return GenerationSettings.model_validate(cached)

        async with self.session_scope() as session:
            row = await session.get(GenerationSettingsModel, SETTINGS_ROW_ID)
            settings = self._merge(row)

        if self.cache is not None:
            await self.cache.set(CACHE_KEY, settings.model_dump())
        return settings

    async def update(self, **overrides: Any) -> GenerationSettings:
        """Persist overrides (``None`` clears one) and invalidate the cache.

        Raises:
            ValueError: If a field is unknown
            pydantic.ValidationError: If a value is out of range
        """
        unknown = set(overrides) - set(OVERRIDABLE)
        if unknown:
            raise ValueError(f"Unknown generation settings: {sorted(unknown)}")

        async with self.session_scope() as session:
            row = await session.scalar(
                select(GenerationSettingsModel).where(GenerationSettingsModel.id == SETTINGS_ROW_ID)
            )
            if row is None:
                row = GenerationSettingsModel(id=SETTINGS_ROW_ID)
                session.add(row)
            for name, value in overrides.items():
                setattr(row, name, value)

            # Validate before commit so bad values never reach the table
            settings = self._merge(row)

        if self.cache is not None:
            await self.cache.delete(CACHE_KEY)
        logger.info("generation_settings_updated", fields=sorted(overrides))
        return settings
