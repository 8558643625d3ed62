"""Request/response bodies for the tourquote API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from tourquote.models import CustomerResponse


class RespondRequest(BaseModel):
    response: CustomerResponse
    revision_details: dict[str, Any] | str | None = None


class LinkIdentityRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)


class ResolvePlaceholderRequest(BaseModel):
    catalog_id: int


class GenerationSettingsUpdate(BaseModel):
    """Partial update; only fields present in the body are written."""

    search_limit: int | None = None
    min_similarity: float | None = None
    deadline_seconds: float | None = None
    fuzzy_threshold: float | None = None
    places_per_day: int | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    prompt_addon: str | None = None
