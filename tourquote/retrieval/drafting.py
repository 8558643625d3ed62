"""Generative drafting of itineraries from retrieved evidence."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from openai import AsyncOpenAI
from pydantic import ValidationError

from tourquote.config import get_config
from tourquote.models import DraftItem, SurveyContext
from tourquote.retrieval.index import RetrievedRecord

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DraftingParams:
    """Effective drafting parameters for one generation attempt."""

    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 4096
    places_per_day: int = 4
    prompt_addon: str | None = None


class GenerativeDrafter(Protocol):
    """Opaque drafting service.

    Implementations must let ``asyncio.CancelledError`` propagate so a
    cancelled caller also cancels the in-flight model call.
    """

    async def draft(
        self,
        context: SurveyContext,
        params: DraftingParams,
        sources: Sequence[RetrievedRecord],
    ) -> list[DraftItem]: ...


SYSTEM_PROMPT = """You are a senior travel consultant planning tours in Korea.
You draft day-by-day itineraries using past itineraries of similar trips as evidence.
Always respond with valid JSON of the form:
{"items": [{"day": 1, "name": "...", "name_local": "...", "catalog_id": null, "reason": "..."}]}
When a place comes from a reference itinerary that lists a catalog_id, copy that catalog_id.
Never invent catalog ids."""


def build_prompt(
    context: SurveyContext, params: DraftingParams, sources: Sequence[RetrievedRecord]
) -> str:
    """Render the user prompt for one drafting call."""
    lines = [
        "TRAVELLER REQUEST:",
        f"- Region: {context.region or 'any'}",
        f"- Duration: {context.days} day(s)",
        f"- Travellers: {context.adults} adult(s), {context.children} child(ren), "
        f"{context.infants} infant(s)",
        f"- Interests: {', '.join(context.interests) or 'none given'}",
        f"- Tour type: {context.tour_type or 'unspecified'}",
        f"- Budget: {context.budget or 'unspecified'}",
    ]
    if context.notes:
        lines.append(f"- Notes: {context.notes}")

    lines.append("\nREFERENCE ITINERARIES:")
    for record in sources:
        lines.append(
            f"\n--- {record.source.title or record.source.record_id} "
            f"(similarity {record.source.similarity:.2f}) ---"
        )
        excerpt = record.content[:500] + "..." if len(record.content) > 500 else record.content
        lines.append(excerpt)
        if record.itinerary:
            lines.append(json.dumps(record.itinerary, ensure_ascii=False))

    lines.append(
        f"\nPlan exactly {context.days} day(s) with up to {params.places_per_day} places per day."
    )
    if params.prompt_addon:
        lines.append(params.prompt_addon)
    return "\n".join(lines)


def parse_draft(payload: str, days: int, places_per_day: int) -> list[DraftItem]:
    """Parse the model's JSON answer into draft items.

    Items outside ``1..days`` and entries without a name are skipped; each
    day keeps at most ``places_per_day`` items in answer order.

    Raises:
        ValueError: If the payload is not a JSON object with an items list
    """
    data: Any = json.loads(payload)
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise ValueError("drafting response has no items list")

    per_day: dict[int, int] = {}
    drafts: list[DraftItem] = []
    for raw in data["items"]:
        if not isinstance(raw, dict) or not str(raw.get("name") or "").strip():
            continue
        try:
            day = int(raw.get("day", 1))
        except (TypeError, ValueError):
            continue
        if day < 1 or day > days or per_day.get(day, 0) >= places_per_day:
            continue

        catalog_id = raw.get("catalog_id")
        try:
            drafts.append(
                DraftItem(
                    name=str(raw["name"]).strip(),
                    name_local=raw.get("name_local") or None,
                    day=day,
                    order_index=per_day.get(day, 0),
                    reason=str(raw.get("reason") or ""),
                    catalog_id=int(catalog_id) if catalog_id not in (None, "") else None,
                )
            )
        except (TypeError, ValueError, ValidationError) as e:
            logger.warning("draft_item_skipped", item=raw, error=str(e))
            continue
        per_day[day] = per_day.get(day, 0) + 1
    return drafts


class OpenAIDrafter:
    """Chat-completion drafter with JSON output."""

    def __init__(self, client: AsyncOpenAI | None = None) -> None:
        if client is None:
            client = AsyncOpenAI(api_key=get_config().drafting.api_key)
        self.client = client

    async def draft(
        self,
        context: SurveyContext,
        params: DraftingParams,
        sources: Sequence[RetrievedRecord],
    ) -> list[DraftItem]:
        response = await self.client.chat.completions.create(
            model=params.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(context, params, sources)},
            ],
            temperature=params.temperature,
            max_tokens=params.max_tokens,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content or "{}"
        drafts = parse_draft(content, context.days, params.places_per_day)
        logger.info("draft_generated", model=params.model, items=len(drafts))
        return drafts
