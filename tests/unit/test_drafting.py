"""Unit tests for drafting prompt construction and response parsing."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from tourquote.models import RetrievalSource, SurveyContext
from tourquote.retrieval.drafting import (
    DraftingParams,
    OpenAIDrafter,
    build_prompt,
    parse_draft,
)
from tourquote.retrieval.index import RetrievedRecord
from tourquote.retrieval.query import build_search_query


class TestParseDraft:
    def test_parses_items_in_answer_order(self):
        payload = json.dumps(
            {
                "items": [
                    {"day": 1, "name": "Gyeongbokgung Palace", "catalog_id": 12},
                    {"day": 1, "name": "Bukchon", "name_local": "북촌", "reason": "walk"},
                    {"day": 2, "name": "Gwangjang Market", "catalog_id": "7"},
                ]
            }
        )

        drafts = parse_draft(payload, days=2, places_per_day=4)

        assert [(d.day, d.order_index, d.name) for d in drafts] == [
            (1, 0, "Gyeongbokgung Palace"),
            (1, 1, "Bukchon"),
            (2, 0, "Gwangjang Market"),
        ]
        assert drafts[0].catalog_id == 12
        assert drafts[1].name_local == "북촌"
        assert drafts[2].catalog_id == 7

    def test_skips_out_of_range_days_and_nameless(self):
        payload = json.dumps(
            {
                "items": [
                    {"day": 0, "name": "Too early"},
                    {"day": 4, "name": "Too late"},
                    {"day": 1, "name": "  "},
                    {"day": "x", "name": "Bad day"},
                    "not an object",
                    {"day": 1, "name": "Kept"},
                ]
            }
        )

        drafts = parse_draft(payload, days=3, places_per_day=4)

        assert [d.name for d in drafts] == ["Kept"]

    def test_caps_places_per_day(self):
        payload = json.dumps({"items": [{"day": 1, "name": f"P{i}"} for i in range(6)]})

        drafts = parse_draft(payload, days=1, places_per_day=2)

        assert [d.name for d in drafts] == ["P0", "P1"]

    def test_bad_catalog_id_skips_item(self):
        payload = json.dumps({"items": [{"day": 1, "name": "X", "catalog_id": "abc"}]})

        assert parse_draft(payload, days=1, places_per_day=4) == []

    def test_missing_items_list(self):
        with pytest.raises(ValueError):
            parse_draft(json.dumps({"days": []}), days=1, places_per_day=4)

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            parse_draft("not json", days=1, places_per_day=4)


def record(title: str, similarity: float, content: str = "Day 1: palace") -> RetrievedRecord:
    return RetrievedRecord(
        source=RetrievalSource(record_id=title, title=title, similarity=similarity),
        content=content,
        itinerary=[{"day": 1, "name": "Gyeongbokgung Palace", "catalog_id": 1}],
    )


class TestBuildPrompt:
    def test_includes_request_and_references(self):
        context = SurveyContext(region="seoul", days=2, interests=["history"], adults=2)
        params = DraftingParams(places_per_day=3, prompt_addon="Prefer walking routes.")

        prompt = build_prompt(context, params, [record("Spring trip", 0.82)])

        assert "Region: seoul" in prompt
        assert "Interests: history" in prompt
        assert "Spring trip (similarity 0.82)" in prompt
        assert '"catalog_id": 1' in prompt
        assert "up to 3 places per day" in prompt
        assert prompt.endswith("Prefer walking routes.")

    def test_long_content_is_truncated(self):
        prompt = build_prompt(SurveyContext(), DraftingParams(), [record("Long", 0.5, "x" * 900)])

        assert "x" * 500 + "..." in prompt
        assert "x" * 501 not in prompt


class TestBuildSearchQuery:
    def test_full_survey(self):
        survey = SurveyContext(
            region="seoul",
            days=3,
            tour_type="private",
            adults=2,
            children=1,
            interests=["history", "food"],
            budget="mid",
            attractions=["Gyeongbokgung Palace"],
        )

        query = build_search_query(survey)

        assert query == (
            "3-day private tour in seoul (서울) for 2 adults, 1 child. "
            "Interests: history, food. Budget: mid. Must see: Gyeongbokgung Palace"
        )

    def test_minimal_survey(self):
        assert build_search_query(SurveyContext(days=1, adults=1)) == "1-day tour for 1 adult"


class TestOpenAIDrafter:
    @pytest.mark.asyncio
    async def test_requests_json_and_parses(self):
        content = json.dumps({"items": [{"day": 1, "name": "N Seoul Tower"}]})
        client = SimpleNamespace(
            chat=SimpleNamespace(
                completions=SimpleNamespace(
                    create=AsyncMock(
                        return_value=SimpleNamespace(
                            choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
                        )
                    )
                )
            )
        )
        drafter = OpenAIDrafter(client=client)
        params = DraftingParams(model="gpt-4o-mini", temperature=0.2)

        drafts = await drafter.draft(SurveyContext(days=1), params, [])

        assert [d.name for d in drafts] == ["N Seoul Tower"]
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.2
