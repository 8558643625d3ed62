"""Unit tests for the similarity retriever and embedder."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from tests.factories import FakeRedis, make_draft
from tourquote.errors import UpstreamUnavailableError
from tourquote.models import RetrievalSource, SurveyContext
from tourquote.retrieval.embeddings import Embedder
from tourquote.retrieval.index import RetrievedRecord, cosine_similarity
from tourquote.retrieval.retriever import SimilarityRetriever
from tourquote.utils.cache import RedisCache


def record(similarity: float) -> RetrievedRecord:
    return RetrievedRecord(
        source=RetrievalSource(record_id="r1", title="Past trip", similarity=similarity),
        content="Day 1 palace",
    )


class FakeIndex:
    def __init__(self, records=None, error: Exception | None = None) -> None:
        self.records = records or []
        self.error = error
        self.calls: list[tuple] = []

    async def search(self, query_text, k, min_score):
        self.calls.append((query_text, k, min_score))
        if self.error:
            raise self.error
        return self.records


class FakeDrafter:
    def __init__(self, drafts=None, error: Exception | None = None, delay: float = 0) -> None:
        self.drafts = drafts or []
        self.error = error
        self.delay = delay
        self.cancelled = False

    async def draft(self, context, params, sources):
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error:
            raise self.error
        return self.drafts


class TestSimilarityRetriever:
    @pytest.mark.asyncio
    async def test_returns_drafts_and_sources(self):
        index = FakeIndex([record(0.8)])
        retriever = SimilarityRetriever(index, FakeDrafter([make_draft("Palace")]))

        result = await retriever.retrieve("seoul 3 days", 8, 0.3, None, SurveyContext())

        assert [d.name for d in result.draft_items] == ["Palace"]
        assert [s.similarity for s in result.sources] == [0.8]
        assert result.raw_query == "seoul 3 days"
        assert index.calls == [("seoul 3 days", 8, 0.3)]

    @pytest.mark.asyncio
    async def test_no_records_is_empty_result(self):
        drafter = FakeDrafter([make_draft("Palace")])
        retriever = SimilarityRetriever(FakeIndex([]), drafter)

        result = await retriever.retrieve("q", 8, 0.3, None, SurveyContext())

        assert result.draft_items == []
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_search_failure_is_upstream_unavailable(self):
        retriever = SimilarityRetriever(FakeIndex(error=RuntimeError("db")), FakeDrafter())

        with pytest.raises(UpstreamUnavailableError):
            await retriever.retrieve("q", 8, 0.3, None, SurveyContext())

    @pytest.mark.asyncio
    async def test_drafting_failure_is_upstream_unavailable(self):
        retriever = SimilarityRetriever(
            FakeIndex([record(0.9)]), FakeDrafter(error=ValueError("bad json"))
        )

        with pytest.raises(UpstreamUnavailableError):
            await retriever.retrieve("q", 8, 0.3, None, SurveyContext())

    @pytest.mark.asyncio
    async def test_elapsed_deadline_skips_drafting(self):
        drafter = FakeDrafter([make_draft("Palace")])
        retriever = SimilarityRetriever(FakeIndex([record(0.9)]), drafter)
        deadline = asyncio.get_running_loop().time() - 1

        with pytest.raises(UpstreamUnavailableError):
            await retriever.retrieve("q", 8, 0.3, deadline, SurveyContext())

    @pytest.mark.asyncio
    async def test_cancellation_reaches_drafter(self):
        drafter = FakeDrafter([make_draft("Palace")], delay=10)
        retriever = SimilarityRetriever(FakeIndex([record(0.9)]), drafter)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                retriever.retrieve("q", 8, 0.3, None, SurveyContext()), timeout=0.05
            )

        assert drafter.cancelled


def embeddings_client(vector: list[float]):
    create = AsyncMock(return_value=SimpleNamespace(data=[SimpleNamespace(embedding=vector)]))
    return SimpleNamespace(embeddings=SimpleNamespace(create=create))


class TestEmbedder:
    @pytest.mark.asyncio
    async def test_without_client_returns_none(self):
        assert await Embedder().embed("seoul") is None

    @pytest.mark.asyncio
    async def test_blank_text(self):
        client = embeddings_client([0.1])

        assert await Embedder(client=client).embed("   ") is None
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embedding_is_cached(self):
        client = embeddings_client([0.1, 0.2])
        cache = RedisCache(client=FakeRedis())
        embedder = Embedder(client=client, model="m", dimensions=2, cache=cache)

        first = await embedder.embed("seoul palace tour")
        second = await embedder.embed("seoul palace tour")

        assert first == second == [0.1, 0.2]
        client.embeddings.create.assert_awaited_once_with(
            input="seoul palace tour", model="m", dimensions=2
        )


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_missing_vector(self):
        assert cosine_similarity(None, [1.0]) == 0.0
        assert cosine_similarity([0.0], [0.0]) == 0.0
