"""Query embeddings via OpenAI."""

from __future__ import annotations

import hashlib

import structlog
from openai import AsyncOpenAI

from tourquote.config import get_config
from tourquote.utils.cache import RedisCache

logger = structlog.get_logger(__name__)

EMBEDDING_CACHE_TTL = 86400 * 7  # 1 week


class Embedder:
    """Generates embeddings for retrieval queries.

    Without an API key no client is created and ``embed`` returns None, which
    the retriever treats as "no evidence".
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        dimensions: int | None = None,
        cache: RedisCache | None = None,
    ) -> None:
        config = get_config()
        self.model = model or config.retrieval.embeddings_model
        self.dimensions = dimensions or config.retrieval.embedding_dimensions
        self.cache = cache
        if client is None and config.drafting.api_key:
            client = AsyncOpenAI(api_key=config.drafting.api_key)
        self.client = client

    async def embed(self, text: str) -> list[float] | None:
        """Generate an embedding for ``text``.

        Raises:
            openai.OpenAIError: If the API call fails
        """
        if not text or not text.strip() or self.client is None:
            return None

        cache_key = f"embedding:{hashlib.sha256(text.encode()).hexdigest()}"
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached:
                return cached

        response = await self.client.embeddings.create(
            input=text,
            model=self.model,
            dimensions=self.dimensions,
        )
        embedding = response.data[0].embedding

        if self.cache is not None:
            await self.cache.set(cache_key, embedding, ttl_seconds=EMBEDDING_CACHE_TTL)
        return embedding
