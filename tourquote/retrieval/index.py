"""Vector similarity search over historical correspondence."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import select

from tourquote.db.connection import SessionScope, get_session
from tourquote.db.models import ReferenceRecordModel
from tourquote.models import RetrievalSource
from tourquote.retrieval.embeddings import Embedder

logger = structlog.get_logger(__name__)


@dataclass
class RetrievedRecord:
    """Historical record with its similarity to the query."""

    source: RetrievalSource
    content: str
    itinerary: list[dict[str, Any]] = field(default_factory=list)


def cosine_similarity(v1: list[float] | None, v2: list[float] | None) -> float:
    if not v1 or not v2:
        return 0.0
    dot_product = sum(a * b for a, b in zip(v1, v2))
    norm_a = sum(a * a for a in v1) ** 0.5
    norm_b = sum(b * b for b in v2) ** 0.5
    return dot_product / (norm_a * norm_b) if norm_a and norm_b else 0.0


def _to_record(row: ReferenceRecordModel, similarity: float) -> RetrievedRecord:
    return RetrievedRecord(
        source=RetrievalSource(
            record_id=str(row.id),
            title=row.title,
            similarity=round(float(similarity), 4),
            excerpt=(row.content or "")[:200],
        ),
        content=row.content or "",
        itinerary=list(row.itinerary or []),
    )


class SimilarityIndex:
    """Top-K search using pgvector on PostgreSQL, Python cosine elsewhere."""

    def __init__(self, embedder: Embedder, session_scope: SessionScope = get_session) -> None:
        self.embedder = embedder
        self.session_scope = session_scope

    async def search(self, query_text: str, k: int, min_score: float) -> list[RetrievedRecord]:
        """Return up to ``k`` records with similarity >= ``min_score``, best first."""
        query_embedding = await self.embedder.embed(query_text)
        if query_embedding is None:
            logger.info("similarity_search_skipped", reason="no_embedding")
            return []

        async with self.session_scope() as session:
            dialect = session.bind.dialect.name if session.bind else "sqlite"

            if dialect == "postgresql":
                similarity = (
                    1 - ReferenceRecordModel.embedding.cosine_distance(query_embedding)
                ).label("similarity")
                stmt = (
                    select(ReferenceRecordModel, similarity)
                    .where(ReferenceRecordModel.embedding.is_not(None))
                    .order_by(similarity.desc())
                    .limit(k)
                )
                rows = (await session.execute(stmt)).all()
                scored = [(float(score), row) for row, score in rows]
            else:
                # Fetch all and score in Python; fine for development-sized data
                result = await session.execute(select(ReferenceRecordModel))
                scored = []
                for row in result.scalars():
                    embedding = row.embedding
                    if isinstance(embedding, str):
                        embedding = json.loads(embedding)
                    scored.append((cosine_similarity(query_embedding, embedding), row))
                scored.sort(key=lambda pair: pair[0], reverse=True)
                scored = scored[:k]

            records = [_to_record(row, score) for score, row in scored if score >= min_score]

        logger.info(
            "similarity_search_completed",
            k=k,
            min_score=min_score,
            returned=len(records),
            best=records[0].source.similarity if records else None,
        )
        return records
