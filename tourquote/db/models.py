"""SQLAlchemy async database models for tourquote.

Maps to PostgreSQL (pgvector for reference embeddings); SQLite is supported
for development and tests with JSON standing in for the vector column.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

EMBEDDING_DIMENSIONS = 768


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def _new_session_id() -> str:
    return uuid4().hex


class CatalogItemModel(Base):
    """Bookable place/service record. Read-only for the generation pipeline."""

    __tablename__ = "catalog_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_type: Mapped[str] = mapped_column(String(32), nullable=False, default="place")

    # Bilingual names
    name_en: Mapped[str] = mapped_column(Text, nullable=False)
    name_local: Mapped[str | None] = mapped_column(Text)

    description: Mapped[str | None] = mapped_column(Text)
    images: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    lat: Mapped[float | None] = mapped_column(Float)
    lng: Mapped[float | None] = mapped_column(Float)
    address: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    region: Mapped[str | None] = mapped_column(String(64), index=True)
    categories: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Eligible for automatic suggestion by the assistant
    ai_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_catalog_type_active", "item_type", "is_active"),
        Index("idx_catalog_name_en", "name_en"),
    )


class ReferenceRecordModel(Base):
    """Historical correspondence/itinerary used as retrieval evidence."""

    __tablename__ = "reference_records"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    region: Mapped[str | None] = mapped_column(String(64), index=True)

    # Day-by-day itinerary extracted from the correspondence
    itinerary: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS).with_variant(JSON(), "sqlite")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index(
            "idx_reference_embedding",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


class ChatSessionModel(Base):
    """Assistant conversation holding the completed survey answers."""

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_session_id)

    # Authenticated identity (null for guest sessions)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True)

    survey: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(Text)
    customer_email: Mapped[str | None] = mapped_column(Text)

    # Flipped exactly once, by the submit-to-expert guard
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Attached estimate (set by generation)
    estimate_id: Mapped[int | None] = mapped_column(Integer, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class EstimateModel(Base):
    """Stateful estimate record: the aggregate root of a generated itinerary.

    ``items``, ``revision_history`` and ``generation_metadata`` are JSON
    documents; fields inside them are additive only.
    """

    __tablename__ = "estimates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    share_token: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    session_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("chat_sessions.id"), index=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)

    customer_name: Mapped[str | None] = mapped_column(Text)
    customer_email: Mapped[str | None] = mapped_column(Text)
    region: Mapped[str | None] = mapped_column(String(64))
    travel_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    adults: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    children: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    infants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    revision_history: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    generation_metadata: Mapped[dict | None] = mapped_column(JSON)
    # Bumped by every write; item edits and revisions are guarded on it
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending', 'sent', 'approved', 'completed', 'cancelled')",
            name="check_estimate_status",
        ),
    )


class GenerationSettingsModel(Base):
    """Admin overrides for generation parameters (single row, id=1).

    A null column means "use the environment default".
    """

    __tablename__ = "generation_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    search_limit: Mapped[int | None] = mapped_column(Integer)
    min_similarity: Mapped[float | None] = mapped_column(Float)
    deadline_seconds: Mapped[float | None] = mapped_column(Float)
    fuzzy_threshold: Mapped[float | None] = mapped_column(Float)
    places_per_day: Mapped[int | None] = mapped_column(Integer)
    model: Mapped[str | None] = mapped_column(String(64))
    temperature: Mapped[float | None] = mapped_column(Float)
    max_tokens: Mapped[int | None] = mapped_column(Integer)
    prompt_addon: Mapped[str | None] = mapped_column(Text)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
