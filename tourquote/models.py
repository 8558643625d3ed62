"""tourquote Pydantic models for type-safe data validation.

Domain objects flowing through the generation pipeline: draft items from
retrieval, catalog entries, match results, resolved itinerary items and the
generation metadata persisted next to each estimate.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, computed_field, model_validator


def new_item_id() -> str:
    """Generate a stable identity for a resolved item."""
    return uuid4().hex


class MatchTier(str, Enum):
    """Matching strategy that resolved a draft item."""

    DIRECT_ID = "direct-id"
    EXACT = "exact"
    PARTIAL = "partial"
    FUZZY = "fuzzy"
    UNMATCHED = "unmatched"


class EstimateStatus(str, Enum):
    """Externally visible estimate status."""

    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class GenerationSource(str, Enum):
    """Where the itinerary of a generation attempt came from."""

    RETRIEVAL = "retrieval"
    PLACEHOLDER_FALLBACK = "placeholder-fallback"


class CustomerResponse(str, Enum):
    """Customer responses to a sent estimate."""

    APPROVED = "approved"
    DECLINED = "declined"
    REVISION = "revision"


class DraftItem(BaseModel):
    """Free-text itinerary suggestion before catalog resolution."""

    name: str
    name_local: str | None = None
    day: int = Field(ge=1)
    order_index: int = Field(default=0, ge=0)
    reason: str = ""
    catalog_id: int | None = None  # Direct-id hint echoed back by drafting


class CatalogEntry(BaseModel):
    """Read-only view of a catalog place/service record."""

    id: int
    name_en: str
    name_local: str | None = None
    description: str | None = None
    images: list[str] = Field(default_factory=list)
    lat: float | None = None
    lng: float | None = None
    address: str | None = None
    price: Decimal = Decimal("0")
    region: str | None = None
    categories: list[str] = Field(default_factory=list)
    item_type: str = "place"
    eligible: bool = True  # Eligible for auto-suggestion

    def names(self) -> list[str]:
        """Canonical name plus localized alias, if any."""
        return [n for n in (self.name_en, self.name_local) if n]


class MatchResult(BaseModel):
    """Classification of one draft item against the catalog."""

    draft: DraftItem
    tier: MatchTier
    entry: CatalogEntry | None = None
    score: float | None = None

    @model_validator(mode="after")
    def check_tier_shape(self) -> MatchResult:
        """Entry is absent iff unmatched; score is present only for fuzzy."""
        if (self.entry is None) != (self.tier == MatchTier.UNMATCHED):
            raise ValueError("entry must be absent exactly when tier is unmatched")
        if (self.score is not None) != (self.tier == MatchTier.FUZZY):
            raise ValueError("score must be present exactly when tier is fuzzy")
        return self

    @property
    def matched(self) -> bool:
        return self.tier != MatchTier.UNMATCHED


class ItemSnapshot(BaseModel):
    """Catalog display fields captured at generation time."""

    name_en: str
    name_local: str | None = None
    description: str | None = None
    images: list[str] = Field(default_factory=list)
    lat: float | None = None
    lng: float | None = None
    address: str | None = None
    region: str | None = None
    categories: list[str] = Field(default_factory=list)

    @classmethod
    def from_entry(cls, entry: CatalogEntry) -> ItemSnapshot:
        return cls(
            name_en=entry.name_en,
            name_local=entry.name_local,
            description=entry.description,
            images=list(entry.images),
            lat=entry.lat,
            lng=entry.lng,
            address=entry.address,
            region=entry.region,
            categories=list(entry.categories),
        )


class _ItemBase(BaseModel):
    id: str = Field(default_factory=new_item_id)
    day: int = Field(ge=1)
    order_index: int = Field(default=0, ge=0)
    item_type: str = "place"
    quantity: int = Field(default=1, ge=0)
    unit_price: Decimal = Decimal("0")
    note: str | None = None
    display_name: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class PlaceholderItem(_ItemBase):
    """Itinerary slot awaiting human resolution. Has no catalog identity."""

    kind: Literal["placeholder"] = "placeholder"
    item_type: str = "tbd"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def placeholder(self) -> bool:
        return True


class CatalogItem(_ItemBase):
    """Itinerary item bound to a catalog entry."""

    kind: Literal["resolved"] = "resolved"
    catalog_id: int
    snapshot: ItemSnapshot

    @computed_field  # type: ignore[prop-decorator]
    @property
    def placeholder(self) -> bool:
        return False

    @classmethod
    def from_entry(
        cls,
        entry: CatalogEntry,
        day: int,
        order_index: int = 0,
        quantity: int = 1,
        note: str | None = None,
    ) -> CatalogItem:
        """Build a resolved item from a catalog entry, snapshotting display fields."""
        return cls(
            day=day,
            order_index=order_index,
            item_type=entry.item_type,
            quantity=quantity,
            unit_price=entry.price,
            note=note,
            display_name=entry.name_local or entry.name_en,
            catalog_id=entry.id,
            snapshot=ItemSnapshot.from_entry(entry),
        )


ResolvedItem = Annotated[
    Union[PlaceholderItem, CatalogItem], Field(discriminator="kind")
]

_items_adapter: TypeAdapter[list[ResolvedItem]] = TypeAdapter(list[ResolvedItem])


def load_items(raw: list[dict[str, Any]] | None) -> list[PlaceholderItem | CatalogItem]:
    """Parse persisted item JSON back into typed items."""
    return _items_adapter.validate_python(raw or [])


def dump_items(items: list[PlaceholderItem | CatalogItem]) -> list[dict[str, Any]]:
    """Serialize items for JSON storage (computed fields included)."""
    return [item.model_dump(mode="json") for item in items]


class RetrievalSource(BaseModel):
    """Historical record returned by the similarity index."""

    record_id: str
    title: str | None = None
    similarity: float
    excerpt: str | None = None


class UnresolvedItem(BaseModel):
    name: str
    day: int
    reason: str


class MatchingStats(BaseModel):
    """Per-tier matching counters for one generation attempt."""

    total_draft_items: int = 0
    direct_id: int = 0
    exact: int = 0
    partial: int = 0
    fuzzy: int = 0
    unmatched: int = 0
    placeholder_count: int = 0
    unresolved: list[UnresolvedItem] = Field(default_factory=list)
    dropped_region: int = 0
    dropped_duplicate: int = 0
    dropped_ineligible: int = 0

    def count(self, tier: MatchTier) -> int:
        return getattr(self, tier.value.replace("-", "_"))


class InterestCoverage(BaseModel):
    requested: list[str] = Field(default_factory=list)
    matched: list[str] = Field(default_factory=list)


class GenerationMetadata(BaseModel):
    """Audit record of one generation attempt. Write-once."""

    generated_at: datetime
    elapsed_ms: int
    source: GenerationSource
    fallback_reason: str | None = None
    query: str | None = None
    sources: list[RetrievalSource] = Field(default_factory=list)
    matching: MatchingStats = Field(default_factory=MatchingStats)
    interests: InterestCoverage = Field(default_factory=InterestCoverage)
    confidence_score: int = Field(default=0, ge=0, le=100)
    confidence_breakdown: dict[str, float] = Field(default_factory=dict)


class SurveyContext(BaseModel):
    """Survey answers relevant to generation."""

    customer_name: str | None = None
    region: str | None = None
    days: int = Field(default=3, ge=1)
    interests: list[str] = Field(default_factory=list)
    tour_type: str | None = None
    budget: str | None = None
    adults: int = Field(default=1, ge=0)
    children: int = Field(default=0, ge=0)
    infants: int = Field(default=0, ge=0)
    attractions: list[str] = Field(default_factory=list)  # Must-see places
    notes: str | None = None

    @property
    def total_pax(self) -> int:
        return max(self.adults + self.children + self.infants, 1)


class RevisionEntry(BaseModel):
    """One customer modification request."""

    revision_number: int
    requested_at: datetime
    note: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    status: str = "pending"


class BusEvent(BaseModel):
    """Event delivered over the session bus."""

    id: str = Field(default_factory=new_item_id)
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
