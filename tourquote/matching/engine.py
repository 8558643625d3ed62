"""Tiered matching engine for tourquote.

Resolves free-text draft items into catalog-backed itinerary items:
direct-id → exact → partial → fuzzy → unmatched, then region, duplicate and
eligibility post-filters, then per-day reindexing.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from tourquote.matching.filters import (
    filter_duplicates,
    filter_ineligible,
    filter_region,
    reindex_days,
)
from tourquote.models import (
    CatalogItem,
    DraftItem,
    MatchingStats,
    MatchResult,
    MatchTier,
    PlaceholderItem,
    UnresolvedItem,
)

if TYPE_CHECKING:
    from tourquote.catalog.repository import CatalogLookup

logger = structlog.get_logger(__name__)

Item = PlaceholderItem | CatalogItem


@dataclass
class MatchOptions:
    """Matching configuration for one resolution run."""

    fuzzy_threshold: float = 0.6
    region: str | None = None
    full_record: bool = True
    placeholder_note: str | None = None


@dataclass
class ResolutionOutcome:
    """Final filtered itinerary plus the per-draft match classification."""

    items: list[Item]
    matches: list[MatchResult]
    stats: MatchingStats = field(default_factory=MatchingStats)

    @property
    def has_placeholders(self) -> bool:
        return any(isinstance(item, PlaceholderItem) for item in self.items)


def build_placeholder(
    day: int,
    display_name: str,
    order_index: int = 0,
    note: str | None = None,
) -> PlaceholderItem:
    """Placeholder awaiting expert resolution (quantity 1, zero price)."""
    return PlaceholderItem(
        day=day,
        order_index=order_index,
        display_name=display_name,
        note=note,
    )


class MatchingEngine:
    """Resolves draft items against a catalog lookup."""

    def __init__(self, lookup: CatalogLookup) -> None:
        self.lookup = lookup

    async def classify(
        self, drafts: Sequence[DraftItem], options: MatchOptions
    ) -> list[MatchResult]:
        """Classify every draft into a tier (two batched lookups at most).

        A draft whose upstream catalog id exists is accepted as direct-id and
        never reaches the name tiers.
        """
        hinted = {d.catalog_id for d in drafts if d.catalog_id is not None}
        by_id = await self.lookup.find_by_ids(hinted) if hinted else {}

        results: list[MatchResult | None] = []
        pending: list[DraftItem] = []
        for draft in drafts:
            entry = by_id.get(draft.catalog_id) if draft.catalog_id is not None else None
            if entry is not None:
                results.append(MatchResult(draft=draft, tier=MatchTier.DIRECT_ID, entry=entry))
            else:
                results.append(None)
                pending.append(draft)

        named = iter(
            await self.lookup.find_by_names(
                pending,
                region=options.region,
                fuzzy_threshold=options.fuzzy_threshold,
                full_record=options.full_record,
            )
            if pending
            else []
        )
        return [r if r is not None else next(named) for r in results]

    async def resolve(
        self,
        drafts: Sequence[DraftItem],
        options: MatchOptions,
        pax: int = 1,
    ) -> ResolutionOutcome:
        """Resolve drafts into a filtered, reindexed itinerary.

        Args:
            drafts: Draft items from retrieval
            options: Matching configuration
            pax: Total travellers; quantity of resolved items

        Returns:
            ResolutionOutcome with items in (day, order_index) order
        """
        ordered = sorted(drafts, key=lambda d: (d.day, d.order_index))
        matches = await self.classify(ordered, options)

        stats = MatchingStats(total_draft_items=len(ordered))
        items: list[Item] = []
        for match in matches:
            tier_field = match.tier.value.replace("-", "_")
            setattr(stats, tier_field, getattr(stats, tier_field) + 1)

            draft = match.draft
            if match.entry is not None:
                items.append(
                    CatalogItem.from_entry(
                        match.entry,
                        day=draft.day,
                        order_index=draft.order_index,
                        quantity=max(pax, 1),
                        note=draft.reason or None,
                    )
                )
            else:
                items.append(
                    build_placeholder(
                        draft.day,
                        draft.name,
                        order_index=draft.order_index,
                        note=draft.reason or options.placeholder_note,
                    )
                )

        items, dropped_region = filter_region(items, options.region)
        items, dropped_dupes = filter_duplicates(items)

        placeholder_names = [i.display_name for i in items if isinstance(i, PlaceholderItem)]
        ineligible: set[str] = set()
        if placeholder_names:
            ineligible = await self.lookup.find_ineligible(
                placeholder_names, fuzzy_threshold=options.fuzzy_threshold
            )
        items, dropped_ineligible = filter_ineligible(items, ineligible)

        items = reindex_days(items)

        stats.dropped_region = len(dropped_region)
        stats.dropped_duplicate = len(dropped_dupes)
        stats.dropped_ineligible = len(dropped_ineligible)
        stats.placeholder_count = sum(1 for i in items if isinstance(i, PlaceholderItem))

        dropped_ineligible_names = {i.display_name for i in dropped_ineligible}
        for match in matches:
            if match.tier != MatchTier.UNMATCHED:
                continue
            reason = (
                "ineligible_for_auto_suggestion"
                if match.draft.name in dropped_ineligible_names
                else "no_catalog_match"
            )
            stats.unresolved.append(
                UnresolvedItem(name=match.draft.name, day=match.draft.day, reason=reason)
            )
        for item in dropped_region:
            stats.unresolved.append(
                UnresolvedItem(name=item.display_name, day=item.day, reason="region_mismatch")
            )

        logger.info(
            "matching_completed",
            total=stats.total_draft_items,
            direct_id=stats.direct_id,
            exact=stats.exact,
            partial=stats.partial,
            fuzzy=stats.fuzzy,
            unmatched=stats.unmatched,
            placeholders=stats.placeholder_count,
            dropped_region=stats.dropped_region,
            dropped_duplicate=stats.dropped_duplicate,
            dropped_ineligible=stats.dropped_ineligible,
        )
        return ResolutionOutcome(items=items, matches=matches, stats=stats)
