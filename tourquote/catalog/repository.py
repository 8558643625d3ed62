"""Catalog lookup backed by the relational store.

Every lookup issues a single query for its whole batch and classifies the
rows in Python, so cost does not grow with the number of draft items.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

import structlog
from sqlalchemy import ColumnElement, func, literal, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from tourquote.db.models import CatalogItemModel
from tourquote.matching.filters import REGION_LABELS, canonical_region, region_matches
from tourquote.matching.fuzzy_ranker import FuzzyRanker
from tourquote.models import CatalogEntry, DraftItem, MatchResult, MatchTier

logger = structlog.get_logger(__name__)


class CatalogLookup(Protocol):
    """Read-only catalog collaborator used by the matching engine."""

    async def find_by_ids(self, ids: Iterable[int]) -> dict[int, CatalogEntry]: ...

    async def find_by_names(
        self,
        drafts: Sequence[DraftItem],
        region: str | None = None,
        fuzzy_threshold: float = 0.6,
        full_record: bool = True,
    ) -> list[MatchResult]: ...

    async def find_ineligible(
        self, names: Iterable[str], fuzzy_threshold: float = 0.6
    ) -> set[str]: ...

    async def find_attractions(
        self, names: Iterable[str], region: str | None = None
    ) -> dict[str, CatalogEntry]: ...


def to_entry(row: CatalogItemModel, full_record: bool = True) -> CatalogEntry:
    """Convert an ORM row to a catalog entry.

    Without ``full_record`` the heavy display fields (description, images)
    are left empty.
    """
    return CatalogEntry(
        id=row.id,
        name_en=row.name_en,
        name_local=row.name_local,
        description=row.description if full_record else None,
        images=list(row.images or []) if full_record else [],
        lat=row.lat,
        lng=row.lng,
        address=row.address,
        price=row.price or 0,
        region=row.region,
        categories=list(row.categories or []),
        item_type=row.item_type,
        eligible=row.ai_enabled,
    )


def classify(
    draft: DraftItem,
    candidates: list[CatalogEntry],
    ranker: FuzzyRanker,
    region: str | None = None,
) -> MatchResult:
    """Run the exact, partial and fuzzy tiers for one draft.

    Tie-breaks:
    - exact: lowest catalog id
    - partial: smallest length difference, then lowest catalog id
    - fuzzy: highest score, then lowest catalog id (in-region candidates only)
    """
    draft_names = [n.strip().lower() for n in (draft.name, draft.name_local) if n and n.strip()]
    if not draft_names:
        return MatchResult(draft=draft, tier=MatchTier.UNMATCHED)

    # Exact: case-insensitive against canonical name or alias
    exact = [
        entry
        for entry in candidates
        if any(name.lower() in draft_names for name in entry.names())
    ]
    if exact:
        best = min(exact, key=lambda e: e.id)
        return MatchResult(draft=draft, tier=MatchTier.EXACT, entry=best)

    # Partial: containment either direction against the canonical name or alias
    partial: list[tuple[int, int, CatalogEntry]] = []
    for entry in candidates:
        gaps = [
            abs(len(catalog_name) - len(name))
            for catalog_name in (n.lower() for n in entry.names())
            for name in draft_names
            if name in catalog_name or catalog_name in name
        ]
        if gaps:
            partial.append((min(gaps), entry.id, entry))
    if partial:
        partial.sort(key=lambda t: (t[0], t[1]))
        return MatchResult(draft=draft, tier=MatchTier.PARTIAL, entry=partial[0][2])

    # Fuzzy
    pool = [entry for entry in candidates if region_matches(entry.region, region)]
    best_fuzzy = ranker.best(draft, pool)
    if best_fuzzy is not None:
        entry, score = best_fuzzy
        return MatchResult(
            draft=draft, tier=MatchTier.FUZZY, entry=entry, score=round(score, 4)
        )

    return MatchResult(draft=draft, tier=MatchTier.UNMATCHED)


def name_conditions(names: Iterable[str]) -> list[ColumnElement[bool]]:
    """SQL predicates selecting every row an exact or partial tier could pick.

    Args:
        names: Lowercased, stripped draft names
    """
    conditions: list[ColumnElement[bool]] = []
    for name in names:
        for column in (CatalogItemModel.name_en, CatalogItemModel.name_local):
            lowered = func.lower(column)
            conditions.append(lowered.contains(name, autoescape=True))
            conditions.append(literal(name).contains(lowered))
    return conditions


def region_condition(region: str | None) -> ColumnElement[bool]:
    """SQL counterpart of ``region_matches`` for a requested region."""
    code = canonical_region(region)
    if code is None:
        return true()
    spellings = {code}
    if code in REGION_LABELS:
        spellings.add(REGION_LABELS[code])
    normalized = func.lower(func.trim(CatalogItemModel.region))
    return or_(
        CatalogItemModel.region.is_(None),
        normalized == "",
        normalized.in_(sorted(spellings)),
    )


def _lowered_names(names: Iterable[str | None]) -> list[str]:
    return sorted({n.strip().lower() for n in names if n and n.strip()})


class SqlCatalogLookup:
    """CatalogLookup over ``catalog_items``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _eligible(self):
        return select(CatalogItemModel).where(
            CatalogItemModel.is_active.is_(True),
            CatalogItemModel.ai_enabled.is_(True),
        )

    async def find_by_ids(self, ids: Iterable[int]) -> dict[int, CatalogEntry]:
        """Active, auto-suggestable entries keyed by id. Unknown ids are absent."""
        wanted = sorted({int(i) for i in ids})
        if not wanted:
            return {}
        result = await self.session.execute(
            self._eligible().where(CatalogItemModel.id.in_(wanted))
        )
        return {row.id: to_entry(row) for row in result.scalars()}

    async def find_by_names(
        self,
        drafts: Sequence[DraftItem],
        region: str | None = None,
        fuzzy_threshold: float = 0.6,
        full_record: bool = True,
    ) -> list[MatchResult]:
        """Classify each draft against the candidate pool.

        The pool is every row whose name could satisfy the exact or partial
        tier for some draft, plus every in-region row for the fuzzy tier.

        Returns:
            One MatchResult per draft, in input order (never direct-id)
        """
        if not drafts:
            return []

        draft_names = _lowered_names(n for d in drafts for n in (d.name, d.name_local))
        result = await self.session.execute(
            self._eligible()
            .where(or_(region_condition(region), *name_conditions(draft_names)))
            .order_by(CatalogItemModel.id)
        )
        candidates = [to_entry(row, full_record) for row in result.scalars()]
        ranker = FuzzyRanker(fuzzy_threshold)

        matches = [classify(draft, candidates, ranker, region) for draft in drafts]
        logger.debug(
            "catalog_names_classified",
            drafts=len(drafts),
            candidates=len(candidates),
            matched=sum(1 for m in matches if m.matched),
        )
        return matches

    async def find_ineligible(
        self, names: Iterable[str], fuzzy_threshold: float = 0.6
    ) -> set[str]:
        """Lowercased input names that refer to entries excluded from auto-suggestion.

        A name refers to an excluded entry when either contains the other
        (canonical name or alias), or when its fuzzy similarity reaches
        ``fuzzy_threshold``.
        """
        wanted = _lowered_names(names)
        if not wanted:
            return set()

        result = await self.session.execute(
            select(CatalogItemModel).where(
                CatalogItemModel.is_active.is_(True),
                CatalogItemModel.ai_enabled.is_(False),
            )
        )
        excluded = [to_entry(row, full_record=False) for row in result.scalars()]
        if not excluded:
            return set()

        ranker = FuzzyRanker(fuzzy_threshold)
        found: set[str] = set()
        for name in wanted:
            contained = any(
                name in catalog_name or catalog_name in name
                for entry in excluded
                for catalog_name in (n.lower() for n in entry.names())
            )
            if contained or ranker.best(DraftItem(name=name, day=1), excluded) is not None:
                found.add(name)

        if found:
            logger.info("catalog_ineligible_matched", names=sorted(found))
        return found

    async def find_attractions(
        self, names: Iterable[str], region: str | None = None
    ) -> dict[str, CatalogEntry]:
        """Resolve user-picked must-see places by name within ``region``.

        Hand-picked places bypass the auto-suggestion flag. Exact name wins
        over containment; ties go to the lowest id.

        Returns:
            Requested name -> entry, for the names that resolved
        """
        requested = [n for n in names if n and n.strip()]
        if not requested:
            return {}

        result = await self.session.execute(
            select(CatalogItemModel)
            .where(
                CatalogItemModel.is_active.is_(True),
                region_condition(region),
                or_(*name_conditions(_lowered_names(requested))),
            )
            .order_by(CatalogItemModel.id)
        )
        pool = [
            entry
            for entry in (to_entry(row) for row in result.scalars())
            if region_matches(entry.region, region)
        ]

        found: dict[str, CatalogEntry] = {}
        for name in requested:
            wanted = name.strip().lower()
            exact = [e for e in pool if wanted in (n.lower() for n in e.names())]
            if exact:
                found[name] = exact[0]
                continue
            partial = [
                e for e in pool
                if any(wanted in n.lower() or n.lower() in wanted for n in e.names())
            ]
            if partial:
                found[name] = partial[0]
        return found
