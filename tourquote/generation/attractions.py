"""Must-see attraction merge and interest coverage."""

from __future__ import annotations

from collections.abc import Iterable

from tourquote.matching.filters import next_order_index
from tourquote.models import CatalogEntry, CatalogItem, InterestCoverage, PlaceholderItem

Item = PlaceholderItem | CatalogItem

ATTRACTION_NOTE = "Requested by traveller"


def least_loaded_day(items: list[Item], days: int) -> int:
    """Day with the fewest catalog items; ties go to the lowest day."""
    load = {day: 0 for day in range(1, days + 1)}
    for item in items:
        if isinstance(item, CatalogItem) and item.day in load:
            load[item.day] += 1
    return min(load, key=lambda day: (load[day], day))


def merge_attractions(
    items: list[Item],
    entries: Iterable[CatalogEntry],
    days: int,
    pax: int = 1,
) -> tuple[list[Item], list[int]]:
    """Place each attraction on the least loaded day, after that day's last item.

    Attractions already present by catalog id are skipped.

    Returns:
        (new item list, catalog ids that were added)
    """
    merged = list(items)
    present = {item.catalog_id for item in merged if isinstance(item, CatalogItem)}
    added: list[int] = []

    for entry in entries:
        if entry.id in present:
            continue
        day = least_loaded_day(merged, days)
        merged.append(
            CatalogItem.from_entry(
                entry,
                day=day,
                order_index=next_order_index(merged, day),
                quantity=max(pax, 1),
                note=ATTRACTION_NOTE,
            )
        )
        present.add(entry.id)
        added.append(entry.id)

    return merged, added


def _normalize(value: str) -> str:
    return " ".join(value.lower().split())


def interest_coverage(interests: Iterable[str], items: list[Item]) -> InterestCoverage:
    """Which requested interests are reflected by resolved items.

    An interest is covered when it and a resolved item's category or name
    contain one another (case-insensitive).
    """
    requested: list[str] = []
    for interest in interests:
        normalized = _normalize(interest)
        if normalized and normalized not in requested:
            requested.append(normalized)

    haystack: list[str] = []
    for item in items:
        if isinstance(item, CatalogItem):
            haystack.extend(_normalize(c) for c in item.snapshot.categories if c)
            haystack.extend(
                _normalize(n)
                for n in (item.display_name, item.snapshot.name_en, item.snapshot.name_local)
                if n
            )

    matched = [
        interest
        for interest in requested
        if any(interest in text or text in interest for text in haystack if text)
    ]
    return InterestCoverage(requested=requested, matched=matched)
