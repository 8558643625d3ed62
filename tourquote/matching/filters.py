"""Deterministic post-filters applied to a resolved itinerary.

Filters run in a fixed order (region, duplicate, eligibility) and always
return a new list. ``reindex_days`` must run after the last filter so callers
never observe a partially filtered list.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from tourquote.models import CatalogItem, PlaceholderItem

Item = PlaceholderItem | CatalogItem

# Machine region code -> localized label
REGION_LABELS: dict[str, str] = {
    "seoul": "서울",
    "busan": "부산",
    "jeju": "제주",
    "gyeonggi": "경기",
    "gangwon": "강원",
    "incheon": "인천",
    "daegu": "대구",
    "daejeon": "대전",
    "gwangju": "광주",
    "ulsan": "울산",
}

_LABEL_TO_CODE = {label: code for code, label in REGION_LABELS.items()}


def canonical_region(region: str | None) -> str | None:
    """Fold a region code or localized label to its lowercase machine code."""
    if region is None or not region.strip():
        return None
    value = region.strip().lower()
    return _LABEL_TO_CODE.get(value, value)


def region_label(region: str | None) -> str | None:
    code = canonical_region(region)
    if code is None:
        return None
    return REGION_LABELS.get(code, region)


def region_matches(entry_region: str | None, requested: str | None) -> bool:
    """Region consistency check.

    An entry without region metadata always passes, as does any entry when
    no region was requested.
    """
    wanted = canonical_region(requested)
    actual = canonical_region(entry_region)
    if wanted is None or actual is None:
        return True
    return actual == wanted


def filter_region(items: list[Item], region: str | None) -> tuple[list[Item], list[Item]]:
    """Drop resolved items whose catalog region differs from ``region``.

    Returns:
        (kept, dropped)
    """
    kept: list[Item] = []
    dropped: list[Item] = []
    for item in items:
        if isinstance(item, CatalogItem) and not region_matches(item.snapshot.region, region):
            dropped.append(item)
        else:
            kept.append(item)
    return kept, dropped


def filter_duplicates(items: list[Item]) -> tuple[list[Item], list[Item]]:
    """Keep only the first occurrence of each catalog id across the itinerary.

    First means lowest (day, order_index); placeholders are never duplicates.
    """
    seen: set[int] = set()
    kept: list[Item] = []
    dropped: list[Item] = []
    for item in sorted(items, key=lambda i: (i.day, i.order_index)):
        if isinstance(item, CatalogItem):
            if item.catalog_id in seen:
                dropped.append(item)
                continue
            seen.add(item.catalog_id)
        kept.append(item)
    return kept, dropped


def filter_ineligible(
    items: list[Item], ineligible_names: Iterable[str]
) -> tuple[list[Item], list[Item]]:
    """Drop placeholders named after catalog entries excluded from auto-suggestion.

    Args:
        items: Itinerary items
        ineligible_names: Names of ineligible entries (compared case-insensitively)
    """
    blocked = {name.strip().lower() for name in ineligible_names}
    kept: list[Item] = []
    dropped: list[Item] = []
    for item in items:
        if isinstance(item, PlaceholderItem) and item.display_name.strip().lower() in blocked:
            dropped.append(item)
        else:
            kept.append(item)
    return kept, dropped


def reindex_days(items: list[Item]) -> list[Item]:
    """Re-derive contiguous zero-based order_index within each day.

    Relative order inside a day is preserved; the result is sorted by
    (day, order_index).
    """
    by_day: dict[int, list[Item]] = defaultdict(list)
    for item in sorted(items, key=lambda i: (i.day, i.order_index)):
        by_day[item.day].append(item)

    result: list[Item] = []
    for day in sorted(by_day):
        for index, item in enumerate(by_day[day]):
            if item.order_index != index:
                item = item.model_copy(update={"order_index": index})
            result.append(item)
    return result


def next_order_index(items: list[Item], day: int) -> int:
    """Order index that appends after the current last item of ``day``."""
    indexes = [item.order_index for item in items if item.day == day]
    return max(indexes) + 1 if indexes else 0
