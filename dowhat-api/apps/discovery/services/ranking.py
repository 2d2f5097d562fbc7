#!/usr/bin/env python3
"""Filtering, ordering, deduplication and facet counting for discovery items"""

import math
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, TypeVar

from apps.discovery.schemas import (
    DiscoveryFacet,
    DiscoveryFacets,
    DiscoveryFilterSupport,
    DiscoveryItem,
    NormalizedDiscoveryFilters,
)
from apps.discovery.services.normalize import (
    has_active_filters,
    normalize_list,
    normalize_number_values,
    round_coordinate,
)

# Relevance score weights
PROXIMITY_WEIGHT = 0.6
FACET_MATCH_WEIGHT = 0.3
SESSION_WEIGHT = 0.1
SESSION_SATURATION = 3

T = TypeVar("T")


def filter_by_query(
    items: Sequence[DiscoveryItem],
    filters: NormalizedDiscoveryFilters,
    support: DiscoveryFilterSupport,
) -> List[DiscoveryItem]:
    """
    Conjunctive facet filter.

    List dimensions pass when at least one requested value is present on the
    item; capacity and time window must match exactly. Dimensions the
    source does not support are skipped.
    """
    if not has_active_filters(filters):
        return list(items)

    want_types = filters.activity_types if support.activity_types else []
    want_tags = filters.tags if support.tags else []
    want_traits = filters.traits if support.traits else []
    want_categories = filters.taxonomy_categories if support.taxonomy_categories else []
    want_prices = filters.price_levels if support.price_levels else []
    want_capacity = filters.capacity_key if support.capacity_key and filters.capacity_key != "any" else None
    want_window = filters.time_window if support.time_window and filters.time_window != "any" else None

    if not (want_types or want_tags or want_traits or want_categories or want_prices or want_capacity or want_window):
        return list(items)

    def _intersects(wanted: Iterable, present: Iterable) -> bool:
        present_set = set(present)
        return any(value in present_set for value in wanted)

    result = []
    for item in items:
        if want_types and not _intersects(want_types, normalize_list(item.activity_types)):
            continue
        if want_tags and not _intersects(want_tags, normalize_list(item.tags)):
            continue
        if want_traits and not _intersects(want_traits, normalize_list(item.traits)):
            continue
        if want_categories and not _intersects(want_categories, normalize_list(item.taxonomy_categories)):
            continue
        if want_prices and not _intersects(want_prices, normalize_number_values(item.price_levels)):
            continue
        if want_capacity and item.capacity_key != want_capacity:
            continue
        if want_window and item.time_window != want_window:
            continue
        result.append(item)
    return result


def _order_key(item: DiscoveryItem):
    distance = item.distance_m if item.distance_m is not None else math.inf
    next_start = item.next_session_at.timestamp() if item.next_session_at is not None else math.inf
    return (distance, next_start, item.name, item.id)


def order_items(items: Iterable[DiscoveryItem]) -> List[DiscoveryItem]:
    """Ascending distance, then earliest upcoming session, then name and id"""
    return sorted(items, key=_order_key)


def fallback_place_key(item: DiscoveryItem) -> str:
    name = item.name.strip().lower() if item.name else ""
    lat = round_coordinate(item.lat, 4)
    lng = round_coordinate(item.lng, 4)
    return f"place:{name or 'unknown'}:{lat},{lng}"


def place_key(item: DiscoveryItem) -> str:
    if item.place_id:
        return f"place:{item.place_id}"
    return fallback_place_key(item)


def merge_with_fallback(
    primary: Sequence[DiscoveryItem],
    fallback: Sequence[DiscoveryItem],
) -> List[DiscoveryItem]:
    """Primary items by id, then fallback items whose place is not yet taken"""
    seen_ids = set()
    occupied = set()
    result: List[DiscoveryItem] = []

    for item in primary:
        if item.id in seen_ids:
            continue
        seen_ids.add(item.id)
        result.append(item)
        occupied.add(place_key(item))
        occupied.add(fallback_place_key(item))

    fallback_places = set()
    for item in fallback:
        key = place_key(item)
        if key in occupied or key in fallback_places:
            continue
        fallback_places.add(key)
        result.append(item)

    return result


def dedupe_by_place_key(items: Iterable[DiscoveryItem]) -> List[DiscoveryItem]:
    seen = set()
    result = []
    for item in items:
        key = place_key(item)
        if key in seen:
            continue
        seen.add(key)
        result.append(item)
    return result


def select_within_radius(rows: Sequence[T], distances: Sequence[float], radius_m: float, limit: int) -> List[T]:
    """
    Rows (already sorted by distance) inside the radius, capped at limit.

    When nothing lies inside the radius the nearest rows are returned
    instead, so a non-empty candidate set never yields an empty page.
    """
    within = [row for row, distance in zip(rows, distances) if distance <= radius_m]
    if not within:
        return list(rows[:limit])
    return within[:limit]


def _facet(values: Iterable[Optional[str]]) -> List[DiscoveryFacet]:
    counts: Counter = Counter()
    for value in values:
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if trimmed:
            counts[trimmed] += 1
    ordered = sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))
    return [DiscoveryFacet(value=value, count=count) for value, count in ordered]


def build_facets(items: Sequence[DiscoveryItem]) -> DiscoveryFacets:
    """Per-dimension value counts, most frequent first"""
    activity_types, tags, traits, categories = [], [], [], []
    price_levels, capacity_keys, time_windows = [], [], []

    for item in items:
        activity_types.extend(item.activity_types or [])
        tags.extend(item.tags or [])
        traits.extend(item.traits or [])
        categories.extend(item.taxonomy_categories or [])
        for level in item.price_levels or []:
            if isinstance(level, (int, float)) and math.isfinite(level):
                price_levels.append(str(int(math.floor(level + 0.5))))
        if item.capacity_key:
            capacity_keys.append(item.capacity_key)
        if item.time_window:
            time_windows.append(item.time_window)

    return DiscoveryFacets(
        activity_types=_facet(activity_types),
        tags=_facet(tags),
        traits=_facet(traits),
        taxonomy_categories=_facet(categories),
        price_levels=_facet(price_levels),
        capacity_key=_facet(capacity_keys),
        time_window=_facet(time_windows),
    )


def build_source_breakdown(items: Iterable[DiscoveryItem]) -> Dict[str, int]:
    breakdown: Dict[str, int] = {}
    for item in items:
        key = item.source or "unknown"
        breakdown[key] = breakdown.get(key, 0) + 1
    return breakdown


def relevance_score(item: DiscoveryItem, filters: NormalizedDiscoveryFilters, radius_m: float) -> float:
    """Informational 0..1 score; result ordering stays distance based"""
    if item.distance_m is None or radius_m <= 0:
        proximity = 0.0
    else:
        proximity = max(0.0, 1.0 - item.distance_m / radius_m)

    requested = [
        (filters.activity_types, item.activity_types),
        (filters.tags, item.tags),
        (filters.traits, item.traits),
        (filters.taxonomy_categories, item.taxonomy_categories),
    ]
    active = [(wanted, present) for wanted, present in requested if wanted]
    if active:
        matched = sum(1 for wanted, present in active if set(wanted) & set(normalize_list(present)))
        facet_match = matched / len(active)
    else:
        facet_match = 1.0

    upcoming = item.upcoming_session_count or 0
    session_signal = min(1.0, upcoming / SESSION_SATURATION)

    score = PROXIMITY_WEIGHT * proximity + FACET_MATCH_WEIGHT * facet_match + SESSION_WEIGHT * session_signal
    return round(score, 4)


def score_items(
    items: Sequence[DiscoveryItem],
    filters: NormalizedDiscoveryFilters,
    radius_m: float,
) -> List[DiscoveryItem]:
    return [item.model_copy(update={"score": relevance_score(item, filters, radius_m)}) for item in items]
