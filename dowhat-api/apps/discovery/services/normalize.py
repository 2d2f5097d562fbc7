#!/usr/bin/env python3
"""Canonical forms for discovery radius, coordinates and filters"""

import math
from typing import Iterable, List, Optional, Union

from apps.discovery.schemas import (
    CAPACITY_KEYS,
    TIME_WINDOW_KEYS,
    DiscoveryFilters,
    NormalizedDiscoveryFilters,
)

MIN_RADIUS_METERS = 100
MAX_RADIUS_METERS = 100_000
DEFAULT_RADIUS_METERS = 2_000


def _is_finite_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def round_half_up(value: float) -> int:
    """Round like a JS client does (halves go up), not banker's rounding"""
    return int(math.floor(value + 0.5))


def round_coordinate(value: Optional[float], precision: int = 6) -> float:
    if not _is_finite_number(value):
        return 0.0
    return round(float(value), precision)


def sanitize_coordinate(value: Union[float, str, None]) -> Optional[float]:
    """Parse a coordinate from a row or query param, None when unusable"""
    if _is_finite_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        if math.isfinite(parsed):
            return parsed
    return None


def normalize_radius(value: Optional[float]) -> int:
    if not _is_finite_number(value):
        return DEFAULT_RADIUS_METERS
    return min(max(round_half_up(value), MIN_RADIUS_METERS), MAX_RADIUS_METERS)


def normalize_list(values: Optional[Iterable[Optional[str]]]) -> List[str]:
    """Trim, lowercase, drop empties, dedupe and sort a list of facet values"""
    if not values:
        return []
    cleaned = {value.strip().lower() for value in values if isinstance(value, str)}
    cleaned.discard("")
    return sorted(cleaned)


def normalize_number_values(values: Optional[Iterable[Optional[float]]]) -> List[int]:
    """Price levels: rounded integers within 1..4, deduped, ascending"""
    if not values:
        return []
    levels = {round_half_up(value) for value in values if _is_finite_number(value)}
    return sorted(level for level in levels if 1 <= level <= 4)


def normalize_capacity_key(value) -> str:
    return value if value in CAPACITY_KEYS else "any"


def normalize_time_window(value) -> str:
    return value if value in TIME_WINDOW_KEYS else "any"


def normalize_filters(
    filters: Union[DiscoveryFilters, NormalizedDiscoveryFilters, dict, None]
) -> NormalizedDiscoveryFilters:
    """Normalize raw selections; running it on its own output is a no-op"""
    if filters is None:
        return NormalizedDiscoveryFilters()
    if isinstance(filters, dict):
        filters = DiscoveryFilters.model_validate(filters)

    return NormalizedDiscoveryFilters(
        activity_types=normalize_list(filters.activity_types),
        tags=normalize_list(filters.tags),
        traits=normalize_list(filters.traits),
        taxonomy_categories=normalize_list(filters.taxonomy_categories),
        price_levels=normalize_number_values(filters.price_levels),
        capacity_key=normalize_capacity_key(filters.capacity_key),
        time_window=normalize_time_window(filters.time_window),
    )


def has_active_filters(filters: NormalizedDiscoveryFilters) -> bool:
    return bool(
        filters.activity_types
        or filters.tags
        or filters.traits
        or filters.taxonomy_categories
        or filters.price_levels
        or filters.capacity_key != "any"
        or filters.time_window != "any"
    )
