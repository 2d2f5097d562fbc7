#!/usr/bin/env python3
"""Derive price, capacity, time window and taxonomy facets from session rows"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from apps.discovery.schemas import DiscoveryItem
from apps.discovery.services.normalize import normalize_number_values

SESSION_METADATA_LOOKAHEAD = timedelta(days=45)
DEFAULT_SESSION_LENGTH = timedelta(minutes=90)
TAXONOMY_ID_PATTERN = re.compile(r"^tier[0-9]+-", re.IGNORECASE)

CAPACITY_RANK = {"any": 0, "couple": 1, "small": 2, "medium": 3, "large": 4}

Timestamp = Union[datetime, str, None]


@dataclass
class SessionRow:
    activity_id: Optional[str]
    starts_at: Timestamp = None
    ends_at: Timestamp = None
    price_cents: Optional[int] = None
    max_attendees: Optional[int] = None


@dataclass
class SessionMetadata:
    price_levels: Set[int] = field(default_factory=set)
    capacity_key: Optional[str] = None
    next_session_at: Optional[datetime] = None
    time_window: Optional[str] = None
    open_now: bool = False


def parse_timestamp(value: Timestamp) -> Optional[datetime]:
    """Accept datetimes or ISO strings; naive values are taken as UTC"""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def derive_price_level(price_cents) -> Optional[int]:
    if not isinstance(price_cents, (int, float)) or isinstance(price_cents, bool):
        return None
    if price_cents <= 2000:
        return 1
    if price_cents <= 5000:
        return 2
    if price_cents <= 10000:
        return 3
    return 4


def derive_capacity_key(max_attendees) -> Optional[str]:
    if not isinstance(max_attendees, (int, float)) or max_attendees <= 0:
        return None
    if max_attendees >= 10:
        return "large"
    if max_attendees >= 8:
        return "medium"
    if max_attendees >= 5:
        return "small"
    if max_attendees >= 2:
        return "couple"
    return None


def pick_capacity_key(current: Optional[str], candidate: Optional[str]) -> Optional[str]:
    """Largest bucket wins"""
    if not candidate:
        return current
    if not current:
        return candidate
    return candidate if CAPACITY_RANK[candidate] >= CAPACITY_RANK[current] else current


def local_hour(starts_at: datetime) -> float:
    """Hour of day in the timestamp's own UTC offset"""
    return starts_at.hour + starts_at.minute / 60


def time_window_bucket(hour: float) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "late"


def derive_time_window(
    starts_at: Timestamp,
    ends_at: Timestamp,
    now: datetime,
) -> Tuple[Optional[str], Optional[datetime], bool]:
    """Returns (window, start, open_now)"""
    start = parse_timestamp(starts_at)
    if start is None:
        return None, None, False
    end = parse_timestamp(ends_at) or start + DEFAULT_SESSION_LENGTH
    if start <= now <= end:
        return "open_now", start, True
    return time_window_bucket(local_hour(start)), start, False


def collect_session_metadata(rows: Iterable[SessionRow], now: datetime) -> Dict[str, SessionMetadata]:
    metadata: Dict[str, SessionMetadata] = {}
    for row in rows:
        if not row.activity_id:
            continue
        entry = metadata.setdefault(row.activity_id, SessionMetadata())

        level = derive_price_level(row.price_cents)
        if level is not None:
            entry.price_levels.add(level)
        entry.capacity_key = pick_capacity_key(entry.capacity_key, derive_capacity_key(row.max_attendees))

        window, start, open_now = derive_time_window(row.starts_at, row.ends_at, now)
        if open_now:
            entry.time_window = "open_now"
            entry.open_now = True
            entry.next_session_at = start
        elif not entry.open_now and window:
            if entry.next_session_at is None or start < entry.next_session_at:
                entry.next_session_at = start
                entry.time_window = window
    return metadata


def normalize_taxonomy_list(values: Optional[Iterable[Optional[str]]]) -> Optional[List[str]]:
    if not values:
        return None
    entries = {
        value.strip()
        for value in values
        if isinstance(value, str) and value.strip() and TAXONOMY_ID_PATTERN.match(value.strip())
    }
    return sorted(entries) or None


def derive_taxonomy_categories(item: DiscoveryItem) -> Optional[List[str]]:
    return (
        normalize_taxonomy_list(item.taxonomy_categories)
        or normalize_taxonomy_list(item.activity_types)
        or normalize_taxonomy_list(item.tags)
    )


def apply_session_metadata(
    items: Iterable[DiscoveryItem],
    metadata: Dict[str, SessionMetadata],
) -> List[DiscoveryItem]:
    """Session-derived facets win; an item keeps its own values otherwise"""
    enriched = []
    for item in items:
        entry = metadata.get(item.id)
        meta_levels = normalize_number_values(list(entry.price_levels)) if entry else []
        price_levels = meta_levels or normalize_number_values(item.price_levels)
        enriched.append(
            item.model_copy(
                update={
                    "taxonomy_categories": derive_taxonomy_categories(item),
                    "price_levels": price_levels or None,
                    "capacity_key": (entry.capacity_key if entry else None) or item.capacity_key,
                    "time_window": (entry.time_window if entry else None) or item.time_window,
                    "next_session_at": (entry.next_session_at if entry else None) or item.next_session_at,
                }
            )
        )
    return enriched
