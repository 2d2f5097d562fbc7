"""Venue table as a supplemental discovery source"""

from typing import Iterable, List, Optional, Tuple

from apps.discovery.schemas import DiscoveryBounds, DiscoveryFilterSupport, DiscoveryItem, LatLng
from apps.discovery.services.bounds import haversine_meters
from apps.discovery.services.labels import normalize_place_label
from apps.discovery.services.normalize import sanitize_coordinate
from apps.discovery.services.store import VenueRow

SOURCE = "supabase-venues"
MIN_FETCH = 40


def display_string_list(values: Optional[Iterable[Optional[str]]]) -> Optional[List[str]]:
    entries = [value.strip() for value in (values or []) if isinstance(value, str) and value.strip()]
    return entries or None


def venue_to_item(row: VenueRow, origin: LatLng) -> Optional[DiscoveryItem]:
    if not row.id:
        return None
    lat = sanitize_coordinate(row.lat)
    lng = sanitize_coordinate(row.lng)
    if lat is None or lng is None:
        return None
    name = row.name.strip() if isinstance(row.name, str) and row.name.strip() else "Nearby venue"
    return DiscoveryItem(
        id=f"venue:{row.id}",
        name=name,
        venue=row.address,
        place_id=None,
        place_label=normalize_place_label(row.name, row.address),
        lat=lat,
        lng=lng,
        distance_m=haversine_meters(origin.lat, origin.lng, lat, lng),
        activity_types=display_string_list(row.verified_activities),
        tags=display_string_list(row.ai_activity_tags),
        traits=None,
        source=SOURCE,
    )


def fetch_venue_fallback_activities(
    store,
    bounds: DiscoveryBounds,
    origin: LatLng,
    limit: int,
) -> Tuple[List[DiscoveryItem], DiscoveryFilterSupport]:
    """Venues inside the box, nearest first. Propagates StoreError."""
    rows = store.venues_in_bounds(bounds, max(limit * 2, MIN_FETCH))
    items = [item for item in (venue_to_item(row, origin) for row in rows) if item is not None]
    items.sort(key=lambda item: item.distance_m)

    caps = store.capabilities
    support = DiscoveryFilterSupport(
        activity_types=caps.has_column("venues", "verified_activities"),
        tags=caps.has_column("venues", "ai_activity_tags"),
        traits=False,
        taxonomy_categories=False,
        price_levels=False,
        capacity_key=False,
        time_window=False,
    )
    return items, support
