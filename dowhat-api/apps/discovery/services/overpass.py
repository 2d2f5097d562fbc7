#!/usr/bin/env python3
"""OpenStreetMap Overpass source for sports and leisure venues"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from apps.core.config import settings
from apps.discovery.schemas import DiscoveryFilterSupport, DiscoveryItem, LatLng
from apps.discovery.services.bounds import haversine_meters
from apps.discovery.services.labels import normalize_place_label

logger = logging.getLogger(__name__)

SOURCE = "osm-overpass"
MIN_RADIUS_M = 250
MAX_RADIUS_M = 5000
MIN_LIMIT = 60
MAX_LIMIT = 180

OVERPASS_SUPPORT = DiscoveryFilterSupport(
    activity_types=True,
    tags=True,
    traits=False,
    taxonomy_categories=False,
    price_levels=False,
    capacity_key=False,
    time_window=False,
)


class OverpassError(Exception):
    """Overpass request failed"""
    pass


def build_overpass_query(lat: float, lng: float, radius: int, limit: int) -> str:
    around = f"around:{radius},{lat},{lng}"
    leisure = '["leisure"~"^(sports_centre|fitness_centre|stadium|pitch|park)$"]'
    amenity = '["amenity"~"^(gym|sports_hall|swimming_pool|community_centre)$"]'
    return "\n".join([
        "[out:json][timeout:25];",
        "(",
        f"  node({around}){leisure};",
        f"  node({around}){amenity};",
        f'  node({around})["sport"];',
        f"  way({around}){leisure};",
        f"  way({around}){amenity};",
        f'  way({around})["sport"];',
        f'  relation({around})["sport"];',
        ");",
        f"out center {limit};",
    ])


def parse_tag_list(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(";") if part.strip()]


def describe_venue(tags: Dict[str, str]) -> Optional[str]:
    parts = [tags.get("addr:street"), tags.get("addr:city")]
    parts = [part for part in parts if part]
    if parts:
        return ", ".join(parts)
    return tags.get("addr:full") or tags.get("addr:neighbourhood") or None


def element_to_item(element: Dict[str, Any], center: LatLng) -> Optional[DiscoveryItem]:
    lat = element.get("lat", (element.get("center") or {}).get("lat"))
    lng = element.get("lon", (element.get("center") or {}).get("lon"))
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None

    tags = element.get("tags") or {}
    sports = parse_tag_list(tags.get("sport"))
    leisure = parse_tag_list(tags.get("leisure"))
    amenities = parse_tag_list(tags.get("amenity"))
    label = (
        tags.get("name")
        or (sports[0] if sports else None)
        or (leisure[0] if leisure else None)
        or (amenities[0] if amenities else None)
        or tags.get("club")
        or "Local activity"
    )
    venue = describe_venue(tags)

    # Ordered, de-duplicated tag union
    combined = list(dict.fromkeys(
        sports + leisure + amenities + parse_tag_list(tags.get("club")) + parse_tag_list(tags.get("cuisine")) + ["osm"]
    ))

    return DiscoveryItem(
        id=f"{element.get('type')}:{element.get('id')}",
        name=label,
        venue=venue,
        place_id=None,
        place_label=normalize_place_label(venue, label),
        lat=lat,
        lng=lng,
        distance_m=haversine_meters(center.lat, center.lng, lat, lng),
        activity_types=sports or leisure or None,
        tags=combined,
        traits=None,
        source=SOURCE,
    )


def fetch_overpass_activities(
    center: LatLng,
    radius_m: int,
    limit: int,
    timeout: Optional[int] = None,
) -> Tuple[List[DiscoveryItem], DiscoveryFilterSupport]:
    """Query Overpass around the center; raises OverpassError on failure"""
    safe_radius = max(MIN_RADIUS_M, min(radius_m, MAX_RADIUS_M))
    capped_limit = max(MIN_LIMIT, min(limit * 3, MAX_LIMIT))
    query = build_overpass_query(center.lat, center.lng, safe_radius, capped_limit)

    try:
        response = requests.post(
            settings.overpass_api_url,
            data={"data": query},
            headers={"Content-Type": "application/x-www-form-urlencoded;charset=UTF-8"},
            timeout=timeout or settings.provider_timeout_s,
        )
    except requests.exceptions.RequestException as e:
        raise OverpassError(f"Overpass request failed: {e}") from e

    if not response.ok:
        raise OverpassError(f"Overpass request failed ({response.status_code})")

    try:
        payload = response.json()
    except ValueError as e:
        raise OverpassError(f"Overpass returned invalid JSON: {e}") from e

    items = []
    for element in payload.get("elements") or []:
        if not element:
            continue
        item = element_to_item(element, center)
        if item is not None:
            items.append(item)

    items.sort(key=lambda item: item.distance_m)
    logger.info(f"Overpass returned {len(items)} venues around ({center.lat}, {center.lng})")
    return items, OVERPASS_SUPPORT
