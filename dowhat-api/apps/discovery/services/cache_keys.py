#!/usr/bin/env python3
"""Deterministic cache keys and geohash tile keys for discovery queries"""

import json

import geohash2

from apps.discovery.schemas import DiscoveryQuery, LatLng
from apps.discovery.services.normalize import normalize_filters, normalize_radius, round_coordinate

TILE_PRECISION = 6


def compute_tile_key(center: LatLng) -> str:
    return geohash2.encode(center.lat, center.lng, precision=TILE_PRECISION)


def _rounded_point(point: LatLng) -> dict:
    return {"lat": round_coordinate(point.lat, 5), "lng": round_coordinate(point.lng, 5)}


def build_discovery_cache_key(kind: str, query: DiscoveryQuery) -> str:
    """
    Serialize the canonical query.

    Coordinates are quantized to 5 decimals so near-identical viewports share
    an entry. Field order is fixed, filters are normalized, so logically
    identical queries always produce the same string.
    """
    filters = normalize_filters(query.filters)
    bounds = None
    if query.bounds is not None:
        bounds = {"sw": _rounded_point(query.bounds.sw), "ne": _rounded_point(query.bounds.ne)}

    payload = {
        "kind": kind,
        "center": _rounded_point(query.center),
        "radiusMeters": normalize_radius(query.radius_meters),
        "limit": query.limit,
        "bounds": bounds,
        "filters": filters.model_dump(by_alias=True),
    }
    return json.dumps(payload, separators=(",", ":"))
