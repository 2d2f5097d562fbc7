#!/usr/bin/env python3
"""Bounding box resolution and distance helpers"""

import math
from typing import Iterator

from apps.discovery.schemas import DiscoveryBounds, DiscoveryQuery, LatLng
from apps.discovery.services.normalize import (
    MAX_RADIUS_METERS,
    normalize_radius,
    round_coordinate,
    sanitize_coordinate,
)

METERS_PER_DEGREE_LAT = 111_320
EARTH_RADIUS_M = 6_371_000
MIN_COS_DIVISOR = 0.0001
WIDEN_FACTOR = 10

WORLD_BOUNDS = DiscoveryBounds(sw=LatLng(lat=-90.0, lng=-180.0), ne=LatLng(lat=90.0, lng=180.0))


def _clamp_lat(value: float) -> float:
    return min(max(value, -90.0), 90.0)


def _clamp_lng(value: float) -> float:
    return min(max(value, -180.0), 180.0)


def _finite_or_zero(value) -> float:
    parsed = sanitize_coordinate(value)
    return parsed if parsed is not None else 0.0


def normalize_bounds(bounds: DiscoveryBounds) -> DiscoveryBounds:
    """Clamp, order (sw <= ne per axis) and round to 6 decimals"""
    sw_lat = _finite_or_zero(bounds.sw.lat)
    sw_lng = _finite_or_zero(bounds.sw.lng)
    ne_lat = _finite_or_zero(bounds.ne.lat)
    ne_lng = _finite_or_zero(bounds.ne.lng)

    return DiscoveryBounds(
        sw=LatLng(
            lat=round_coordinate(_clamp_lat(min(sw_lat, ne_lat)), 6),
            lng=round_coordinate(_clamp_lng(min(sw_lng, ne_lng)), 6),
        ),
        ne=LatLng(
            lat=round_coordinate(_clamp_lat(max(sw_lat, ne_lat)), 6),
            lng=round_coordinate(_clamp_lng(max(sw_lng, ne_lng)), 6),
        ),
    )


def resolve_discovery_bounds(query: DiscoveryQuery) -> DiscoveryBounds:
    """Explicit bounds win; otherwise derive a box from center and radius"""
    if query.bounds is not None:
        return normalize_bounds(query.bounds)

    center_lat = _finite_or_zero(query.center.lat)
    center_lng = _finite_or_zero(query.center.lng)
    radius_m = normalize_radius(query.radius_meters)

    lat_delta = radius_m / METERS_PER_DEGREE_LAT
    divisor = math.cos(math.radians(center_lat))
    # Near the poles the box spans every longitude; clamping handles it
    if abs(divisor) < MIN_COS_DIVISOR:
        divisor = MIN_COS_DIVISOR
    lng_delta = radius_m / (METERS_PER_DEGREE_LAT * divisor)

    return normalize_bounds(
        DiscoveryBounds(
            sw=LatLng(lat=center_lat - lat_delta, lng=center_lng - lng_delta),
            ne=LatLng(lat=center_lat + lat_delta, lng=center_lng + lng_delta),
        )
    )


def bounds_center(bounds: DiscoveryBounds) -> LatLng:
    return LatLng(
        lat=(bounds.sw.lat + bounds.ne.lat) / 2,
        lng=(bounds.sw.lng + bounds.ne.lng) / 2,
    )


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, a)))


def widening_bounds(query: DiscoveryQuery) -> Iterator[DiscoveryBounds]:
    """Boxes around the center growing tenfold up to the max radius, then the whole globe"""
    radius_m = normalize_radius(query.radius_meters)
    while radius_m < MAX_RADIUS_METERS:
        radius_m = min(MAX_RADIUS_METERS, radius_m * WIDEN_FACTOR)
        yield resolve_discovery_bounds(DiscoveryQuery(center=query.center, radius_meters=radius_m))
    yield WORLD_BOUNDS
