#!/usr/bin/env python3
"""Nearby activity discovery API"""

import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from apps.core.config import settings
from apps.core.db import get_db
from apps.discovery.schemas import (
    CacheInfo,
    DiscoveryBounds,
    DiscoveryFacets,
    DiscoveryFilterSupport,
    DiscoveryFilters,
    DiscoveryQuery,
    LatLng,
)
from apps.discovery.services.bounds import bounds_center
from apps.discovery.services.discovery_cache import (
    DiscoveryCache,
    TileDiscoveryCache,
)
from apps.discovery.services.engine import DiscoveryEngine, DiscoveryUnavailableError
from apps.discovery.services.labels import normalize_place_label
from apps.discovery.services.normalize import (
    DEFAULT_RADIUS_METERS,
    MAX_RADIUS_METERS,
    MIN_RADIUS_METERS,
    sanitize_coordinate,
)
from apps.discovery.services.store import DiscoveryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/discovery", tags=["discovery"])

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def get_discovery_cache(request: Request, db: Session = Depends(get_db)) -> DiscoveryCache:
    """Cache backend chosen by DISCOVERY_CACHE_BACKEND (tiles table or the app's in-memory LRU)"""
    if settings.discovery_cache_backend == "memory":
        return request.app.state.discovery_memory_cache
    return TileDiscoveryCache(db)


def get_discovery_engine(
    db: Session = Depends(get_db),
    cache: DiscoveryCache = Depends(get_discovery_cache),
) -> DiscoveryEngine:
    return DiscoveryEngine(DiscoveryStore(db), cache)


def parse_lat_lng(value: Optional[str]) -> Optional[LatLng]:
    """Parse a "lat,lng" pair; None when absent or malformed"""
    if not value:
        return None
    parts = value.split(",")
    if len(parts) != 2:
        return None
    lat = sanitize_coordinate(parts[0].strip())
    lng = sanitize_coordinate(parts[1].strip())
    if lat is None or lng is None:
        return None
    return LatLng(lat=lat, lng=lng)


def parse_bounds(sw: Optional[str], ne: Optional[str]) -> Optional[DiscoveryBounds]:
    """Bounds from sw/ne params; raises 400 when given but unusable"""
    if not sw and not ne:
        return None
    south_west = parse_lat_lng(sw)
    north_east = parse_lat_lng(ne)
    if south_west is None or north_east is None:
        raise HTTPException(status_code=400, detail="sw and ne must both be \"lat,lng\" pairs")
    if south_west.lat > north_east.lat or south_west.lng > north_east.lng:
        raise HTTPException(status_code=400, detail="sw must be south-west of ne")
    return DiscoveryBounds(sw=south_west, ne=north_east)


def resolve_center(lat: Optional[str], lng: Optional[str], bounds: Optional[DiscoveryBounds]) -> Optional[LatLng]:
    parsed_lat = sanitize_coordinate(lat)
    parsed_lng = sanitize_coordinate(lng)
    if parsed_lat is not None and parsed_lng is not None:
        return LatLng(lat=parsed_lat, lng=parsed_lng)
    if bounds is not None:
        return bounds_center(bounds)
    return None


def clamp_number(value: Optional[str], default: int, lo: int, hi: int) -> int:
    parsed = sanitize_coordinate(value)
    if parsed is None:
        parsed = default
    return min(hi, max(lo, math.floor(parsed)))


def split_csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    tokens = [token.strip() for token in value.split(",") if token.strip()]
    return tokens or None


def parse_price_levels(value: Optional[str]) -> Optional[List[float]]:
    levels = [sanitize_coordinate(token) for token in split_csv(value) or []]
    levels = [level for level in levels if level is not None]
    return levels or None


def parse_boolean(value: Optional[str]) -> bool:
    return value in ("1", "true")


@router.get("/activities", summary="Nearby activities with facets")
def discover_activities(
    lat: Optional[str] = Query(None, description="Center latitude"),
    lng: Optional[str] = Query(None, description="Center longitude"),
    sw: Optional[str] = Query(None, description="South-west corner as \"lat,lng\""),
    ne: Optional[str] = Query(None, description="North-east corner as \"lat,lng\""),
    radius: Optional[str] = Query(None, description="Search radius in meters"),
    limit: Optional[str] = Query(None, description="Maximum number of items"),
    activity_types: Optional[str] = Query(None, alias="activityTypes"),
    tags: Optional[str] = Query(None),
    traits: Optional[str] = Query(None),
    taxonomy_categories: Optional[str] = Query(None, alias="taxonomyCategories"),
    price_levels: Optional[str] = Query(None, alias="priceLevels"),
    capacity_key: Optional[str] = Query(None, alias="capacityKey"),
    time_window: Optional[str] = Query(None, alias="timeWindow"),
    refresh: Optional[str] = Query(None, description="1/true bypasses the cache"),
    facet_mode: str = Query("filtered", alias="facetMode"),
    engine: DiscoveryEngine = Depends(get_discovery_engine),
):
    """
    Discover activities around a point or inside a bounding box.

    Always answers with something nearby when any source responds; only a
    request without coordinates or with malformed bounds is rejected.
    """
    bounds = parse_bounds(sw, ne)
    center = resolve_center(lat, lng, bounds)
    if center is None:
        raise HTTPException(status_code=400, detail="lat and lng are required")

    query = DiscoveryQuery(
        center=center,
        radius_meters=clamp_number(radius, DEFAULT_RADIUS_METERS, MIN_RADIUS_METERS, MAX_RADIUS_METERS),
        limit=clamp_number(limit, DEFAULT_LIMIT, 1, MAX_LIMIT),
        bounds=bounds,
        filters=DiscoveryFilters(
            activity_types=split_csv(activity_types),
            tags=split_csv(tags),
            traits=split_csv(traits),
            taxonomy_categories=split_csv(taxonomy_categories),
            price_levels=parse_price_levels(price_levels),
            capacity_key=capacity_key,
            time_window=time_window,
        ),
    )

    try:
        result = engine.discover_nearby_activities(
            query, bypass_cache=parse_boolean(refresh), facet_mode=facet_mode
        )
    except DiscoveryUnavailableError as e:
        logger.error(f"Discovery unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    items = [
        item.model_copy(update={"place_label": normalize_place_label(item.place_label, item.venue)})
        for item in result.items
    ]
    result = result.model_copy(
        update={
            "items": items,
            "count": result.count or len(items),
            "filter_support": result.filter_support or DiscoveryFilterSupport.none(),
            "facets": result.facets or DiscoveryFacets(),
            "cache": result.cache or CacheInfo(),
        }
    )
    return result.model_dump(mode="json", by_alias=True)
