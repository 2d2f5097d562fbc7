#!/usr/bin/env python3
"""Nearby activity discovery: multi-source fetch, merge, filter, rank and cache"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from apps.core.config import settings
from apps.discovery.schemas import (
    CacheInfo,
    DiscoveryCacheEntry,
    DiscoveryFilterSupport,
    DiscoveryItem,
    DiscoveryQuery,
    DiscoveryResult,
    NormalizedDiscoveryFilters,
)
from apps.discovery.services.bounds import haversine_meters, resolve_discovery_bounds, widening_bounds
from apps.discovery.services.cache_keys import build_discovery_cache_key, compute_tile_key
from apps.discovery.services.discovery_cache import MAX_CACHE_ITEMS, DiscoveryCache, new_cache_entry
from apps.discovery.services.labels import hydrate_place_label, normalize_place_label
from apps.discovery.services.normalize import normalize_filters, normalize_radius
from apps.discovery.services.overpass import OverpassError, fetch_overpass_activities
from apps.discovery.services.ranking import (
    build_facets,
    build_source_breakdown,
    dedupe_by_place_key,
    filter_by_query,
    merge_with_fallback,
    order_items,
    score_items,
    select_within_radius,
)
from apps.discovery.services.session_metadata import (
    SESSION_METADATA_LOOKAHEAD,
    apply_session_metadata,
    collect_session_metadata,
)
from apps.discovery.services.store import StoreError
from apps.discovery.services.venue_fallback import fetch_venue_fallback_activities

logger = logging.getLogger(__name__)

FACET_MODES = ("filtered", "available")
ACTIVITY_SOURCES = ("postgis", "activities")
MIN_FALLBACK_ROWS = 200

# Session-derived dimensions are unknown until metadata hydration
PRE_METADATA_SUPPORT = DiscoveryFilterSupport(
    taxonomy_categories=False,
    price_levels=False,
    capacity_key=False,
    time_window=False,
)


class DiscoveryUnavailableError(Exception):
    """Neither the geospatial RPC nor the bbox fallback could be queried"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiscoveryEngine:
    """
    Resolves a discovery query into ranked items with facets.

    The store is any object exposing the DiscoveryStore methods; the cache is
    any DiscoveryCache backend.
    """

    def __init__(
        self,
        store,
        cache: DiscoveryCache,
        overpass_fetcher: Optional[Callable] = fetch_overpass_activities,
        overpass_enabled: Optional[bool] = None,
        cache_ttl_s: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.cache = cache
        self.overpass_fetcher = overpass_fetcher
        self.overpass_enabled = (
            settings.discovery_overpass_enabled if overpass_enabled is None else overpass_enabled
        )
        self.cache_ttl_s = cache_ttl_s or settings.discovery_cache_ttl_s
        self.clock = clock

    def discover_nearby_activities(
        self,
        query: DiscoveryQuery,
        bypass_cache: bool = False,
        facet_mode: str = "filtered",
    ) -> DiscoveryResult:
        start_time = time.time()
        if facet_mode not in FACET_MODES:
            facet_mode = "filtered"

        normalized = self._normalize_query(query)
        filters = normalize_filters(normalized.filters)
        cache_key = build_discovery_cache_key("activities", normalized)
        tile_key = compute_tile_key(normalized.center)

        if not bypass_cache:
            entry = self.cache.get(tile_key, cache_key)
            if entry is not None:
                logger.info(f"Discovery cache hit for tile {tile_key}")
                return self._result_from_cache(entry, normalized, filters, cache_key, facet_mode)
        logger.info(f"Discovery cache miss for tile {tile_key} (bypass={bypass_cache})")

        support = DiscoveryFilterSupport()
        limit = normalized.limit

        rpc_items, rpc_failed = self._fetch_from_rpc(normalized, filters)
        activities = self._prefilter(rpc_items, filters, DiscoveryFilterSupport())
        pool = list(rpc_items)
        source = "postgis" if rpc_items else None

        if rpc_failed or len(rpc_items) < limit:
            try:
                fallback_items, fallback_support = self._fetch_activities_fallback(normalized, filters)
            except StoreError as e:
                if rpc_failed:
                    raise DiscoveryUnavailableError(
                        "Nearby locations are temporarily unavailable. Please try again soon."
                    ) from e
                logger.warning(f"Activities bbox fallback failed, keeping RPC results: {e}")
            else:
                support = support.combine(fallback_support)
                activities = merge_with_fallback(
                    activities, self._prefilter(fallback_items, filters, fallback_support)
                )
                pool = merge_with_fallback(pool, fallback_items)
                if fallback_items and not source:
                    source = "client-filter"

        degraded = False
        fallback_error = None
        fallback_source = None

        for name, fetch in self._supplemental_sources(normalized):
            if len(activities) >= limit:
                break
            try:
                extra_items, extra_support = fetch()
            except (OverpassError, StoreError) as e:
                logger.warning(f"Supplemental source {name} failed: {e}")
                if not degraded:
                    degraded = True
                    fallback_error = str(e)
                continue

            extra_items = dedupe_by_place_key(extra_items)
            filtered_extra = self._prefilter(extra_items, filters, extra_support)
            if filtered_extra:
                support = support.combine(extra_support)
                activities = merge_with_fallback(activities, filtered_extra)
                pool = merge_with_fallback(pool, extra_items)
                fallback_source = fallback_source or name

        metadata, metadata_support = self._session_metadata(activities + pool)
        support = support.combine(metadata_support)
        activities = apply_session_metadata(activities, metadata)
        activities = filter_by_query(activities, filters, support)

        ordered = order_items(activities)[:limit]
        hydrated = self._hydrate_place_labels(ordered)
        limited = merge_with_fallback(hydrated, [])[:limit]
        items = score_items(limited, filters, normalized.radius_meters)

        available_facets = build_facets(apply_session_metadata(pool, metadata))
        facets = available_facets if facet_mode == "available" else build_facets(items)

        result = DiscoveryResult(
            center=normalized.center,
            radius_meters=normalized.radius_meters,
            count=len(items),
            items=items,
            filter_support=support,
            facets=facets,
            source_breakdown=build_source_breakdown(items),
            cache=CacheInfo(key=cache_key, hit=False),
            source=source or fallback_source or "client-filter",
            degraded=degraded,
            fallback_error=fallback_error,
            fallback_source=fallback_source,
        )

        self.cache.set(
            tile_key,
            cache_key,
            new_cache_entry(
                ttl_seconds=self.cache_ttl_s,
                now=self.clock(),
                items=items,
                filter_support=support,
                source_breakdown=result.source_breakdown,
                source=result.source,
                available_facets=available_facets,
            ),
        )

        processing_time = round((time.time() - start_time) * 1000, 2)
        logger.info(
            f"Discovery returned {len(items)} items (source={result.source}, "
            f"degraded={degraded}) in {processing_time}ms"
        )
        return result

    def _normalize_query(self, query: DiscoveryQuery) -> DiscoveryQuery:
        limit = max(1, min(int(query.limit), MAX_CACHE_ITEMS))
        return query.model_copy(
            update={
                "radius_meters": normalize_radius(query.radius_meters),
                "bounds": resolve_discovery_bounds(query) if query.bounds is not None else None,
                "limit": limit,
            }
        )

    @staticmethod
    def _prefilter(
        items: List[DiscoveryItem],
        filters: NormalizedDiscoveryFilters,
        source_support: DiscoveryFilterSupport,
    ) -> List[DiscoveryItem]:
        return filter_by_query(items, filters, source_support.combine(PRE_METADATA_SUPPORT))

    def _result_from_cache(
        self,
        entry: DiscoveryCacheEntry,
        query: DiscoveryQuery,
        filters: NormalizedDiscoveryFilters,
        cache_key: str,
        facet_mode: str,
    ) -> DiscoveryResult:
        filtered = filter_by_query(entry.items, filters, entry.filter_support)
        limited = order_items(filtered)[: query.limit]
        if facet_mode == "available":
            facets = entry.available_facets or build_facets(entry.items)
        else:
            facets = build_facets(limited)
        return DiscoveryResult(
            center=query.center,
            radius_meters=query.radius_meters,
            count=len(limited),
            items=limited,
            filter_support=entry.filter_support,
            facets=facets,
            source_breakdown=build_source_breakdown(limited),
            cache=CacheInfo(key=cache_key, hit=True),
            source=entry.source,
        )

    def _fetch_from_rpc(
        self,
        query: DiscoveryQuery,
        filters: NormalizedDiscoveryFilters,
    ) -> Tuple[List[DiscoveryItem], bool]:
        """Items from activities_nearby and whether the call failed"""
        try:
            rows = self.store.activities_nearby(
                lat=query.center.lat,
                lng=query.center.lng,
                radius_m=query.radius_meters,
                limit=query.limit,
                types=filters.activity_types or None,
                tags=filters.tags or None,
            )
        except StoreError as e:
            logger.warning(f"activities_nearby RPC failed, falling back: {e}")
            return [], True

        items = []
        for row in rows:
            if row.lat is None or row.lng is None:
                continue
            items.append(
                DiscoveryItem(
                    id=row.id,
                    name=row.name or "",
                    venue=row.venue,
                    place_id=row.place_id,
                    place_label=normalize_place_label(row.place_label, row.venue, row.name),
                    lat=row.lat,
                    lng=row.lng,
                    distance_m=row.distance_m if row.distance_m is not None else 0.0,
                    activity_types=row.activity_types,
                    tags=row.tags,
                    traits=row.traits,
                    source="postgis",
                )
            )
        return items, False

    def _fetch_activities_fallback(
        self,
        query: DiscoveryQuery,
        filters: NormalizedDiscoveryFilters,
    ) -> Tuple[List[DiscoveryItem], DiscoveryFilterSupport]:
        """Bbox superset with client-side Haversine distance; raises StoreError"""
        include_preferences = bool(filters.traits) and self.store.preferences_available
        row_limit = max(MIN_FALLBACK_ROWS, query.limit * 4)

        def ranked_rows(bounds):
            rows = self.store.activities_in_bounds(bounds, row_limit, include_preferences=include_preferences)
            located = [row for row in rows if row.lat is not None and row.lng is not None]
            distances = [haversine_meters(query.center.lat, query.center.lng, row.lat, row.lng) for row in located]
            return sorted(zip(located, distances), key=lambda pair: pair[1])

        ranked = ranked_rows(resolve_discovery_bounds(query))
        # Nothing inside the radius: look further out so the nearest rows can still be offered
        if not any(distance <= query.radius_meters for _, distance in ranked):
            for wider in widening_bounds(query):
                wider_ranked = ranked_rows(wider)
                if wider_ranked:
                    ranked = wider_ranked
                    break
            if ranked:
                logger.info(f"No activities within {query.radius_meters}m, widened bbox to nearest rows")

        located = [row for row, _ in ranked]
        distances = [distance for _, distance in ranked]
        distance_by_id = {row.id: distance for row, distance in ranked}

        chosen = select_within_radius(located, distances, query.radius_meters, query.limit)
        counts = self.store.upcoming_session_counts([row.id for row in chosen], self.clock())

        items = []
        for row in chosen:
            traits = list(dict.fromkeys(
                [trait for trait in (row.traits or []) if isinstance(trait, str)]
                + list(row.preferred_traits or [])
            ))
            items.append(
                DiscoveryItem(
                    id=row.id,
                    name=row.name or "",
                    venue=row.venue,
                    place_id=row.place_id,
                    place_label=normalize_place_label(row.place_label, row.venue, row.name),
                    lat=row.lat,
                    lng=row.lng,
                    distance_m=distance_by_id[row.id],
                    activity_types=row.activity_types,
                    tags=row.tags,
                    traits=traits or None,
                    upcoming_session_count=counts.get(row.id, 0),
                    source="activities",
                )
            )

        caps = self.store.capabilities
        has_types = caps.has_column("activities", "activity_types")
        support = DiscoveryFilterSupport(
            activity_types=has_types,
            tags=caps.has_column("activities", "tags"),
            traits=caps.has_column("activities", "traits") or include_preferences,
            taxonomy_categories=has_types,
        )
        return items, support

    def _supplemental_sources(self, query: DiscoveryQuery):
        bounds = resolve_discovery_bounds(query)
        sources = []
        if self.overpass_enabled and self.overpass_fetcher is not None:
            sources.append(
                ("osm-overpass", lambda: self.overpass_fetcher(query.center, query.radius_meters, query.limit))
            )
        sources.append(
            (
                "supabase-venues",
                lambda: fetch_venue_fallback_activities(self.store, bounds, query.center, query.limit),
            )
        )
        return sources

    def _session_metadata(self, items: List[DiscoveryItem]):
        support = DiscoveryFilterSupport(price_levels=False, capacity_key=False, time_window=False)
        activity_ids = sorted({item.id for item in items if item.source in ACTIVITY_SOURCES})
        if not activity_ids:
            return {}, support

        now = self.clock()
        try:
            rows = self.store.session_rows(activity_ids, now, now + SESSION_METADATA_LOOKAHEAD)
        except StoreError as e:
            logger.warning(f"Failed to load session metadata: {e}")
            return {}, support

        support = DiscoveryFilterSupport()
        return collect_session_metadata(rows, now), support

    def _hydrate_place_labels(self, items: List[DiscoveryItem]) -> List[DiscoveryItem]:
        place_ids = sorted({item.place_id for item in items if item.place_id and item.place_id.strip()})
        names = {}
        if place_ids:
            try:
                names = self.store.place_names(place_ids)
            except StoreError as e:
                logger.warning(f"Failed to hydrate place labels: {e}")
                return items

        return [
            item.model_copy(
                update={
                    "place_label": hydrate_place_label(
                        place_name=names.get(item.place_id) if item.place_id else None,
                        venue=item.venue,
                        fallback_label=item.place_label,
                    )
                }
            )
            for item in items
        ]
