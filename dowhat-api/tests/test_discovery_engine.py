from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from apps.core.capabilities import SchemaCapabilities
from apps.discovery.schemas import DiscoveryFilters, DiscoveryItem, DiscoveryQuery, LatLng
from apps.discovery.services.discovery_cache import InMemoryDiscoveryCache
from apps.discovery.services.engine import DiscoveryEngine, DiscoveryUnavailableError
from apps.discovery.services.overpass import OVERPASS_SUPPORT, OverpassError
from apps.discovery.services.session_metadata import SessionRow
from apps.discovery.services.store import NearbyActivityRow, StoreError, VenueRow

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
CENTER = LatLng(lat=13.75, lng=100.55)


class FakeStore:
    """In-memory stand-in for DiscoveryStore"""

    def __init__(
        self,
        nearby=None,
        bounds_rows=None,
        venues=None,
        sessions=None,
        places=None,
        nearby_error=False,
        bounds_error=False,
        sessions_error=False,
        capabilities=None,
    ):
        self.nearby = nearby or []
        self.bounds_rows = bounds_rows or []
        self.venues = venues or []
        self.sessions = sessions or []
        self.places = places or {}
        self.nearby_error = nearby_error
        self.bounds_error = bounds_error
        self.sessions_error = sessions_error
        self.capabilities = capabilities or SchemaCapabilities.full()
        self.preferences_available = False
        self.calls = Counter()

    def activities_nearby(self, lat, lng, radius_m, limit, types=None, tags=None):
        self.calls["nearby"] += 1
        if self.nearby_error:
            raise StoreError("function activities_nearby does not exist")
        return list(self.nearby)

    def activities_in_bounds(self, bounds, limit, include_preferences=False):
        self.calls["bounds"] += 1
        if self.bounds_error:
            raise StoreError("activities bbox select failed")
        return [
            row for row in self.bounds_rows
            if row.lat is not None and row.lng is not None
            and bounds.sw.lat <= row.lat <= bounds.ne.lat
            and bounds.sw.lng <= row.lng <= bounds.ne.lng
        ]

    def upcoming_session_counts(self, activity_ids, now):
        return {activity_id: 2 for activity_id in activity_ids}

    def session_rows(self, activity_ids, start, end):
        self.calls["sessions"] += 1
        if self.sessions_error:
            raise StoreError("session metadata select failed")
        return [row for row in self.sessions if row.activity_id in activity_ids]

    def place_names(self, place_ids):
        return {place_id: self.places[place_id] for place_id in place_ids if place_id in self.places}

    def venues_in_bounds(self, bounds, limit):
        self.calls["venues"] += 1
        return list(self.venues)


def make_engine(store, **kwargs):
    kwargs.setdefault("overpass_enabled", False)
    return DiscoveryEngine(
        store,
        InMemoryDiscoveryCache(clock=lambda: NOW),
        clock=lambda: NOW,
        **kwargs,
    )


def make_query(radius=1500, limit=50, **filters):
    return DiscoveryQuery(
        center=CENTER,
        radius_meters=radius,
        limit=limit,
        filters=DiscoveryFilters(**filters) if filters else None,
    )


def test_rpc_results_are_ordered_labelled_and_cached():
    store = FakeStore(
        nearby=[
            NearbyActivityRow(id="a1", name="Chess", lat=13.751, lng=100.55, distance_m=300, activity_types=["chess"]),
            NearbyActivityRow(id="a2", name="Yoga", lat=13.7501, lng=100.55, distance_m=100, place_id="p1"),
        ],
        places={"p1": "Lumpini Park"},
    )
    engine = make_engine(store)

    result = engine.discover_nearby_activities(make_query(limit=2))
    assert [item.id for item in result.items] == ["a2", "a1"]
    assert [item.place_label for item in result.items] == ["Lumpini Park", "Chess"]
    assert result.source == "postgis"
    assert result.count == 2
    assert result.cache.hit is False
    assert result.source_breakdown == {"postgis": 2}
    assert result.filter_support.capacity_key is True
    assert all(item.score is not None for item in result.items)
    assert store.calls["bounds"] == 0
    assert store.calls["venues"] == 0

    cached = engine.discover_nearby_activities(make_query(limit=2))
    assert cached.cache.hit is True
    assert cached.cache.key == result.cache.key
    assert [item.id for item in cached.items] == ["a2", "a1"]
    assert store.calls["nearby"] == 1

    engine.discover_nearby_activities(make_query(limit=2), bypass_cache=True)
    assert store.calls["nearby"] == 2


def test_rpc_failure_falls_back_to_nearest_rows_outside_radius():
    store = FakeStore(
        nearby_error=True,
        bounds_rows=[NearbyActivityRow(id="far", name="Distant court", lat=13.795, lng=100.55)],
    )
    result = make_engine(store).discover_nearby_activities(make_query(radius=100))

    assert [item.id for item in result.items] == ["far"]
    item = result.items[0]
    assert item.source == "activities"
    assert item.distance_m == pytest.approx(5004, rel=0.01)
    assert item.upcoming_session_count == 2
    assert result.source == "client-filter"
    assert result.radius_meters == 100


def test_rpc_and_fallback_failure_is_unavailable():
    store = FakeStore(nearby_error=True, bounds_error=True)
    with pytest.raises(DiscoveryUnavailableError):
        make_engine(store).discover_nearby_activities(make_query())


def test_fallback_failure_keeps_rpc_results():
    store = FakeStore(
        nearby=[NearbyActivityRow(id="a1", name="Chess", lat=13.751, lng=100.55, distance_m=300)],
        bounds_error=True,
    )
    result = make_engine(store).discover_nearby_activities(make_query(limit=5))
    assert [item.id for item in result.items] == ["a1"]
    assert result.source == "postgis"


def test_venue_table_supplements_sparse_results():
    store = FakeStore(
        venues=[
            VenueRow(
                id="v1",
                name="Climb Central",
                address="Sukhumvit 24",
                lat=13.751,
                lng=100.551,
                verified_activities=["climbing"],
                ai_activity_tags=["indoor"],
            ),
            VenueRow(id="v2", name="No coordinates"),
        ],
    )
    result = make_engine(store).discover_nearby_activities(make_query())

    assert [item.id for item in result.items] == ["venue:v1"]
    item = result.items[0]
    assert item.name == "Climb Central"
    assert item.place_label == "Sukhumvit 24"
    assert item.activity_types == ["climbing"]
    assert result.source == "supabase-venues"
    assert result.fallback_source == "supabase-venues"
    assert result.filter_support.activity_types is True
    assert result.filter_support.traits is False
    assert result.filter_support.price_levels is False
    assert result.degraded is False


def test_failing_supplemental_source_marks_result_degraded():
    def failing_overpass(center, radius_m, limit):
        raise OverpassError("Overpass request failed (504)")

    store = FakeStore()
    engine = make_engine(store, overpass_enabled=True, overpass_fetcher=failing_overpass)
    result = engine.discover_nearby_activities(make_query())

    assert result.items == []
    assert result.degraded is True
    assert result.fallback_error == "Overpass request failed (504)"
    assert store.calls["venues"] == 1


def test_overpass_items_are_merged_when_available():
    osm_item = DiscoveryItem(
        id="node:1",
        name="Court A",
        lat=13.7502,
        lng=100.5502,
        distance_m=30,
        activity_types=["basketball"],
        tags=["basketball", "osm"],
        source="osm-overpass",
    )
    engine = make_engine(
        FakeStore(),
        overpass_enabled=True,
        overpass_fetcher=lambda center, radius_m, limit: ([osm_item, osm_item], OVERPASS_SUPPORT),
    )
    result = engine.discover_nearby_activities(make_query())

    assert [item.id for item in result.items] == ["node:1"]
    assert result.fallback_source == "osm-overpass"
    assert result.source_breakdown == {"osm-overpass": 1}
    assert result.filter_support.time_window is False


def test_session_derived_price_filter_applies_after_hydration():
    store = FakeStore(
        nearby_error=True,
        bounds_rows=[
            NearbyActivityRow(id="a1", name="Cheap run", lat=13.7505, lng=100.55),
            NearbyActivityRow(id="a2", name="Fancy dinner", lat=13.751, lng=100.55),
        ],
        sessions=[
            SessionRow("a1", starts_at=NOW + timedelta(days=1), price_cents=3000),
            SessionRow("a2", starts_at=NOW + timedelta(days=1), price_cents=20000),
        ],
    )
    result = make_engine(store).discover_nearby_activities(make_query(price_levels=[2]))

    assert [item.id for item in result.items] == ["a1"]
    assert result.items[0].price_levels == [2]
    assert result.items[0].next_session_at == NOW + timedelta(days=1)
    assert result.filter_support.price_levels is True


def test_unavailable_session_metadata_skips_session_filters():
    store = FakeStore(
        nearby_error=True,
        bounds_rows=[
            NearbyActivityRow(id="a1", name="Run", lat=13.7505, lng=100.55),
            NearbyActivityRow(id="a2", name="Swim", lat=13.751, lng=100.55),
        ],
        sessions_error=True,
    )
    result = make_engine(store).discover_nearby_activities(make_query(capacity_key="large"))

    assert [item.id for item in result.items] == ["a1", "a2"]
    assert result.filter_support.capacity_key is False
    assert result.filter_support.activity_types is True


def _facet_store():
    return FakeStore(
        nearby=[
            NearbyActivityRow(id="a1", name="Yoga", lat=13.7501, lng=100.55, distance_m=10, activity_types=["yoga"]),
            NearbyActivityRow(id="a2", name="Tennis", lat=13.7502, lng=100.55, distance_m=20, activity_types=["tennis"]),
        ]
    )


def test_facets_count_returned_items_by_default():
    result = make_engine(_facet_store()).discover_nearby_activities(make_query(limit=5, activity_types=["yoga"]))
    assert [item.id for item in result.items] == ["a1"]
    assert [(f.value, f.count) for f in result.facets.activity_types] == [("yoga", 1)]


def test_available_facets_count_the_candidate_pool():
    result = make_engine(_facet_store()).discover_nearby_activities(
        make_query(limit=5, activity_types=["yoga"]), facet_mode="available"
    )
    assert [item.id for item in result.items] == ["a1"]
    assert [(f.value, f.count) for f in result.facets.activity_types] == [("tennis", 1), ("yoga", 1)]


def test_available_facets_are_identical_on_cache_hit():
    engine = make_engine(_facet_store())
    query = make_query(limit=5, activity_types=["yoga"])

    miss = engine.discover_nearby_activities(query, facet_mode="available")
    hit = engine.discover_nearby_activities(query, facet_mode="available")
    assert hit.cache.hit is True
    assert hit.facets == miss.facets
    assert [(f.value, f.count) for f in hit.facets.activity_types] == [("tennis", 1), ("yoga", 1)]

    filtered_hit = engine.discover_nearby_activities(query)
    assert [(f.value, f.count) for f in filtered_hit.facets.activity_types] == [("yoga", 1)]


def test_bbox_fallback_widens_until_it_finds_the_nearest_row():
    store = FakeStore(
        nearby_error=True,
        bounds_rows=[NearbyActivityRow(id="remote", name="Island dive", lat=15.5, lng=100.55)],
    )
    result = make_engine(store).discover_nearby_activities(make_query(radius=100))

    assert [item.id for item in result.items] == ["remote"]
    # initial box, 1km, 10km, 100km, then the whole globe
    assert store.calls["bounds"] == 5
