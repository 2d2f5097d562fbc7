from datetime import datetime, timedelta, timezone

from apps.discovery.schemas import DiscoveryFilterSupport, DiscoveryItem, NormalizedDiscoveryFilters
from apps.discovery.services.normalize import normalize_filters
from apps.discovery.services.ranking import (
    build_facets,
    build_source_breakdown,
    dedupe_by_place_key,
    filter_by_query,
    merge_with_fallback,
    order_items,
    relevance_score,
    select_within_radius,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_item(item_id, name="Pickup", lat=13.75, lng=100.55, distance=100.0, **extra):
    return DiscoveryItem(id=item_id, name=name, lat=lat, lng=lng, distance_m=distance, **extra)


def test_filter_matches_any_requested_value_case_insensitively():
    items = [
        make_item("a", activity_types=["Yoga"]),
        make_item("b", activity_types=["tennis"]),
        make_item("c"),
    ]
    filters = normalize_filters({"activityTypes": ["yoga", "climbing"]})
    result = filter_by_query(items, filters, DiscoveryFilterSupport())
    assert [item.id for item in result] == ["a"]


def test_unsupported_dimension_is_skipped():
    items = [make_item("a", activity_types=["tennis"]), make_item("b")]
    filters = normalize_filters({"activityTypes": ["yoga"]})
    support = DiscoveryFilterSupport(activity_types=False)
    assert [item.id for item in filter_by_query(items, filters, support)] == ["a", "b"]


def test_filters_are_conjunctive_and_scalars_match_exactly():
    items = [
        make_item("a", tags=["indoor"], capacity_key="small", time_window="evening", price_levels=[2]),
        make_item("b", tags=["indoor"], capacity_key="large", time_window="evening", price_levels=[2]),
        make_item("c", tags=["outdoor"], capacity_key="small", time_window="evening", price_levels=[2]),
        make_item("d", tags=["indoor"], capacity_key="small", time_window="morning", price_levels=[4]),
    ]
    filters = normalize_filters(
        {"tags": ["indoor"], "capacityKey": "small", "timeWindow": "evening", "priceLevels": [2]}
    )
    assert [item.id for item in filter_by_query(items, filters, DiscoveryFilterSupport())] == ["a"]


def test_no_active_filters_returns_everything():
    items = [make_item("a"), make_item("b")]
    assert filter_by_query(items, NormalizedDiscoveryFilters(), DiscoveryFilterSupport()) == items


def test_order_by_distance_then_next_session_then_name():
    items = [
        make_item("far", name="A", distance=500),
        make_item("later", name="B", distance=100, next_session_at=NOW + timedelta(days=2)),
        make_item("sooner", name="C", distance=100, next_session_at=NOW + timedelta(hours=3)),
        make_item("unscheduled", name="A", distance=100),
        make_item("unknown", name="A", distance=None),
    ]
    assert [item.id for item in order_items(items)] == ["sooner", "later", "unscheduled", "far", "unknown"]


def test_merge_prefers_primary_and_dedupes_by_place():
    primary = [
        make_item("a1", name="Chess Club", place_id="p1"),
        make_item("a2", name="Court", lat=13.7501, lng=100.5501),
        make_item("a1", name="Chess Club duplicate", place_id="p1"),
    ]
    fallback = [
        make_item("venue:1", name="Other listing", place_id="p1"),
        make_item("venue:2", name="court", lat=13.75012, lng=100.55009),
        make_item("venue:3", name="Pool", lat=13.76, lng=100.56),
        make_item("venue:4", name="pool", lat=13.76, lng=100.56),
    ]
    merged = merge_with_fallback(primary, fallback)
    assert [item.id for item in merged] == ["a1", "a2", "venue:3"]


def test_dedupe_by_place_key_keeps_first():
    items = [make_item("x", name="Gym"), make_item("y", name="GYM "), make_item("z", name="Gym", lat=1.0)]
    assert [item.id for item in dedupe_by_place_key(items)] == ["x", "z"]


def test_nearest_rows_returned_when_nothing_within_radius():
    rows = ["far"]
    assert select_within_radius(rows, [5000.0], 100, 10) == ["far"]


def test_rows_within_radius_capped_at_limit():
    rows = ["a", "b", "c", "d"]
    assert select_within_radius(rows, [10, 50, 90, 5000], 100, 2) == ["a", "b"]
    assert select_within_radius([], [], 100, 2) == []


def test_single_valued_facet_counts_sum_to_item_count():
    items = [
        make_item("a", capacity_key="small", time_window="evening"),
        make_item("b", capacity_key="small", time_window="morning"),
        make_item("c", capacity_key="large", time_window="evening"),
    ]
    facets = build_facets(items)
    assert sum(facet.count for facet in facets.capacity_key) == len(items)
    assert sum(facet.count for facet in facets.time_window) == len(items)
    assert [(f.value, f.count) for f in facets.capacity_key] == [("small", 2), ("large", 1)]


def test_facets_sorted_by_count_then_value():
    items = [
        make_item("a", activity_types=["tennis", "yoga"], price_levels=[2]),
        make_item("b", activity_types=["yoga", "chess"], price_levels=[2, 3]),
        make_item("c", activity_types=["basketball"]),
    ]
    facets = build_facets(items)
    assert [(f.value, f.count) for f in facets.activity_types] == [
        ("yoga", 2),
        ("basketball", 1),
        ("chess", 1),
        ("tennis", 1),
    ]
    assert [(f.value, f.count) for f in facets.price_levels] == [("2", 2), ("3", 1)]
    assert facets.traits == []


def test_source_breakdown_counts_sources():
    items = [make_item("a", source="postgis"), make_item("b", source="postgis"), make_item("c")]
    assert build_source_breakdown(items) == {"postgis": 2, "unknown": 1}


def test_relevance_score_blends_proximity_facets_and_sessions():
    perfect = make_item("a", distance=0, upcoming_session_count=5)
    assert relevance_score(perfect, NormalizedDiscoveryFilters(), 1000) == 1.0

    filters = normalize_filters({"activityTypes": ["yoga"]})
    half_way = make_item("b", distance=500, activity_types=["tennis"], upcoming_session_count=0)
    assert relevance_score(half_way, filters, 1000) == 0.3

    matched = make_item("c", distance=2000, activity_types=["Yoga"], upcoming_session_count=1)
    assert relevance_score(matched, filters, 1000) == round(0.3 + 0.1 / 3, 4)
