import json

from apps.discovery.schemas import DiscoveryBounds, DiscoveryFilters, DiscoveryQuery, LatLng
from apps.discovery.services.cache_keys import build_discovery_cache_key, compute_tile_key


def _query(lat=13.75, lng=100.55, radius=1500, limit=20, **filters):
    return DiscoveryQuery(
        center=LatLng(lat=lat, lng=lng),
        radius_meters=radius,
        limit=limit,
        filters=DiscoveryFilters(**filters) if filters else None,
    )


def test_filter_order_does_not_change_key():
    first = build_discovery_cache_key("activities", _query(activity_types=["b", "a"], tags=["x", "Y"]))
    second = build_discovery_cache_key("activities", _query(tags=["y", "x"], activity_types=["a", "b"]))
    assert first == second


def test_coordinates_are_quantized_to_five_decimals():
    first = build_discovery_cache_key("activities", _query(lat=13.750001, lng=100.550004))
    second = build_discovery_cache_key("activities", _query(lat=13.750004, lng=100.549996))
    assert first == second


def test_sub_meter_radius_difference_shares_key():
    assert build_discovery_cache_key("activities", _query(radius=1500.2)) == build_discovery_cache_key(
        "activities", _query(radius=1500.4)
    )


def test_limit_kind_and_bounds_change_key():
    base = build_discovery_cache_key("activities", _query())
    assert base != build_discovery_cache_key("activities", _query(limit=21))
    assert base != build_discovery_cache_key("venues", _query())

    bounded = _query().model_copy(
        update={"bounds": DiscoveryBounds(sw=LatLng(lat=13.7, lng=100.5), ne=LatLng(lat=13.8, lng=100.6))}
    )
    assert base != build_discovery_cache_key("activities", bounded)


def test_key_is_compact_json_with_normalized_filters():
    payload = json.loads(build_discovery_cache_key("activities", _query(price_levels=[3, 1.2])))
    assert payload["kind"] == "activities"
    assert payload["center"] == {"lat": 13.75, "lng": 100.55}
    assert payload["radiusMeters"] == 1500
    assert payload["bounds"] is None
    assert payload["filters"]["priceLevels"] == [1, 3]
    assert payload["filters"]["capacityKey"] == "any"


def test_tile_key_is_geohash6():
    tile = compute_tile_key(LatLng(lat=13.75, lng=100.55))
    assert len(tile) == 6
    assert compute_tile_key(LatLng(lat=13.750001, lng=100.550001)) == tile
    assert compute_tile_key(LatLng(lat=48.85, lng=2.35)) != tile
