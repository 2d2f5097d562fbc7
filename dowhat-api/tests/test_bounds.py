import pytest

from apps.discovery.schemas import DiscoveryBounds, DiscoveryQuery, LatLng
from apps.discovery.services.bounds import (
    bounds_center,
    haversine_meters,
    normalize_bounds,
    resolve_discovery_bounds,
)


def _bounds(sw_lat, sw_lng, ne_lat, ne_lng):
    return DiscoveryBounds(sw=LatLng(lat=sw_lat, lng=sw_lng), ne=LatLng(lat=ne_lat, lng=ne_lng))


@pytest.mark.parametrize(
    "raw",
    [
        _bounds(13.8, 100.6, 13.7, 100.5),
        _bounds(13.7, 100.6, 13.8, 100.5),
        _bounds(-95, 200, 95, -200),
        _bounds(0, 0, 0, 0),
    ],
)
def test_normalized_bounds_are_ordered(raw):
    bounds = normalize_bounds(raw)
    assert bounds.sw.lat <= bounds.ne.lat
    assert bounds.sw.lng <= bounds.ne.lng
    assert -90 <= bounds.sw.lat and bounds.ne.lat <= 90
    assert -180 <= bounds.sw.lng and bounds.ne.lng <= 180


def test_normalize_bounds_rounds_to_six_decimals():
    bounds = normalize_bounds(_bounds(13.12345678, 100.1, 13.2, 100.87654321))
    assert bounds.sw.lat == 13.123457
    assert bounds.ne.lng == 100.876543


def test_explicit_bounds_win_over_radius():
    query = DiscoveryQuery(
        center=LatLng(lat=13.75, lng=100.55),
        radius_meters=100000,
        bounds=_bounds(13.8, 100.6, 13.7, 100.5),
    )
    bounds = resolve_discovery_bounds(query)
    assert (bounds.sw.lat, bounds.sw.lng, bounds.ne.lat, bounds.ne.lng) == (13.7, 100.5, 13.8, 100.6)


def test_bounds_derived_from_center_and_radius():
    query = DiscoveryQuery(center=LatLng(lat=0, lng=0), radius_meters=1113.2)
    bounds = resolve_discovery_bounds(query)
    assert bounds.ne.lat == pytest.approx(0.01, abs=1e-4)
    assert bounds.sw.lat == pytest.approx(-0.01, abs=1e-4)
    assert bounds.ne.lng == pytest.approx(0.01, abs=1e-4)
    center = bounds_center(bounds)
    assert center.lat == pytest.approx(0, abs=1e-9)
    assert center.lng == pytest.approx(0, abs=1e-9)


def test_bounds_near_pole_span_all_longitudes():
    query = DiscoveryQuery(center=LatLng(lat=90, lng=10), radius_meters=5000)
    bounds = resolve_discovery_bounds(query)
    assert bounds.sw.lng == -180
    assert bounds.ne.lng == 180
    assert bounds.ne.lat == 90


def test_haversine_one_degree_at_equator():
    assert haversine_meters(0, 0, 0, 1) == pytest.approx(111195, rel=1e-3)
    assert haversine_meters(13.75, 100.55, 13.75, 100.55) == 0
