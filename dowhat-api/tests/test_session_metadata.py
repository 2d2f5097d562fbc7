from datetime import datetime, timedelta, timezone

import pytest

from apps.discovery.schemas import DiscoveryItem
from apps.discovery.services.session_metadata import (
    SessionRow,
    apply_session_metadata,
    collect_session_metadata,
    derive_capacity_key,
    derive_price_level,
    derive_taxonomy_categories,
    derive_time_window,
    parse_timestamp,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "cents, level",
    [(0, 1), (2000, 1), (2001, 2), (5000, 2), (10000, 3), (10001, 4), (None, None), ("12", None)],
)
def test_price_level_buckets(cents, level):
    assert derive_price_level(cents) == level


@pytest.mark.parametrize(
    "attendees, key",
    [(12, "large"), (10, "large"), (8, "medium"), (5, "small"), (2, "couple"), (1, None), (0, None), (None, None)],
)
def test_capacity_key_buckets(attendees, key):
    assert derive_capacity_key(attendees) == key


def test_time_window_open_now_uses_default_length():
    window, start, open_now = derive_time_window(NOW - timedelta(minutes=30), None, NOW)
    assert (window, open_now) == ("open_now", True)
    assert start == NOW - timedelta(minutes=30)

    window, _, open_now = derive_time_window(NOW - timedelta(minutes=100), None, NOW)
    assert open_now is False
    assert window == "morning"


@pytest.mark.parametrize(
    "starts_at, window",
    [
        ("2026-10-20T18:00:00+00:00", "evening"),
        ("2026-10-20T07:00:00+07:00", "morning"),
        ("2026-10-20T13:30:00Z", "afternoon"),
        ("2026-10-20T23:00:00+00:00", "late"),
        ("2026-10-21T03:00:00+00:00", "late"),
    ],
)
def test_time_window_buckets_by_local_start_hour(starts_at, window):
    assert derive_time_window(starts_at, None, NOW)[0] == window


def test_unparseable_start_has_no_window():
    assert derive_time_window("not a date", None, NOW) == (None, None, False)
    assert parse_timestamp(None) is None


def test_parse_timestamp_assumes_utc_for_naive_values():
    assert parse_timestamp("2026-10-19T10:00:00") == datetime(2026, 10, 19, 10, tzinfo=timezone.utc)
    assert parse_timestamp(datetime(2026, 10, 19, 10)).tzinfo is timezone.utc


def test_collect_session_metadata_aggregates_per_activity():
    tomorrow_morning = datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)
    rows = [
        SessionRow("a1", starts_at=datetime(2026, 10, 21, 18, 0, tzinfo=timezone.utc), price_cents=1500, max_attendees=4),
        SessionRow("a1", starts_at=tomorrow_morning, price_cents=6000, max_attendees=12),
        SessionRow("a2", starts_at=NOW - timedelta(minutes=10), ends_at=NOW + timedelta(minutes=50)),
        SessionRow("a2", starts_at=NOW + timedelta(hours=1)),
        SessionRow(None, starts_at=tomorrow_morning),
    ]
    metadata = collect_session_metadata(rows, NOW)
    assert set(metadata) == {"a1", "a2"}

    a1 = metadata["a1"]
    assert a1.price_levels == {1, 3}
    assert a1.capacity_key == "large"
    assert a1.next_session_at == tomorrow_morning
    assert a1.time_window == "morning"

    a2 = metadata["a2"]
    assert a2.time_window == "open_now"
    assert a2.open_now is True


def test_taxonomy_categories_come_from_tier_prefixed_ids():
    item = DiscoveryItem(id="a", name="x", lat=0, lng=0, activity_types=["tier2-climbing", "yoga"], tags=["TIER1-sport"])
    assert derive_taxonomy_categories(item) == ["tier2-climbing"]

    tagged = DiscoveryItem(id="b", name="x", lat=0, lng=0, activity_types=["yoga"], tags=[" tier1-sport "])
    assert derive_taxonomy_categories(tagged) == ["tier1-sport"]

    plain = DiscoveryItem(id="c", name="x", lat=0, lng=0, activity_types=["yoga"])
    assert derive_taxonomy_categories(plain) is None


def test_apply_session_metadata_overrides_item_facets():
    start = datetime(2026, 10, 20, 19, 0, tzinfo=timezone.utc)
    metadata = collect_session_metadata([SessionRow("a1", starts_at=start, price_cents=3000, max_attendees=6)], NOW)
    items = [
        DiscoveryItem(id="a1", name="Run club", lat=0, lng=0, price_levels=[4], capacity_key="couple"),
        DiscoveryItem(id="a2", name="Chess", lat=0, lng=0, price_levels=[3, 3]),
    ]
    first, second = apply_session_metadata(items, metadata)

    assert first.price_levels == [2]
    assert first.capacity_key == "small"
    assert first.time_window == "evening"
    assert first.next_session_at == start

    assert second.price_levels == [3]
    assert second.capacity_key is None
    assert second.time_window is None
