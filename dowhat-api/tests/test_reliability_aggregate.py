from datetime import datetime, timedelta, timezone

import pytest

from apps.reliability.models import (
    Event,
    EventParticipant,
    ReliabilityIndex,
    ReliabilityMetrics,
    Review,
    UserReputation,
)
from apps.reliability.services.aggregate import (
    ParticipantRecord,
    ReviewRecord,
    aggregate_metrics_for_user,
    aggregate_windows,
    list_active_user_ids,
)
from apps.reliability.services.scoring import compute_reliability_index

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def days_ago(days):
    return NOW - timedelta(days=days)


PARTICIPANTS = [
    ParticipantRecord("attended", "on_time", "guest", "e1", days_ago(5), "completed"),
    ParticipantRecord("no_show", None, "guest", "e2", days_ago(40), "completed"),
    ParticipantRecord("attended", "late", "host", "e3", days_ago(10), "completed"),
    ParticipantRecord(None, None, "host", "e3", days_ago(10), "completed"),
    ParticipantRecord("cancelled", None, "guest", "e4", days_ago(200), "cancelled"),
    ParticipantRecord("attended", None, "guest", None, None, None),
]
REVIEWS = [
    ReviewRecord(stars=5, reviewer_id="r1", created_at=days_ago(10)),
    ReviewRecord(stars=3, reviewer_id="r2", created_at=days_ago(50)),
]


def test_aggregate_windows_counts_by_recency():
    windows = aggregate_windows(PARTICIPANTS, REVIEWS, {"r1": 1.0}, NOW)

    assert (windows.w30.attended, windows.w30.late, windows.w30.on_time) == (2, 1, 1)
    assert windows.w30.no_shows == 0
    assert (windows.w90.attended, windows.w90.no_shows) == (2, 1)
    assert windows.lifetime.late_cancels == 1
    assert windows.lifetime.total_activities == 4

    assert windows.safe_host_events == 1
    assert windows.days_since_last_event == 5
    assert windows.distinct_reviewers == 2

    assert windows.w30.reviews == 1
    assert windows.w30.weighted_review == pytest.approx(5.0)
    assert windows.w90.reviews == 2
    assert windows.w90.weighted_review == pytest.approx((5 * 1.0 + 3 * 0.5) / 1.5)
    assert windows.w90.last_event_at == days_ago(5).isoformat()


def test_aggregate_windows_with_no_history():
    windows = aggregate_windows([], [], {}, NOW)
    assert windows.w90.total_activities == 0
    assert windows.w90.weighted_review is None
    assert windows.days_since_last_event is None
    assert windows.safe_host_events == 0


def _seed(db):
    db.add_all([
        Event(id="e1", starts_at=days_ago(5), status="completed"),
        Event(id="e2", starts_at=days_ago(40), status="completed"),
        Event(id="e3", starts_at=days_ago(10), status="completed"),
        EventParticipant(event_id="e1", user_id="u1", role="guest", attendance="attended", punctuality="on_time", updated_at=days_ago(5)),
        EventParticipant(event_id="e2", user_id="u1", role="guest", attendance="no_show", updated_at=days_ago(40)),
        EventParticipant(event_id="e3", user_id="u1", role="host", attendance="attended", punctuality="late", updated_at=days_ago(10)),
        EventParticipant(event_id="e3", user_id="u2", role="guest", attendance="attended", updated_at=days_ago(200)),
        Review(reviewer_id="r1", reviewee_id="u1", stars=5, created_at=days_ago(10)),
        Review(reviewer_id="r2", reviewee_id="u1", stars=3, created_at=days_ago(50)),
        Review(reviewer_id="r3", reviewee_id="u1", stars=1, created_at=days_ago(120)),
        UserReputation(user_id="r1", rep=1.0),
    ])
    db.commit()


def test_aggregate_metrics_for_user_persists_index(db_session):
    _seed(db_session)
    result = aggregate_metrics_for_user(db_session, "u1", now=NOW)

    expected = compute_reliability_index(
        {"attended": 2, "on_time": 1, "late": 1, "reviews": 1},
        {"attended": 2, "no_shows": 1, "on_time": 1, "late": 1, "reviews": 2},
        (5 * 1.0 + 3 * 0.5) / 1.5,
        2,
        1,
        2,
        5,
    )
    assert result.score == pytest.approx(expected.score)
    assert result.confidence == pytest.approx(expected.confidence)

    index = db_session.get(ReliabilityIndex, "u1")
    assert index.score == round(result.score, 2)
    assert index.components_json["host_bonus"] == 2

    metrics = db_session.get(ReliabilityMetrics, "u1")
    assert metrics.window_90d_json["no_shows"] == 1
    assert metrics.window_30d_json["attended"] == 2

    # Recomputing upserts rather than duplicating
    aggregate_metrics_for_user(db_session, "u1", now=NOW)
    assert db_session.query(ReliabilityIndex).count() == 1


def test_list_active_user_ids(db_session):
    _seed(db_session)
    assert list_active_user_ids(db_session, days=90, now=NOW) == ["u1"]
    assert list_active_user_ids(db_session, days=365, now=NOW) == ["u1", "u2"]
    assert list_active_user_ids(db_session, days=365, limit=1, offset=1, now=NOW) == ["u2"]


def test_upcoming_events_are_ignored_until_they_happen():
    participants = [
        ParticipantRecord("attended", "on_time", "guest", "e1", days_ago(5), "completed"),
        ParticipantRecord(None, None, "host", "e9", NOW + timedelta(days=3), "completed"),
    ]
    windows = aggregate_windows(participants, [], {}, NOW)

    assert windows.days_since_last_event == 5
    assert windows.w30.attended == 1
    assert windows.safe_host_events == 0
    assert windows.w90.last_event_at == days_ago(5).isoformat()

    result = compute_reliability_index(
        windows.w30, windows.w90, None, 0, windows.safe_host_events, 0, windows.days_since_last_event
    )
    assert 0 < result.confidence <= 1


def test_recompute_succeeds_for_user_with_future_booking(db_session):
    db_session.add_all([
        Event(id="past", starts_at=days_ago(2), status="completed"),
        Event(id="soon", starts_at=NOW + timedelta(days=4), status="scheduled"),
        EventParticipant(event_id="past", user_id="u3", role="guest", attendance="attended", updated_at=days_ago(2)),
        EventParticipant(event_id="soon", user_id="u3", role="guest", updated_at=days_ago(1)),
    ])
    db_session.commit()

    aggregate_metrics_for_user(db_session, "u3", now=NOW)
    metrics = db_session.get(ReliabilityMetrics, "u3")
    assert metrics.window_30d_json["attended"] == 1
    assert db_session.get(ReliabilityIndex, "u3") is not None
