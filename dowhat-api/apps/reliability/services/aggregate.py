#!/usr/bin/env python3
"""Aggregate attendance/review history into reliability windows and persist the index"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from apps.reliability.models import (
    Event,
    EventParticipant,
    ReliabilityIndex,
    ReliabilityMetrics,
    Review,
    UserReputation,
)
from apps.reliability.schemas import ReliabilityMetricsWindow, ReliabilityScoreResult
from apps.reliability.services.scoring import compute_reliability_index

logger = logging.getLogger(__name__)

DEFAULT_REPUTATION = 0.5

ATTENDANCE_FIELDS = {
    "attended": "attended",
    "no_show": "no_shows",
    "cancelled": "late_cancels",
    "excused": "excused",
}
PUNCTUALITY_FIELDS = {"on_time": "on_time", "late": "late"}


@dataclass
class ParticipantRecord:
    attendance: Optional[str]
    punctuality: Optional[str]
    role: str
    event_id: Optional[str]
    event_starts_at: Optional[datetime]
    event_status: Optional[str]


@dataclass
class ReviewRecord:
    stars: float
    reviewer_id: str
    created_at: datetime


@dataclass
class AggregatedWindows:
    w30: ReliabilityMetricsWindow
    w90: ReliabilityMetricsWindow
    lifetime: ReliabilityMetricsWindow
    safe_host_events: int = 0
    distinct_reviewers: int = 0
    days_since_last_event: Optional[int] = None
    reviewer_ids: Set[str] = field(default_factory=set)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _bump(counter: Dict[str, int], attendance: Optional[str], punctuality: Optional[str]) -> None:
    if attendance in ATTENDANCE_FIELDS:
        counter[ATTENDANCE_FIELDS[attendance]] += 1
    if punctuality in PUNCTUALITY_FIELDS:
        counter[PUNCTUALITY_FIELDS[punctuality]] += 1


def _counter() -> Dict[str, int]:
    return {"attended": 0, "no_shows": 0, "late_cancels": 0, "excused": 0, "on_time": 0, "late": 0, "reviews": 0}


def aggregate_windows(
    participants: Iterable[ParticipantRecord],
    reviews: Iterable[ReviewRecord],
    reputations: Dict[str, float],
    now: datetime,
) -> AggregatedWindows:
    """Pure aggregation of 30/90-day and lifetime windows"""
    now = _aware(now)
    d30 = now - timedelta(days=30)
    d90 = now - timedelta(days=90)
    w30, w90, lifetime = _counter(), _counter(), _counter()

    last_event_at: Optional[datetime] = None
    host_events: Set[str] = set()

    for p in participants:
        if p.event_starts_at is None:
            continue
        starts = _aware(p.event_starts_at)
        # Upcoming RSVPs say nothing about attendance yet
        if starts > now:
            continue
        if last_event_at is None or starts > last_event_at:
            last_event_at = starts

        _bump(lifetime, p.attendance, p.punctuality)
        if starts >= d90:
            _bump(w90, p.attendance, p.punctuality)
        if starts >= d30:
            _bump(w30, p.attendance, p.punctuality)

        # A completed hosted event counts once
        if p.role == "host" and p.event_status == "completed" and starts >= d90:
            host_events.add(p.event_id or f"{starts.isoformat()}:{p.role}")

    sum30 = total30 = sum90 = total90 = 0.0
    distinct_reviewers: Set[str] = set()
    for review in reviews:
        created = _aware(review.created_at)
        rep = reputations.get(review.reviewer_id, DEFAULT_REPUTATION)
        if created >= d90:
            w90["reviews"] += 1
            sum90 += review.stars * rep
            total90 += rep
            distinct_reviewers.add(review.reviewer_id)
        if created >= d30:
            w30["reviews"] += 1
            sum30 += review.stars * rep
            total30 += rep

    last_iso = last_event_at.isoformat() if last_event_at else None
    window30 = ReliabilityMetricsWindow(
        **w30, weighted_review=(sum30 / total30) if total30 else None, last_event_at=last_iso
    )
    window90 = ReliabilityMetricsWindow(
        **w90, weighted_review=(sum90 / total90) if total90 else None, last_event_at=last_iso
    )

    return AggregatedWindows(
        w30=window30,
        w90=window90,
        lifetime=ReliabilityMetricsWindow(**lifetime),
        safe_host_events=len(host_events),
        distinct_reviewers=len(distinct_reviewers),
        days_since_last_event=(now - last_event_at).days if last_event_at else None,
        reviewer_ids=distinct_reviewers,
    )


def _load_participants(db: Session, user_id: str) -> List[ParticipantRecord]:
    stmt = (
        select(EventParticipant, Event)
        .join(Event, Event.id == EventParticipant.event_id, isouter=True)
        .where(EventParticipant.user_id == user_id)
    )
    return [
        ParticipantRecord(
            attendance=participant.attendance,
            punctuality=participant.punctuality,
            role=participant.role or "guest",
            event_id=event.id if event else None,
            event_starts_at=event.starts_at if event else None,
            event_status=event.status if event else None,
        )
        for participant, event in db.execute(stmt).all()
    ]


def _load_reviews(db: Session, user_id: str, since: datetime) -> List[ReviewRecord]:
    stmt = select(Review).where(Review.reviewee_id == user_id).where(Review.created_at >= since)
    return [
        ReviewRecord(stars=review.stars, reviewer_id=review.reviewer_id, created_at=review.created_at)
        for review in db.execute(stmt).scalars().all()
    ]


def _load_reputations(db: Session, reviewer_ids: Iterable[str]) -> Dict[str, float]:
    ids = list(set(reviewer_ids))
    if not ids:
        return {}
    stmt = select(UserReputation.user_id, UserReputation.rep).where(UserReputation.user_id.in_(ids))
    return {user_id: float(rep) for user_id, rep in db.execute(stmt).all()}


def aggregate_metrics_for_user(db: Session, user_id: str, now: Optional[datetime] = None) -> ReliabilityScoreResult:
    """Recompute and upsert reliability_metrics and reliability_index for one user"""
    now = now or datetime.now(timezone.utc)
    participants = _load_participants(db, user_id)
    reviews = _load_reviews(db, user_id, now - timedelta(days=90))
    reputations = _load_reputations(db, (review.reviewer_id for review in reviews))

    windows = aggregate_windows(participants, reviews, reputations, now)
    result = compute_reliability_index(
        windows.w30,
        windows.w90,
        windows.w90.weighted_review,
        windows.w90.reviews,
        windows.safe_host_events,
        windows.distinct_reviewers,
        windows.days_since_last_event,
    )

    db.merge(ReliabilityMetrics(
        user_id=user_id,
        window_30d_json=windows.w30.model_dump(),
        window_90d_json=windows.w90.model_dump(),
        lifetime_json=windows.lifetime.model_dump(),
        updated_at=now,
    ))
    db.merge(ReliabilityIndex(
        user_id=user_id,
        score=round(result.score, 2),
        confidence=round(result.confidence, 2),
        components_json=result.components.model_dump(),
        last_recomputed=now,
    ))
    db.commit()
    logger.info(f"Reliability recomputed for {user_id}: score={result.score:.2f} confidence={result.confidence:.2f}")
    return result


def list_active_user_ids(
    db: Session,
    days: int = 90,
    limit: int = 100,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> List[str]:
    since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    stmt = (
        select(EventParticipant.user_id)
        .where(EventParticipant.updated_at >= since)
        .distinct()
        .order_by(EventParticipant.user_id)
        .offset(offset)
        .limit(limit)
    )
    return [user_id for (user_id,) in db.execute(stmt).all()]
