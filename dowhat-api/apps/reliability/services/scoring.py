#!/usr/bin/env python3
"""
Reliability index: attendance score, review score and confidence.

Pure functions. Callers pass pre-aggregated windows; negative or
non-integer counts are rejected with ValueError.
"""

import math
from typing import Optional, Tuple, Union

from apps.reliability.schemas import (
    ReliabilityComponents,
    ReliabilityMetricsWindow,
    ReliabilityScoreResult,
)

NO_SHOW_WEIGHT = 0.70
LATE_CANCEL_WEIGHT = 0.30
RECENCY_BLEND_30 = 0.6
RECENCY_BLEND_90 = 0.4

ATTENDANCE_WEIGHT = 0.75
REVIEW_WEIGHT = 0.25
MIN_REVIEWS_FOR_SCORE = 2
MAX_HOST_BONUS = 5
HOST_BONUS_PER_EVENT = 2
RECENCY_DECAY_DAYS = 21

WindowLike = Union[ReliabilityMetricsWindow, dict]


def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def _window(value: WindowLike) -> ReliabilityMetricsWindow:
    if isinstance(value, ReliabilityMetricsWindow):
        return value
    # pydantic's ValidationError is a ValueError
    return ReliabilityMetricsWindow.model_validate(value or {})


def _require_non_negative(name: str, value, allow_none: bool = False) -> None:
    if value is None and allow_none:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
        raise ValueError(f"{name} must be a non-negative number, got {value!r}")


def attendance_score(window: WindowLike) -> float:
    """0..100 score for a single window"""
    w = _window(window)
    total = w.total_activities
    attendance_rate = w.attended / total if total else 0.0
    no_show_rate = w.no_shows / (w.attended + w.no_shows) if (w.attended + w.no_shows) else 0.0
    late_cancel_rate = w.late_cancels / total if total else 0.0
    punctuality = w.on_time / (w.on_time + w.late) if (w.on_time + w.late) else 0.0

    base = 100 * attendance_rate
    penalty = 100 * (NO_SHOW_WEIGHT * no_show_rate + LATE_CANCEL_WEIGHT * late_cancel_rate)
    punctuality_adj = 10 * (punctuality - 0.5)  # -5..+5
    return clamp(base - penalty + punctuality_adj, 0, 100)


def compute_attendance_score(w30: WindowLike, w90: WindowLike) -> Tuple[float, float, float]:
    """Returns (AS, AS_30, AS_90) with AS the recency blend of both windows"""
    as_30 = attendance_score(w30)
    as_90 = attendance_score(w90)
    return RECENCY_BLEND_30 * as_30 + RECENCY_BLEND_90 * as_90, as_30, as_90


def compute_review_score(weighted_review: Optional[float], review_count: Optional[int]) -> Optional[float]:
    """Map a 1..5 weighted star average to 0..100; None below two reviews"""
    _require_non_negative("review_count", review_count, allow_none=True)
    _require_non_negative("weighted_review", weighted_review, allow_none=True)
    if not weighted_review or not review_count or review_count < MIN_REVIEWS_FOR_SCORE:
        return None
    return clamp(25 * (weighted_review - 1), 0, 100)


def host_bonus(safe_host_events: int) -> float:
    _require_non_negative("safe_host_events", safe_host_events)
    return min(MAX_HOST_BONUS, HOST_BONUS_PER_EVENT * safe_host_events)


def fuse_reliability(attendance: float, review_score: Optional[float], safe_host_events: int) -> float:
    score = attendance if review_score is None else ATTENDANCE_WEIGHT * attendance + REVIEW_WEIGHT * review_score
    return clamp(score + host_bonus(safe_host_events), 0, 100)


def compute_confidence(
    w90: WindowLike,
    distinct_reviewers: int,
    days_since_last_event: Optional[float],
) -> float:
    w = _window(w90)
    _require_non_negative("distinct_reviewers", distinct_reviewers)
    _require_non_negative("days_since_last_event", days_since_last_event, allow_none=True)

    volume = clamp(w.total_activities / 10, 0, 1)
    reviews = clamp(w.reviews / 5, 0, 1)
    diversity = clamp(distinct_reviewers / 3, 0, 1)
    recency = 0.0 if days_since_last_event is None else math.exp(-days_since_last_event / RECENCY_DECAY_DAYS)
    return clamp(0.25 + 0.35 * volume + 0.20 * reviews + 0.10 * diversity + 0.10 * recency, 0, 1)


def compute_reliability_index(
    w30: WindowLike,
    w90: WindowLike,
    weighted_review: Optional[float],
    review_count: Optional[int],
    safe_host_events: int,
    distinct_reviewers: int,
    days_since_last_event: Optional[float],
) -> ReliabilityScoreResult:
    attendance, as_30, as_90 = compute_attendance_score(w30, w90)
    review_score = compute_review_score(weighted_review, review_count)
    return ReliabilityScoreResult(
        score=fuse_reliability(attendance, review_score, safe_host_events),
        confidence=compute_confidence(w90, distinct_reviewers, days_since_last_event),
        components=ReliabilityComponents(
            AS_30=as_30,
            AS_90=as_90,
            RS=review_score,
            host_bonus=host_bonus(safe_host_events),
        ),
    )
