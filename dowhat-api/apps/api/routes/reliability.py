#!/usr/bin/env python3
"""Reliability profile and batch recompute API"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apps.core.config import settings
from apps.core.db import get_db
from apps.reliability.models import ReliabilityIndex, ReliabilityMetrics
from apps.reliability.schemas import AttendanceSummary, ProfileReliabilityResponse, ReliabilitySummary
from apps.reliability.services.aggregate import aggregate_metrics_for_user, list_active_user_ids

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reliability"])


def _count(window: Optional[dict], key: str) -> int:
    value = (window or {}).get(key)
    return int(value) if isinstance(value, (int, float)) else 0


@router.get("/profile/{user_id}/reliability", response_model=ProfileReliabilityResponse)
def get_profile_reliability(user_id: str, db: Session = Depends(get_db)):
    """Stored reliability index and attendance windows; zeros when never computed"""
    index = db.get(ReliabilityIndex, user_id)
    metrics = db.get(ReliabilityMetrics, user_id)

    w30 = metrics.window_30d_json if metrics else None
    w90 = metrics.window_90d_json if metrics else None
    attendance = AttendanceSummary(
        attended30=_count(w30, "attended"),
        noShow30=_count(w30, "no_shows"),
        lateCancel30=_count(w30, "late_cancels"),
        excused30=_count(w30, "excused"),
        attended90=_count(w90, "attended"),
        noShow90=_count(w90, "no_shows"),
        lateCancel90=_count(w90, "late_cancels"),
        excused90=_count(w90, "excused"),
    )

    components = (index.components_json if index else None) or {}
    reliability = ReliabilitySummary(
        score=float(index.score or 0) if index else 0,
        confidence=float(index.confidence or 0) if index else 0,
        components={
            "AS30": components.get("AS_30") or 0,
            "AS90": components.get("AS_90") or 0,
            "reviewScore": components.get("RS"),
            "hostBonus": components.get("host_bonus"),
        },
    )
    return ProfileReliabilityResponse(reliability=reliability, attendance=attendance)


@router.post("/reliability/recompute")
def recompute_reliability(
    limit: int = Query(25, ge=1, le=200),
    offset: int = Query(0, ge=0),
    days: int = Query(90, ge=1, le=365),
    x_cron_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Batch recompute for users active in the last `days` days (cron only)"""
    if not x_cron_secret or not settings.cron_secret or x_cron_secret != settings.cron_secret:
        raise HTTPException(status_code=403, detail="forbidden")

    start_time = time.time()
    user_ids = list_active_user_ids(db, days=days, limit=limit, offset=offset)

    results = []
    for user_id in user_ids:
        try:
            result = aggregate_metrics_for_user(db, user_id)
        except (SQLAlchemyError, ValueError) as e:
            db.rollback()
            logger.warning(f"Reliability recompute failed for {user_id}: {e}")
            results.append({"user_id": user_id, "error": str(e)})
            continue
        results.append({"user_id": user_id, "score": result.score, "confidence": result.confidence})

    processing_time = round((time.time() - start_time) * 1000, 2)
    logger.info(f"Recomputed reliability for {len(results)} users in {processing_time}ms")
    return {"count": len(results), "results": results}
