"""Health check endpoints exposed by the public API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from apps.core.capabilities import get_schema_capabilities
from apps.core.config import settings
from apps.core.db import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", summary="Constant-time readiness probe")
def health_fast() -> dict[str, str]:
    """Simple readiness probe that avoids touching the database."""
    return {"status": "ok", "timestamp": _utc_timestamp()}


@router.get("/db", summary="Database connectivity check")
def health_db(db: Session = Depends(get_db)) -> dict[str, object]:
    """Deep health check that validates the connection and reports detected schema capabilities."""
    db.execute(text("SELECT 1"))
    capabilities = get_schema_capabilities(db.get_bind())
    return {
        "status": "ok",
        "scope": "db",
        "capabilities": capabilities.snapshot(),
        "timestamp": _utc_timestamp(),
    }


@router.get("/providers", summary="Discovery and enrichment source configuration")
def health_providers() -> dict[str, object]:
    """Which optional sources this process will consult; never calls them."""
    return {
        "status": "ok",
        "providers": {
            "foursquare": bool(settings.foursquare_api_key),
            "google": bool(settings.google_places_api_key),
            "overpass": settings.discovery_overpass_enabled,
        },
        "discoveryCache": settings.discovery_cache_backend,
        "timestamp": _utc_timestamp(),
    }
