#!/usr/bin/env python3
"""Primary store access for discovery (geospatial RPC plus bbox selects)"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apps.core.capabilities import SchemaCapabilities, get_schema_capabilities
from apps.discovery.models import Activity, ActivityParticipantPreference, ActivitySession, Place
from apps.discovery.schemas import DiscoveryBounds
from apps.discovery.services.session_metadata import SessionRow
from apps.venues.models import Venue

logger = logging.getLogger(__name__)

SESSION_ROW_LIMIT = 5000


class StoreError(Exception):
    """Primary store query failed"""


class NearbyActivityRow(BaseModel):
    id: str
    name: Optional[str] = None
    venue: Optional[str] = None
    place_id: Optional[str] = None
    place_label: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    distance_m: Optional[float] = None
    activity_types: Optional[List[Optional[str]]] = None
    tags: Optional[List[Optional[str]]] = None
    traits: Optional[List[Optional[str]]] = None
    preferred_traits: Optional[List[str]] = None


class VenueRow(BaseModel):
    id: str
    name: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    ai_activity_tags: Optional[List[Optional[str]]] = None
    verified_activities: Optional[List[Optional[str]]] = None


def _as_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


class DiscoveryStore:
    """Reads candidates from Postgres; optional columns follow detected capabilities"""

    def __init__(self, db: Session, capabilities: Optional[SchemaCapabilities] = None):
        self.db = db
        self.capabilities = capabilities or get_schema_capabilities(db.get_bind())

    def activities_nearby(
        self,
        lat: float,
        lng: float,
        radius_m: int,
        limit: int,
        types: Optional[Sequence[str]] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> List[NearbyActivityRow]:
        """Call the activities_nearby SQL function"""
        sql = text(
            "SELECT * FROM activities_nearby("
            "lat => :lat, lng => :lng, radius_m => :radius_m, limit_rows => :limit_rows, "
            "types => :types, tags => :tags)"
        )
        params = {
            "lat": lat,
            "lng": lng,
            "radius_m": radius_m,
            "limit_rows": limit,
            "types": list(types) if types else None,
            "tags": list(tags) if tags else None,
        }
        try:
            rows = self.db.execute(sql, params).mappings().all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"activities_nearby failed: {e}") from e

        result = []
        for row in rows:
            lat_out = row.get("lat_out") if row.get("lat_out") is not None else row.get("lat")
            lng_out = row.get("lng_out") if row.get("lng_out") is not None else row.get("lng")
            result.append(
                NearbyActivityRow(
                    id=str(row["id"]),
                    name=row.get("name"),
                    venue=row.get("venue"),
                    place_id=_as_str(row.get("place_id")),
                    place_label=row.get("place_label"),
                    lat=lat_out,
                    lng=lng_out,
                    distance_m=row.get("distance_m"),
                    activity_types=row.get("activity_types"),
                    tags=row.get("tags"),
                    traits=row.get("traits"),
                )
            )
        return result

    def activities_in_bounds(
        self,
        bounds: DiscoveryBounds,
        limit: int,
        include_preferences: bool = False,
    ) -> List[NearbyActivityRow]:
        caps = self.capabilities
        columns = [Activity.id, Activity.name, Activity.venue, Activity.lat, Activity.lng]
        for optional in ("activity_types", "tags", "traits", "place_id", "place_label"):
            if caps.has_column("activities", optional):
                columns.append(getattr(Activity, optional))

        stmt = (
            select(*columns)
            .where(Activity.lat.between(bounds.sw.lat, bounds.ne.lat))
            .where(Activity.lng.between(bounds.sw.lng, bounds.ne.lng))
            .limit(limit)
        )
        try:
            rows = [dict(row) for row in self.db.execute(stmt).mappings().all()]
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"activities bbox select failed: {e}") from e

        preferences: Dict[str, List[str]] = {}
        if include_preferences and rows and self.preferences_available:
            preferences = self.preferred_traits([row["id"] for row in rows])

        result = []
        for row in rows:
            row["id"] = str(row["id"])
            row["place_id"] = _as_str(row.get("place_id"))
            row["preferred_traits"] = preferences.get(row["id"])
            result.append(NearbyActivityRow.model_validate(row))
        return result

    @property
    def preferences_available(self) -> bool:
        return self.capabilities.has_table("activity_participant_preferences")

    def preferred_traits(self, activity_ids: Sequence[str]) -> Dict[str, List[str]]:
        stmt = select(
            ActivityParticipantPreference.activity_id,
            ActivityParticipantPreference.preferred_traits,
        ).where(ActivityParticipantPreference.activity_id.in_(list(activity_ids)))
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Participant preferences unavailable: {e}")
            return {}

        traits: Dict[str, List[str]] = {}
        for activity_id, preferred in rows:
            values = [value for value in (preferred or []) if isinstance(value, str)]
            traits.setdefault(str(activity_id), []).extend(values)
        return traits

    def upcoming_session_counts(self, activity_ids: Sequence[str], now: datetime) -> Dict[str, int]:
        if not activity_ids:
            return {}
        stmt = (
            select(ActivitySession.activity_id, func.count(ActivitySession.id))
            .where(ActivitySession.activity_id.in_(list(activity_ids)))
            .where(ActivitySession.starts_at >= now)
            .group_by(ActivitySession.activity_id)
        )
        try:
            return {str(activity_id): count for activity_id, count in self.db.execute(stmt).all()}
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to load upcoming session counts: {e}")
            return {}

    def session_rows(self, activity_ids: Sequence[str], start: datetime, end: datetime) -> List[SessionRow]:
        """Sessions starting within [start, end]; raises StoreError on failure"""
        stmt = (
            select(
                ActivitySession.activity_id,
                ActivitySession.starts_at,
                ActivitySession.ends_at,
                ActivitySession.price_cents,
                ActivitySession.max_attendees,
            )
            .where(ActivitySession.activity_id.in_(list(activity_ids)))
            .where(ActivitySession.starts_at >= start)
            .where(ActivitySession.starts_at <= end)
            .limit(SESSION_ROW_LIMIT)
        )
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"session metadata select failed: {e}") from e
        return [
            SessionRow(
                activity_id=_as_str(row.activity_id),
                starts_at=row.starts_at,
                ends_at=row.ends_at,
                price_cents=row.price_cents,
                max_attendees=row.max_attendees,
            )
            for row in rows
        ]

    def place_names(self, place_ids: Sequence[str]) -> Dict[str, Optional[str]]:
        """Raises StoreError; callers keep existing labels on failure"""
        if not place_ids:
            return {}
        stmt = select(Place.id, Place.name).where(Place.id.in_(list(place_ids)))
        try:
            return {str(place_id): name for place_id, name in self.db.execute(stmt).all()}
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"places select failed: {e}") from e

    def venues_in_bounds(self, bounds: DiscoveryBounds, limit: int) -> List[VenueRow]:
        caps = self.capabilities
        columns = [Venue.id, Venue.name, Venue.address, Venue.lat, Venue.lng]
        if caps.has_column("venues", "ai_activity_tags"):
            columns.append(Venue.ai_activity_tags)
        if caps.has_column("venues", "verified_activities"):
            columns.append(Venue.verified_activities)

        stmt = (
            select(*columns)
            .where(Venue.lat.between(bounds.sw.lat, bounds.ne.lat))
            .where(Venue.lng.between(bounds.sw.lng, bounds.ne.lng))
            .limit(limit)
        )
        if caps.has_column("venues", "updated_at"):
            stmt = stmt.order_by(Venue.updated_at.desc())
        try:
            rows = self.db.execute(stmt).mappings().all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"venues bbox select failed: {e}") from e
        return [VenueRow.model_validate({**row, "id": str(row["id"])}) for row in rows]
