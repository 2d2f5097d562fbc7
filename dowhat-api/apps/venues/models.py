import uuid

from sqlalchemy import Column, DateTime, Float, JSON, String, Text
from sqlalchemy.sql import func

from apps.core.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Venue(Base):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)

    # Activity signals (optional on older deployments)
    ai_activity_tags = Column(JSON, nullable=True)
    verified_activities = Column(JSON, nullable=True)

    # Provider enrichment
    raw_description = Column(Text, nullable=True)
    raw_reviews = Column(JSON, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Venue(id={self.id}, name='{self.name}')>"


class FoursquareCache(Base):
    __tablename__ = "foursquare_cache"

    fsq_id = Column(String(64), primary_key=True)
    venue_id = Column(String(36), nullable=True)
    payload = Column(JSON, nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)


class GooglePlacesCache(Base):
    __tablename__ = "google_places_cache"

    place_id = Column(String(255), primary_key=True)
    venue_id = Column(String(36), nullable=True)
    payload = Column(JSON, nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
