import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from apps.core.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Place(Base):
    """Canonical physical place that activities can point at"""
    __tablename__ = "places"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Activity(Base):
    __tablename__ = "activities"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(Text, nullable=False)
    venue = Column(Text, nullable=True)  # free-text venue/address label
    lat = Column(Float, CheckConstraint("lat >= -90 AND lat <= 90"), nullable=True)
    lng = Column(Float, CheckConstraint("lng >= -180 AND lng <= 180"), nullable=True)

    # Optional facet columns (may be absent on older deployments)
    activity_types = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)
    traits = Column(JSON, nullable=True)
    place_id = Column(String(36), ForeignKey("places.id"), nullable=True)
    place_label = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sessions = relationship("ActivitySession", back_populates="activity")

    def __repr__(self):
        return f"<Activity(id={self.id}, name='{self.name}')>"


class ActivitySession(Base):
    """A scheduled occurrence of an activity"""
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    activity_id = Column(String(36), ForeignKey("activities.id"), index=True, nullable=False)
    starts_at = Column(DateTime(timezone=True), index=True, nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    price_cents = Column(Integer, nullable=True)
    max_attendees = Column(Integer, nullable=True)

    activity = relationship("Activity", back_populates="sessions")


class ActivityParticipantPreference(Base):
    __tablename__ = "activity_participant_preferences"

    id = Column(String(36), primary_key=True, default=_uuid)
    activity_id = Column(String(36), ForeignKey("activities.id"), index=True, nullable=False)
    user_id = Column(String(36), nullable=False)
    preferred_traits = Column(JSON, nullable=True)


class PlaceTile(Base):
    """Per-geohash6 tile row holding the persisted discovery cache map"""
    __tablename__ = "place_tiles"

    geohash6 = Column(String(12), primary_key=True)
    discovery_cache = Column(JSON, nullable=True)  # {cache_key: entry}
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
