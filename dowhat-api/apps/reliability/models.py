import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from apps.core.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(32), nullable=True)  # scheduled | completed | cancelled

    participants = relationship("EventParticipant", back_populates="event")


class EventParticipant(Base):
    __tablename__ = "event_participants"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    role = Column(String(16), default="guest")  # host | guest
    attendance = Column(String(16), nullable=True)  # attended | no_show | cancelled | excused
    punctuality = Column(String(16), nullable=True)  # on_time | late
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    event = relationship("Event", back_populates="participants")


class Review(Base):
    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=_uuid)
    reviewer_id = Column(String(36), index=True, nullable=False)
    reviewee_id = Column(String(36), index=True, nullable=False)
    stars = Column(Integer, nullable=False)
    body = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class UserReputation(Base):
    __tablename__ = "user_reputation"

    user_id = Column(String(36), primary_key=True)
    rep = Column(Float, nullable=False, default=0.5)


class ReliabilityMetrics(Base):
    __tablename__ = "reliability_metrics"

    user_id = Column(String(36), primary_key=True)
    window_30d_json = Column(JSON, nullable=True)
    window_90d_json = Column(JSON, nullable=True)
    lifetime_json = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class ReliabilityIndex(Base):
    __tablename__ = "reliability_index"

    user_id = Column(String(36), primary_key=True)
    score = Column(Float, nullable=False, default=0)
    confidence = Column(Float, nullable=False, default=0)
    components_json = Column(JSON, nullable=True)
    last_recomputed = Column(DateTime(timezone=True), nullable=True)
