"""Pydantic schemas for reliability scoring"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class ReliabilityMetricsWindow(BaseModel):
    """Attendance counters for one trailing window; counts must be non-negative integers"""
    model_config = ConfigDict(extra="ignore")

    attended: StrictInt = Field(0, ge=0)
    no_shows: StrictInt = Field(0, ge=0)
    late_cancels: StrictInt = Field(0, ge=0)
    excused: StrictInt = Field(0, ge=0)
    on_time: StrictInt = Field(0, ge=0)
    late: StrictInt = Field(0, ge=0)
    reviews: StrictInt = Field(0, ge=0)
    weighted_review: Optional[float] = None
    last_event_at: Optional[str] = None

    @property
    def total_activities(self) -> int:
        return self.attended + self.no_shows + self.late_cancels + self.excused


class ReliabilityComponents(BaseModel):
    AS_30: float
    AS_90: float
    RS: Optional[float] = None
    host_bonus: float = 0


class ReliabilityScoreResult(BaseModel):
    score: float
    confidence: float
    components: ReliabilityComponents


class AttendanceSummary(BaseModel):
    attended30: int = 0
    noShow30: int = 0
    lateCancel30: int = 0
    excused30: int = 0
    attended90: int = 0
    noShow90: int = 0
    lateCancel90: int = 0
    excused90: int = 0


class ReliabilitySummary(BaseModel):
    score: float = 0
    confidence: float = 0
    components: Dict[str, Optional[float]] = Field(default_factory=dict)


class ProfileReliabilityResponse(BaseModel):
    reliability: ReliabilitySummary
    attendance: AttendanceSummary
