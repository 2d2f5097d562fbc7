"""Pydantic schemas for external venue records and enrichment"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Provider = Literal["foursquare", "google"]


class ExternalVenueRecord(BaseModel):
    """Provider-agnostic venue record"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider: Provider
    provider_id: str
    name: str
    description: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    rating: Optional[float] = None
    price_level: Optional[int] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    photos: List[str] = Field(default_factory=list)
    reviews: List[str] = Field(default_factory=list)
    address: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    postcode: Optional[str] = None
    timezone: Optional[str] = None
    open_now: Optional[bool] = None
    hours_summary: Optional[str] = None
    hours: Optional[Dict[str, Any]] = None


class EnrichVenueRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    foursquare_id: Optional[str] = None
    google_place_id: Optional[str] = None
    force: bool = False
    provider_priority: Optional[List[Provider]] = None


class VenueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    ai_activity_tags: Optional[List[str]] = None
    verified_activities: Optional[List[str]] = None
    raw_description: Optional[str] = None
    raw_reviews: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")


class EnrichVenueResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    venue: VenueOut
    external_record: Optional[ExternalVenueRecord] = None
    provider_diagnostics: List[str] = Field(default_factory=list)
    refreshed: bool = False
