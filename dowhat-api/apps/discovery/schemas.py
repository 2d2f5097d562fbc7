#!/usr/bin/env python3
"""Pydantic schemas for nearby discovery"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CapacityKey = Literal["any", "couple", "small", "medium", "large"]
TimeWindowKey = Literal["any", "open_now", "morning", "afternoon", "evening", "late"]

CAPACITY_KEYS = ("any", "couple", "small", "medium", "large")
TIME_WINDOW_KEYS = ("any", "open_now", "morning", "afternoon", "evening", "late")

FACET_DIMENSIONS = (
    "activity_types",
    "tags",
    "traits",
    "taxonomy_categories",
    "price_levels",
    "capacity_key",
    "time_window",
)


class CamelModel(BaseModel):
    """Base for payloads exchanged with clients in camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LatLng(BaseModel):
    lat: float
    lng: float


class DiscoveryBounds(BaseModel):
    sw: LatLng
    ne: LatLng


class DiscoveryFilters(CamelModel):
    """Raw filter selections as sent by a client"""
    activity_types: Optional[List[Optional[str]]] = None
    tags: Optional[List[Optional[str]]] = None
    traits: Optional[List[Optional[str]]] = None
    taxonomy_categories: Optional[List[Optional[str]]] = None
    price_levels: Optional[List[Optional[float]]] = None
    capacity_key: Optional[str] = None
    time_window: Optional[str] = None


class NormalizedDiscoveryFilters(CamelModel):
    """Canonical filter set; identical selections normalize identically"""
    activity_types: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    traits: List[str] = Field(default_factory=list)
    taxonomy_categories: List[str] = Field(default_factory=list)
    price_levels: List[int] = Field(default_factory=list)
    capacity_key: CapacityKey = "any"
    time_window: TimeWindowKey = "any"


class DiscoveryQuery(BaseModel):
    center: LatLng
    radius_meters: Optional[float] = None
    limit: int = 50
    bounds: Optional[DiscoveryBounds] = None
    filters: Optional[DiscoveryFilters] = None


class DiscoveryItem(BaseModel):
    """A ranked activity/venue candidate"""
    id: str
    name: str
    venue: Optional[str] = None
    place_id: Optional[str] = None
    place_label: Optional[str] = None
    lat: float
    lng: float
    distance_m: Optional[float] = None
    activity_types: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    traits: Optional[List[str]] = None
    taxonomy_categories: Optional[List[str]] = None
    price_levels: Optional[List[int]] = None
    capacity_key: Optional[str] = None
    time_window: Optional[str] = None
    upcoming_session_count: Optional[int] = None
    next_session_at: Optional[datetime] = None
    score: Optional[float] = None
    source: Optional[str] = None


class DiscoveryFilterSupport(CamelModel):
    """Whether the backing sources can honour each filter dimension"""
    activity_types: bool = True
    tags: bool = True
    traits: bool = True
    taxonomy_categories: bool = True
    price_levels: bool = True
    capacity_key: bool = True
    time_window: bool = True

    @classmethod
    def none(cls) -> "DiscoveryFilterSupport":
        return cls(**{dim: False for dim in FACET_DIMENSIONS})

    def combine(self, other: "DiscoveryFilterSupport") -> "DiscoveryFilterSupport":
        return DiscoveryFilterSupport(
            **{dim: getattr(self, dim) and getattr(other, dim) for dim in FACET_DIMENSIONS}
        )


class DiscoveryFacet(BaseModel):
    value: str
    count: int


class DiscoveryFacets(CamelModel):
    activity_types: List[DiscoveryFacet] = Field(default_factory=list)
    tags: List[DiscoveryFacet] = Field(default_factory=list)
    traits: List[DiscoveryFacet] = Field(default_factory=list)
    taxonomy_categories: List[DiscoveryFacet] = Field(default_factory=list)
    price_levels: List[DiscoveryFacet] = Field(default_factory=list)
    capacity_key: List[DiscoveryFacet] = Field(default_factory=list)
    time_window: List[DiscoveryFacet] = Field(default_factory=list)


class CacheInfo(BaseModel):
    key: Optional[str] = None
    hit: bool = False


class DiscoveryResult(CamelModel):
    center: LatLng
    radius_meters: int
    count: int = 0
    items: List[DiscoveryItem] = Field(default_factory=list)
    filter_support: Optional[DiscoveryFilterSupport] = None
    facets: Optional[DiscoveryFacets] = None
    source_breakdown: Dict[str, int] = Field(default_factory=dict)
    cache: Optional[CacheInfo] = None
    source: Optional[str] = None
    degraded: bool = False
    fallback_error: Optional[str] = None
    fallback_source: Optional[str] = None


class DiscoveryCacheEntry(CamelModel):
    """What a cache backend stores per cache key"""
    cached_at: datetime
    expires_at: datetime
    items: List[DiscoveryItem] = Field(default_factory=list)
    filter_support: DiscoveryFilterSupport = Field(default_factory=DiscoveryFilterSupport)
    source_breakdown: Dict[str, int] = Field(default_factory=dict)
    source: Optional[str] = None
    available_facets: Optional[DiscoveryFacets] = None
