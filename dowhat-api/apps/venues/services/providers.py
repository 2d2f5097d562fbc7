#!/usr/bin/env python3
"""Foursquare and Google Places fetchers with persisted per-provider caches"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

import requests
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apps.core.config import settings
from apps.venues.models import FoursquareCache, GooglePlacesCache
from apps.venues.schemas import ExternalVenueRecord

logger = logging.getLogger(__name__)

FOURSQUARE_BASE_URL = "https://api.foursquare.com/v3/places"
GOOGLE_BASE_URL = "https://places.googleapis.com/v1"

FOURSQUARE_FIELDS = ",".join([
    "description", "categories", "geocodes", "location", "rating", "price",
    "website", "photos", "tips", "hours", "hours_popular", "timezone",
])
GOOGLE_FIELDS = ",".join([
    "id", "displayName", "editorialSummary", "shortFormattedAddress", "formattedAddress",
    "location", "rating", "priceLevel", "reviews", "types", "photos",
    "currentOpeningHours", "regularOpeningHours", "utcOffsetMinutes",
])

MAX_PROVIDER_PHOTOS = 5
MAX_PROVIDER_REVIEWS = 10
MAX_MERGED_PHOTOS = 10
MAX_MERGED_REVIEWS = 20
UNKNOWN_VENUE_NAME = "Unknown venue"


class ProviderError(Exception):
    """Provider HTTP call failed (non-2xx or network error)"""
    pass


class ProviderConfigError(ProviderError):
    """Provider is not configured (missing API key)"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def read_cache(db: Session, model: Type, key: str) -> Optional[ExternalVenueRecord]:
    """Cached record if present and unexpired; failures are a miss"""
    try:
        row = db.get(model, key)
    except SQLAlchemyError as e:
        logger.warning(f"[cache] {model.__tablename__} read failed: {e}")
        db.rollback()
        return None

    if row is None or row.expires_at is None:
        return None
    if _as_aware(row.expires_at) < _utcnow():
        return None
    try:
        return ExternalVenueRecord.model_validate(row.payload)
    except ValidationError as e:
        logger.warning(f"[cache] {model.__tablename__} payload invalid for {key}: {e}")
        return None


def write_cache(
    db: Session,
    model: Type,
    key: str,
    record: ExternalVenueRecord,
    ttl_seconds: int,
    venue_id: Optional[str] = None,
) -> None:
    """Upsert by provider id; failures are logged, never raised"""
    now = _utcnow()
    key_column = "fsq_id" if model is FoursquareCache else "place_id"
    row = model(
        venue_id=venue_id,
        payload=record.model_dump(mode="json", by_alias=True),
        fetched_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
        **{key_column: key},
    )
    try:
        db.merge(row)
        db.commit()
    except SQLAlchemyError as e:
        logger.warning(f"[cache] {model.__tablename__} write failed: {e}")
        db.rollback()


def dedupe_strings(values: Iterable[Optional[str]]) -> List[str]:
    """Comma-split, trim, case-insensitive dedupe keeping the first spelling"""
    seen = set()
    result = []
    for value in values:
        if not value:
            continue
        for part in value.split(","):
            part = part.strip()
            if not part or part.lower() in seen:
                continue
            seen.add(part.lower())
            result.append(part)
    return result


def join_address_parts(parts: Iterable[Optional[str]]) -> Optional[str]:
    cleaned = [part.strip() for part in parts if isinstance(part, str) and part.strip()]
    return ", ".join(cleaned) if cleaned else None


def format_utc_offset(minutes: Optional[int]) -> Optional[str]:
    if minutes is None:
        return None
    sign = "-" if minutes < 0 else "+"
    hours, mins = divmod(abs(int(minutes)), 60)
    return f"UTC{sign}{hours:02d}:{mins:02d}"


def _number_or_none(value) -> Optional[float]:
    return value if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def _http_get(provider_label: str, url: str, headers: Dict[str, str]) -> Dict[str, Any]:
    try:
        response = requests.get(url, headers=headers, timeout=settings.provider_timeout_s)
    except requests.exceptions.RequestException as e:
        raise ProviderError(f"{provider_label} request failed: {e}") from e
    if not response.ok:
        body = response.text or response.reason
        raise ProviderError(f"{provider_label} request failed ({response.status_code}): {body}")
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(f"{provider_label} returned invalid JSON: {e}") from e


def normalize_foursquare(fsq_id: str, data: Dict[str, Any]) -> ExternalVenueRecord:
    location = data.get("location") or {}
    hours = data.get("hours") or None
    popular = data.get("hours_popular") or None

    categories = [
        cat["name"] for cat in data.get("categories") or []
        if isinstance(cat, dict) and isinstance(cat.get("name"), str) and cat["name"]
    ]
    locality = location.get("locality") or location.get("city")
    address = location.get("formatted_address") or join_address_parts(
        [location.get("address"), locality, location.get("region"), location.get("country")]
    )
    reviews = [
        tip["text"] for tip in data.get("tips") or []
        if isinstance(tip, dict) and isinstance(tip.get("text"), str) and tip["text"].strip()
    ][:MAX_PROVIDER_REVIEWS]
    photos = [
        f"{photo['prefix']}original{photo['suffix']}" for photo in data.get("photos") or []
        if isinstance(photo, dict) and photo.get("prefix") and photo.get("suffix")
    ][:MAX_PROVIDER_PHOTOS]

    open_now = None
    if hours:
        if isinstance(hours.get("is_open"), bool):
            open_now = hours["is_open"]
        elif isinstance(hours.get("open_now"), bool):
            open_now = hours["open_now"]
        elif isinstance(hours.get("status"), str):
            open_now = "open" in hours["status"].lower()
    hours_summary = (
        (hours or {}).get("display") or (hours or {}).get("status")
        or (popular or {}).get("display") or (popular or {}).get("status")
    )

    geocode = (data.get("geocodes") or {}).get("main") or {}
    return ExternalVenueRecord(
        provider="foursquare",
        provider_id=fsq_id,
        name=data.get("name") or UNKNOWN_VENUE_NAME,
        description=data.get("description"),
        categories=categories,
        keywords=dedupe_strings([address, locality, location.get("region"), location.get("country"), *categories]),
        rating=_number_or_none(data.get("rating")),
        price_level=_number_or_none(data.get("price")),
        lat=geocode.get("latitude"),
        lng=geocode.get("longitude"),
        photos=photos,
        reviews=reviews,
        address=address,
        locality=locality,
        region=location.get("region"),
        country=location.get("country"),
        postcode=location.get("postcode"),
        timezone=data.get("timezone"),
        open_now=open_now,
        hours_summary=hours_summary,
        hours={"regular": hours, "popular": popular} if (hours or popular) else None,
    )


def normalize_google(place_id: str, data: Dict[str, Any]) -> ExternalVenueRecord:
    categories = [t.replace("_", " ") for t in data.get("types") or [] if isinstance(t, str)]
    reviews = []
    for review in data.get("reviews") or []:
        text = ((review or {}).get("text") or {}).get("text")
        if isinstance(text, str) and text.strip():
            reviews.append(text)
    photos = []
    for photo in data.get("photos") or []:
        attributions = (photo or {}).get("authorAttributions") or []
        uri = (attributions[0] or {}).get("photoUri") if attributions else None
        if uri or (photo or {}).get("name"):
            photos.append(uri or photo["name"])

    current = data.get("currentOpeningHours") or None
    regular = data.get("regularOpeningHours") or None
    hours_summary = None
    for block in (current, regular):
        descriptions = (block or {}).get("weekdayDescriptions") or []
        if descriptions:
            hours_summary = descriptions[0]
            break

    address = data.get("shortFormattedAddress") or data.get("formattedAddress")
    location = data.get("location") or {}
    open_now = (current or {}).get("openNow")
    return ExternalVenueRecord(
        provider="google",
        provider_id=place_id,
        name=(data.get("displayName") or {}).get("text") or data.get("name") or UNKNOWN_VENUE_NAME,
        description=(data.get("editorialSummary") or {}).get("text"),
        categories=categories,
        keywords=dedupe_strings([address, *categories]),
        rating=_number_or_none(data.get("rating")),
        price_level=_number_or_none(data.get("priceLevel")),
        lat=location.get("latitude"),
        lng=location.get("longitude"),
        photos=photos[:MAX_PROVIDER_PHOTOS],
        reviews=reviews[:MAX_PROVIDER_REVIEWS],
        address=address,
        timezone=format_utc_offset(data.get("utcOffsetMinutes")),
        open_now=open_now if isinstance(open_now, bool) else None,
        hours_summary=hours_summary,
        hours={"current": current, "regular": regular} if (current or regular) else None,
    )


def fetch_foursquare_venue(
    db: Session,
    fsq_id: str,
    venue_id: Optional[str] = None,
    force: bool = False,
) -> Optional[ExternalVenueRecord]:
    if not force:
        cached = read_cache(db, FoursquareCache, fsq_id)
        if cached is not None:
            logger.debug(f"Foursquare cache hit for {fsq_id}")
            return cached

    api_key = settings.foursquare_api_key
    if not api_key:
        raise ProviderConfigError("FOURSQUARE_API_KEY is not configured.")

    data = _http_get(
        "Foursquare",
        f"{FOURSQUARE_BASE_URL}/{fsq_id}?fields={FOURSQUARE_FIELDS}",
        {"accept": "application/json", "Authorization": api_key},
    )
    record = normalize_foursquare(fsq_id, data)
    write_cache(db, FoursquareCache, fsq_id, record, settings.foursquare_cache_ttl_s, venue_id)
    return record


def fetch_google_place(
    db: Session,
    place_id: str,
    venue_id: Optional[str] = None,
    force: bool = False,
) -> Optional[ExternalVenueRecord]:
    if not force:
        cached = read_cache(db, GooglePlacesCache, place_id)
        if cached is not None:
            logger.debug(f"Google Places cache hit for {place_id}")
            return cached

    api_key = settings.google_places_api_key
    if not api_key:
        raise ProviderConfigError("GOOGLE_PLACES_API_KEY is not configured.")

    data = _http_get(
        "Google Places",
        f"{GOOGLE_BASE_URL}/places/{place_id}?languageCode=en&fields={GOOGLE_FIELDS}",
        {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": api_key,
            "X-Goog-FieldMask": GOOGLE_FIELDS,
        },
    )
    record = normalize_google(place_id, data)
    write_cache(db, GooglePlacesCache, place_id, record, settings.google_cache_ttl_s, venue_id)
    return record


def _first(records: Sequence[ExternalVenueRecord], attr: str, accept) -> Any:
    for record in records:
        value = getattr(record, attr)
        if accept(value):
            return value
    return getattr(records[0], attr)


def _union(values: Iterable[Optional[str]], case_insensitive: bool) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if not value:
            continue
        key = value.lower() if case_insensitive else value
        if key in seen:
            continue
        seen.add(key)
        result.append(value)
    return result


def order_by_priority(
    records: Sequence[ExternalVenueRecord],
    provider_priority: Optional[Sequence[str]] = None,
) -> List[ExternalVenueRecord]:
    """Stable sort by priority; unlisted providers keep input order after listed ones"""
    if not provider_priority:
        return list(records)
    rank = {provider: index for index, provider in enumerate(provider_priority)}
    return sorted(records, key=lambda record: rank.get(record.provider, len(rank)))


def merge_external_venues(
    records: Sequence[ExternalVenueRecord],
    provider_priority: Optional[Sequence[str]] = None,
) -> Optional[ExternalVenueRecord]:
    """
    Merge records describing the same venue.

    Scalars take the first non-null value in priority order; categories and
    keywords are unioned case-insensitively, photos and reviews exactly.
    """
    if not records:
        return None
    ordered = order_by_priority(records, provider_priority)
    head = ordered[0]

    def _is_number(value) -> bool:
        return _number_or_none(value) is not None

    return ExternalVenueRecord(
        provider=head.provider,
        provider_id=head.provider_id,
        name=_first(ordered, "name", bool),
        description=_first(ordered, "description", bool),
        categories=_union((c for r in ordered for c in r.categories), case_insensitive=True),
        keywords=_union((k for r in ordered for k in r.keywords), case_insensitive=True),
        rating=_first(ordered, "rating", _is_number),
        price_level=_first(ordered, "price_level", _is_number),
        lat=_first(ordered, "lat", _is_number),
        lng=_first(ordered, "lng", _is_number),
        photos=_union((p for r in ordered for p in r.photos), case_insensitive=False)[:MAX_MERGED_PHOTOS],
        reviews=_union((v for r in ordered for v in r.reviews), case_insensitive=False)[:MAX_MERGED_REVIEWS],
        address=_first(ordered, "address", bool),
        locality=_first(ordered, "locality", bool),
        region=_first(ordered, "region", bool),
        country=_first(ordered, "country", bool),
        postcode=_first(ordered, "postcode", bool),
        timezone=_first(ordered, "timezone", bool),
        open_now=_first(ordered, "open_now", lambda value: isinstance(value, bool)),
        hours_summary=_first(ordered, "hours_summary", bool),
        hours=_first(ordered, "hours", bool),
    )


def summarize_venue_text(record: Optional[ExternalVenueRecord]) -> Tuple[Optional[str], List[str]]:
    """(description plus keywords joined by newlines, reviews)"""
    if record is None:
        return None, []
    parts = [part for part in [record.description, *record.keywords] if part]
    return ("\n".join(parts) or None), list(record.reviews)


def describe_provider_error(provider: str, error: Exception) -> str:
    return f"[{provider}] {error}"
