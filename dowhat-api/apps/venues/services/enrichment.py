#!/usr/bin/env python3
"""Venue enrichment from external place providers"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from apps.venues.models import Venue
from apps.venues.schemas import ExternalVenueRecord
from apps.venues.services.providers import (
    ProviderError,
    describe_provider_error,
    fetch_foursquare_venue,
    fetch_google_place,
    merge_external_venues,
    summarize_venue_text,
)

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000
MAX_REVIEW_LENGTH = 400
MAX_REVIEW_COUNT = 10


class VenueNotFoundError(Exception):
    pass


class EnrichmentResult:
    def __init__(
        self,
        venue: Venue,
        external_record: Optional[ExternalVenueRecord],
        provider_diagnostics: List[str],
        refreshed: bool,
    ):
        self.venue = venue
        self.external_record = external_record
        self.provider_diagnostics = provider_diagnostics
        self.refreshed = refreshed


def normalize_description(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    return value.strip()[:MAX_DESCRIPTION_LENGTH]


def normalize_reviews(values: Optional[Sequence[Optional[str]]]) -> Optional[List[str]]:
    cleaned = [value.strip() for value in values or [] if isinstance(value, str) and value.strip()]
    cleaned = [value[:MAX_REVIEW_LENGTH] for value in cleaned[:MAX_REVIEW_COUNT]]
    return cleaned or None


def build_metadata_patch(existing: Optional[Dict[str, Any]], record: Optional[ExternalVenueRecord]) -> Optional[Dict[str, Any]]:
    """Merge provider facts into metadata["discovery"]; None when nothing to patch"""
    if record is None:
        return None

    patch: Dict[str, Any] = {}
    if record.categories:
        patch["categories"] = record.categories
    if record.keywords:
        patch["keywords"] = record.keywords
    if record.rating is not None:
        patch["rating"] = record.rating
    if record.price_level is not None:
        patch["priceLevel"] = record.price_level
    if record.photos:
        patch["photos"] = record.photos
    if record.address or record.locality or record.region or record.country or record.postcode:
        patch["address"] = {
            "formatted": record.address,
            "locality": record.locality,
            "region": record.region,
            "country": record.country,
            "postcode": record.postcode,
        }
    if isinstance(record.open_now, bool):
        patch["openNow"] = record.open_now
    if record.hours_summary and record.hours_summary.strip():
        patch["hoursSummary"] = record.hours_summary.strip()
    if record.hours:
        patch["hours"] = record.hours
    if record.timezone and record.timezone.strip():
        patch["timezone"] = record.timezone.strip()
    if not patch:
        return None

    base = dict(existing) if isinstance(existing, dict) else {}
    discovery = dict(base.get("discovery") or {}) if isinstance(base.get("discovery"), dict) else {}
    if "address" in patch and isinstance(discovery.get("address"), dict):
        patch["address"] = {**discovery["address"], **patch["address"]}
    discovery.update(patch)
    base["discovery"] = discovery
    return base


def enrich_venue(
    db: Session,
    venue_id: str,
    foursquare_id: Optional[str] = None,
    google_place_id: Optional[str] = None,
    force: bool = False,
    provider_priority: Optional[Sequence[str]] = None,
) -> EnrichmentResult:
    """
    Fetch provider records for a venue, merge them and patch the venue row.

    A provider failure (including a missing API key) is recorded in the
    diagnostics and does not stop the other provider.
    """
    venue = db.get(Venue, venue_id)
    if venue is None:
        raise VenueNotFoundError(f"Venue {venue_id} not found.")

    diagnostics: List[str] = []
    records: List[ExternalVenueRecord] = []

    fetchers = []
    if foursquare_id:
        fetchers.append(("foursquare", fetch_foursquare_venue, foursquare_id))
    if google_place_id:
        fetchers.append(("google", fetch_google_place, google_place_id))

    for provider, fetch, provider_id in fetchers:
        try:
            record = fetch(db, provider_id, venue_id=venue_id, force=force)
        except ProviderError as e:
            logger.warning(f"Provider {provider} failed for venue {venue_id}: {e}")
            diagnostics.append(describe_provider_error(provider, e))
            continue
        if record is not None:
            records.append(record)
            diagnostics.append(f"{provider}:hit")
        else:
            diagnostics.append(f"{provider}:miss")

    merged = merge_external_venues(records, provider_priority=provider_priority)
    provider_description, provider_reviews = summarize_venue_text(merged)

    description = normalize_description(provider_description or venue.raw_description)
    reviews = normalize_reviews(provider_reviews or venue.raw_reviews)
    metadata = build_metadata_patch(venue.metadata_json, merged)

    refreshed = False
    if description and description != venue.raw_description:
        venue.raw_description = description
        refreshed = True
    if reviews and reviews != (venue.raw_reviews or []):
        venue.raw_reviews = reviews
        refreshed = True
    if merged is not None and merged.lat is not None and (venue.lat is None or force):
        venue.lat = merged.lat
        refreshed = True
    if merged is not None and merged.lng is not None and (venue.lng is None or force):
        venue.lng = merged.lng
        refreshed = True
    if metadata is not None:
        venue.metadata_json = metadata
        refreshed = True

    if refreshed:
        db.commit()
        db.refresh(venue)
        logger.info(f"Venue {venue_id} enriched from {len(records)} provider record(s)")

    return EnrichmentResult(venue, merged, diagnostics, refreshed)
