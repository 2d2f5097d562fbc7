#!/usr/bin/env python3
"""Venue enrichment API"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from apps.core.db import get_db
from apps.venues.schemas import EnrichVenueRequest, EnrichVenueResponse, VenueOut
from apps.venues.services.enrichment import VenueNotFoundError, enrich_venue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/venues", tags=["venues"])


@router.post("/{venue_id}/enrich")
def enrich_venue_endpoint(
    venue_id: str,
    request: EnrichVenueRequest,
    db: Session = Depends(get_db),
):
    """
    Pull Foursquare and/or Google Places records for a venue and patch it.

    Provider failures are reported in providerDiagnostics rather than
    failing the request.
    """
    try:
        result = enrich_venue(
            db,
            venue_id,
            foursquare_id=request.foursquare_id,
            google_place_id=request.google_place_id,
            force=request.force,
            provider_priority=request.provider_priority,
        )
    except VenueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info(f"Enrich {venue_id}: refreshed={result.refreshed} diagnostics={result.provider_diagnostics}")
    response = EnrichVenueResponse(
        venue=VenueOut.model_validate(result.venue),
        external_record=result.external_record,
        provider_diagnostics=result.provider_diagnostics,
        refreshed=result.refreshed,
    )
    return response.model_dump(mode="json", by_alias=True)
