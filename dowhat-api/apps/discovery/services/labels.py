"""Display labels for discovery items"""

from typing import Optional

UNNAMED_PLACE_LABEL = "Unnamed spot"


def normalize_place_label(*candidates: Optional[str]) -> str:
    """First non-blank candidate, trimmed; never empty"""
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return UNNAMED_PLACE_LABEL


def hydrate_place_label(
    place_name: Optional[str] = None,
    venue: Optional[str] = None,
    fallback_label: Optional[str] = None,
) -> str:
    return normalize_place_label(place_name, venue, fallback_label)
