#!/usr/bin/env python3
"""Discovery result cache backends (in-process LRU and persisted per tile)"""

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apps.discovery.models import PlaceTile
from apps.discovery.schemas import DiscoveryCacheEntry

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60
MAX_CACHE_ENTRIES = 30
MAX_CACHE_ITEMS = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_cache_entry(ttl_seconds: int = CACHE_TTL_SECONDS, now: Optional[datetime] = None, **fields) -> DiscoveryCacheEntry:
    """Stamp an entry with cached_at/expires_at and cap its items"""
    cached_at = now or _utcnow()
    items = list(fields.pop("items", []))[:MAX_CACHE_ITEMS]
    return DiscoveryCacheEntry(
        cached_at=cached_at,
        expires_at=cached_at + timedelta(seconds=ttl_seconds),
        items=items,
        **fields,
    )


class DiscoveryCache(ABC):
    """get/set/evict keyed by (geohash tile, full cache key)"""

    @abstractmethod
    def get(self, tile_key: str, cache_key: str) -> Optional[DiscoveryCacheEntry]:
        ...

    @abstractmethod
    def set(self, tile_key: str, cache_key: str, entry: DiscoveryCacheEntry) -> None:
        ...

    @abstractmethod
    def evict(self, tile_key: str, cache_key: Optional[str] = None) -> None:
        ...


class InMemoryDiscoveryCache(DiscoveryCache):
    """LRU bounded both by entry count and by total cached items"""

    def __init__(
        self,
        max_entries: int = MAX_CACHE_ENTRIES,
        max_items: int = MAX_CACHE_ITEMS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._entries: "OrderedDict[Tuple[str, str], DiscoveryCacheEntry]" = OrderedDict()
        self._max_entries = max_entries
        self._max_items = max_items
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_items(self) -> int:
        return sum(len(entry.items) for entry in self._entries.values())

    def get(self, tile_key: str, cache_key: str) -> Optional[DiscoveryCacheEntry]:
        key = (tile_key, cache_key)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        self._entries.move_to_end(key, last=True)
        return entry

    def set(self, tile_key: str, cache_key: str, entry: DiscoveryCacheEntry) -> None:
        key = (tile_key, cache_key)
        if len(entry.items) > self._max_items:
            entry = entry.model_copy(update={"items": entry.items[: self._max_items]})
        self._entries.pop(key, None)
        self._entries[key] = entry
        # Evict least recently used until both bounds hold
        while len(self._entries) > 1 and (
            len(self._entries) > self._max_entries or self.total_items > self._max_items
        ):
            self._entries.popitem(last=False)

    def evict(self, tile_key: str, cache_key: Optional[str] = None) -> None:
        if cache_key is not None:
            self._entries.pop((tile_key, cache_key), None)
            return
        for key in [key for key in self._entries if key[0] == tile_key]:
            self._entries.pop(key, None)


class TileDiscoveryCache(DiscoveryCache):
    """
    Cache persisted in place_tiles, one row per geohash6 tile.

    The row's JSON map holds up to MAX_CACHE_ENTRIES most recent entries.
    Any database failure is logged and treated as a miss.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = _utcnow):
        self.db = db
        self._clock = clock

    def _read_record(self, tile_key: str) -> Dict[str, dict]:
        tile = self.db.get(PlaceTile, tile_key)
        if tile is None or not isinstance(tile.discovery_cache, dict):
            return {}
        return dict(tile.discovery_cache)

    def get(self, tile_key: str, cache_key: str) -> Optional[DiscoveryCacheEntry]:
        try:
            record = self._read_record(tile_key)
        except SQLAlchemyError as e:
            logger.warning(f"Discovery cache read failed for tile {tile_key}: {e}")
            self.db.rollback()
            return None

        raw = record.get(cache_key)
        if not raw:
            return None
        try:
            entry = DiscoveryCacheEntry.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed discovery cache entry in tile {tile_key}: {e}")
            return None
        if entry.expires_at <= self._clock():
            return None
        return entry

    @staticmethod
    def _prune(record: Dict[str, dict]) -> Dict[str, dict]:
        """Newest entries first until MAX_CACHE_ENTRIES or MAX_CACHE_ITEMS total items would be exceeded"""
        ordered = sorted(record.items(), key=lambda pair: str((pair[1] or {}).get("cachedAt") or ""), reverse=True)
        kept: Dict[str, dict] = {}
        total_items = 0
        for cache_key, raw in ordered[:MAX_CACHE_ENTRIES]:
            size = len((raw or {}).get("items") or [])
            if kept and total_items + size > MAX_CACHE_ITEMS:
                break
            kept[cache_key] = raw
            total_items += size
        return kept

    def set(self, tile_key: str, cache_key: str, entry: DiscoveryCacheEntry) -> None:
        start_time = time.time()
        capped = entry.model_copy(update={"items": entry.items[:MAX_CACHE_ITEMS]})
        try:
            record = self._read_record(tile_key)
            record[cache_key] = capped.model_dump(mode="json", by_alias=True)
            self.db.merge(PlaceTile(geohash6=tile_key, discovery_cache=self._prune(record)))
            self.db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Discovery cache write failed for tile {tile_key}: {e}")
            self.db.rollback()
            return
        logger.debug(f"Discovery cache write for tile {tile_key} took {(time.time() - start_time) * 1000:.1f}ms")

    def evict(self, tile_key: str, cache_key: Optional[str] = None) -> None:
        try:
            tile = self.db.get(PlaceTile, tile_key)
            if tile is None:
                return
            if cache_key is None:
                tile.discovery_cache = {}
            else:
                record = dict(tile.discovery_cache or {})
                record.pop(cache_key, None)
                tile.discovery_cache = record
            self.db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Discovery cache evict failed for tile {tile_key}: {e}")
            self.db.rollback()
