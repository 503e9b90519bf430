"""
This module provides a thread-safe, TTL-bounded cache of address resolutions.

Entries live in memory and are written through to the local SQLite database so a
restart does not trigger a new round of lookups against the geocoding service.
"""
import logging
import sqlite3
import threading
import time
from typing import Callable, Dict, Optional

from .models import GeocodeCacheEntry, LocationKey
from .services.persistence_service import PersistenceService

logger = logging.getLogger(__name__)


class GeocodeCache:
    """Maps canonical address strings to location keys (or remembered failures)."""

    def __init__(
        self,
        positive_ttl: float,
        negative_ttl: float,
        db_path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            positive_ttl: Seconds a successful resolution stays valid.
            negative_ttl: Seconds a failed resolution stays valid. Should be
                shorter than positive_ttl so corrected addresses are retried.
            db_path: Optional SQLite database for write-through persistence.
            clock: Returns the current time in seconds; injectable for tests.
        """
        self.positive_ttl = positive_ttl
        self.negative_ttl = negative_ttl
        self.db_path = db_path
        self._clock = clock
        self._entries: Dict[str, GeocodeCacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, address: str) -> Optional[GeocodeCacheEntry]:
        """Returns the live entry for an address, or None if absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(address)
        if entry is None:
            entry = self._load(address)
            if entry is not None:
                with self._lock:
                    entry = self._entries.setdefault(address, entry)
        if entry is None:
            return None
        if entry.expires_at <= now:
            logger.debug(f"Geocode cache entry for '{address}' expired.")
            self._evict(entry)
            return None
        return entry

    def put(self, address: str, location_key: LocationKey) -> GeocodeCacheEntry:
        """Caches a successful resolution."""
        entry = GeocodeCacheEntry(
            address=address,
            location_key=location_key,
            expires_at=self._clock() + self.positive_ttl,
        )
        self._store(entry)
        return entry

    def put_negative(self, address: str, reason: str) -> GeocodeCacheEntry:
        """Caches a failed resolution so the upstream service is not asked again too soon."""
        entry = GeocodeCacheEntry(
            address=address,
            location_key=None,
            expires_at=self._clock() + self.negative_ttl,
            failure_reason=reason,
        )
        self._store(entry)
        return entry

    def invalidate(self, address: str) -> None:
        """Drops one entry, e.g. after a user corrected their address."""
        with self._lock:
            self._entries.pop(address, None)
        if self.db_path:
            try:
                with PersistenceService(self.db_path) as p:
                    p.delete_geocode_entry(address)
            except sqlite3.Error as e:
                logger.error(f"Failed to delete geocode cache entry for '{address}': {e}")

    def clear(self) -> None:
        """Drops every entry."""
        with self._lock:
            self._entries.clear()
        if self.db_path:
            try:
                with PersistenceService(self.db_path) as p:
                    p.clear_geocode_cache()
            except sqlite3.Error as e:
                logger.error(f"Failed to clear geocode cache: {e}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _store(self, entry: GeocodeCacheEntry) -> None:
        with self._lock:
            self._entries[entry.address] = entry
        if not self.db_path:
            return
        try:
            with PersistenceService(self.db_path) as p:
                p.upsert_geocode_entry(
                    entry.address,
                    str(entry.location_key) if entry.location_key else None,
                    entry.failure_reason,
                    entry.expires_at,
                )
        except sqlite3.Error as e:
            # The in-memory entry still serves this process.
            logger.error(f"Failed to persist geocode cache entry for '{entry.address}': {e}")

    def _evict(self, entry: GeocodeCacheEntry) -> None:
        """Drops an expired entry unless a newer one for the same address replaced it meanwhile."""
        with self._lock:
            if self._entries.get(entry.address) is entry:
                del self._entries[entry.address]
        if not self.db_path:
            return
        try:
            with PersistenceService(self.db_path) as p:
                p.delete_geocode_entry(entry.address, expires_no_later_than=entry.expires_at)
        except sqlite3.Error as e:
            logger.error(f"Failed to delete geocode cache entry for '{entry.address}': {e}")

    def _load(self, address: str) -> Optional[GeocodeCacheEntry]:
        if not self.db_path:
            return None
        try:
            with PersistenceService(self.db_path) as p:
                row = p.get_geocode_entry(address)
        except sqlite3.Error as e:
            logger.error(f"Failed to read geocode cache entry for '{address}': {e}")
            return None
        if row is None:
            return None
        try:
            location_key = LocationKey.parse(row["location_key"]) if row["location_key"] else None
        except ValueError:
            logger.warning(f"Discarding malformed geocode cache entry for '{address}'.")
            return None
        return GeocodeCacheEntry(
            address=row["address"],
            location_key=location_key,
            expires_at=row["expires_at"],
            failure_reason=row["failure_reason"],
        )
