# DHIS2 SQL View MCP Server
# File: cache.py
# Version: v1

"""In-process TTL + LRU cache for assembled SQL view results.

Entries live in two namespaces inside one store:

- ephemeral entries keyed by (view id, parameters, filters), TTL-bound and
  subject to LRU eviction when ``max_entries`` is exceeded;
- saved entries keyed by a random id, created by an explicit save, which
  never expire and are never evicted or invalidated.

Expiry is lazy: an entry found invalid on lookup is evicted right there.
``purge_expired`` sweeps everything at once for memory hygiene.

When ``path`` is set the store is loaded from (and written through to) a
JSON file so it survives a process restart. Bad entries in that file are
dropped, never fatal.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from .models import CacheEntry, CanonicalResult

logger = logging.getLogger(__name__)

SAVED_KEY_PREFIX = "saved_"


def _canonical(mapping: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    # URL parameters are strings on the wire, so 1 and "1" are the same query.
    return {str(k): "" if v is None else str(v) for k, v in (mapping or {}).items()}


def make_cache_key(
    resource_id: str,
    parameters: Optional[Mapping[str, Any]] = None,
    result_filters: Optional[Mapping[str, Any]] = None,
) -> str:
    """Deterministic key for a view + parameter set + filter set.

    Mapping order never affects the key.
    """
    options = json.dumps(
        {"filters": _canonical(result_filters), "parameters": _canonical(parameters)},
        sort_keys=True,
        separators=(",", ":"),
    )
    encoded = base64.urlsafe_b64encode(options.encode("utf-8")).decode("ascii")
    return f"{resource_id}_{encoded}"


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0


class CacheStore:
    """Result cache shared by all executions in one process."""

    def __init__(
        self,
        max_entries: int = 256,
        path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = int(max_entries)
        self.path = path
        self._clock = clock
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._stats = CacheStats()
        self._lock = threading.RLock()

        if self.path:
            self._load_file()

    # ------------------------------------------------------------------
    # Keys and entries
    # ------------------------------------------------------------------

    @staticmethod
    def key(
        resource_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
        result_filters: Optional[Mapping[str, Any]] = None,
    ) -> str:
        return make_cache_key(resource_id, parameters, result_filters)

    def new_entry(
        self,
        resource_id: str,
        result: CanonicalResult,
        parameters: Optional[Mapping[str, Any]] = None,
        result_filters: Optional[Mapping[str, Any]] = None,
        ttl_minutes: Optional[float] = 60,
        label: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CacheEntry:
        """Build an entry stamped with the store's clock.

        ``ttl_minutes=None`` never expires; ``<= 0`` is born expired.
        """
        now = self._clock()
        if ttl_minutes is None:
            expires_at = None
        elif ttl_minutes <= 0:
            expires_at = now
        else:
            expires_at = now + float(ttl_minutes) * 60.0

        return CacheEntry(
            key=self.key(resource_id, parameters, result_filters),
            resource_id=resource_id,
            parameters=dict(parameters or {}),
            result_filters=dict(result_filters or {}),
            result=_stored_copy(result),
            created_at=now,
            expires_at=expires_at,
            label=label or f"SQL view {resource_id}",
            notes=notes,
        )

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return a copy of the entry for ``key`` without validity checks."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            self._store.move_to_end(key)
            return _entry_copy(entry)

    def is_valid(self, entry: CacheEntry) -> bool:
        """True if the entry has not expired; evicts it otherwise."""
        if entry.expires_at is None or self._clock() < entry.expires_at:
            return True

        with self._lock:
            stored = self._store.get(entry.key)
            # A newer put under the same key must survive a stale copy's check.
            if stored is not None and stored.created_at == entry.created_at:
                del self._store[entry.key]
                self._stats.expirations += 1
                logger.debug("Cache expired for %s", entry.key)
                self._persist()
        return False

    def lookup(self, key: str) -> Optional[CacheEntry]:
        """get + is_valid, counting hits and misses."""
        with self._lock:
            entry = self.get(key)
            if entry is None or not self.is_valid(entry):
                self._stats.misses += 1
                return None
            self._stats.hits += 1
            return entry

    def put(self, entry: CacheEntry) -> None:
        """Insert or overwrite the entry under ``entry.key``."""
        with self._lock:
            if entry.key in self._store:
                self._store.move_to_end(entry.key)
            self._store[entry.key] = _entry_copy(entry)
            self._stats.sets += 1
            self._evict_if_needed()
            self._persist()
        logger.debug("Cached SQL view result %s (%d rows)", entry.key, entry.result.row_count)

    def save(
        self,
        resource_id: str,
        result: CanonicalResult,
        label: Optional[str] = None,
        notes: Optional[str] = None,
        parameters: Optional[Mapping[str, Any]] = None,
        result_filters: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Store a named result that never expires; return its key."""
        entry = self.new_entry(
            resource_id,
            result,
            parameters=parameters,
            result_filters=result_filters,
            ttl_minutes=None,
            label=label,
            notes=notes,
        )
        entry.key = f"{SAVED_KEY_PREFIX}{uuid.uuid4().hex}"
        entry.saved = True
        self.put(entry)
        logger.info("Saved result of '%s' as %s", resource_id, entry.key)
        return entry.key

    def remove(self, key: str) -> bool:
        with self._lock:
            removed = self._store.pop(key, None) is not None
            if removed:
                self._persist()
        return removed

    def invalidate(self, resource_id: str) -> int:
        """Drop every ephemeral entry for ``resource_id``; return the count."""
        with self._lock:
            keys = [
                k
                for k, e in self._store.items()
                if e.resource_id == resource_id and not e.saved
            ]
            for k in keys:
                self._store.pop(k, None)
            if keys:
                self._stats.invalidations += len(keys)
                self._persist()

        if keys:
            logger.info("Invalidated %d cache entries for '%s'", len(keys), resource_id)
        return len(keys)

    def purge_expired(self) -> int:
        """Remove expired entries and return count removed."""
        with self._lock:
            now = self._clock()
            keys = [
                k
                for k, e in self._store.items()
                if e.expires_at is not None and e.expires_at <= now
            ]
            for k in keys:
                self._store.pop(k, None)
            if keys:
                self._stats.expirations += len(keys)
                self._persist()

        if keys:
            logger.info("Purged %d expired cache entries", len(keys))
        return len(keys)

    def entries(self, resource_id: Optional[str] = None) -> List[CacheEntry]:
        with self._lock:
            return [
                _entry_copy(e)
                for e in self._store.values()
                if resource_id is None or e.resource_id == resource_id
            ]

    def __len__(self) -> int:
        return len(self._store)

    def _evict_if_needed(self) -> None:
        if self.max_entries <= 0:
            return

        ephemeral = [k for k, e in self._store.items() if not e.saved]
        overflow = len(ephemeral) - self.max_entries
        for k in ephemeral[:max(overflow, 0)]:
            self._store.pop(k, None)
            self._stats.evictions += 1

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            saved = sum(1 for e in self._store.values() if e.saved)
            return {
                "max_entries": self.max_entries,
                "size": len(self._store),
                "saved": saved,
                "persistent": bool(self.path),
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "sets": self._stats.sets,
                "evictions": self._stats.evictions,
                "expirations": self._stats.expirations,
                "invalidations": self._stats.invalidations,
            }

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {k: e.to_dict() for k, e in self._store.items()}

    def load_dict(self, data: Mapping[str, Any]) -> int:
        """Merge serialised entries; bad or expired ones are dropped.

        Returns the number of entries loaded.
        """
        now = self._clock()
        loaded = 0
        with self._lock:
            for key, raw in data.items():
                try:
                    entry = CacheEntry.from_dict(raw)
                except (AttributeError, KeyError, TypeError, ValueError) as exc:
                    logger.warning("Dropping unreadable cache entry %s: %s", key, exc)
                    continue

                if entry.key != key:
                    logger.warning("Dropping cache entry with mismatched key %s", key)
                    continue
                if entry.expires_at is not None and entry.expires_at <= now:
                    continue

                self._store[key] = entry
                loaded += 1
            self._evict_if_needed()
        return loaded

    def _load_file(self) -> None:
        assert self.path is not None
        if not os.path.exists(self.path):
            return

        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load cache from %s: %s", self.path, exc)
            return

        if not isinstance(data, dict):
            logger.warning("Ignoring cache file %s: expected a JSON object", self.path)
            return

        loaded = self.load_dict(data)
        logger.info("Loaded %d cache entries from %s", loaded, self.path)

    def _persist(self) -> None:
        if not self.path:
            return

        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(
                    {k: e.to_dict() for k, e in self._store.items()},
                    fh,
                    default=str,
                )
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.warning("Failed to save cache to %s: %s", self.path, exc)


def _stored_copy(result: CanonicalResult) -> CanonicalResult:
    stored = result.copy()
    stored.from_cache = False
    stored.cancelled = False
    stored.error = None
    return stored


def _entry_copy(entry: CacheEntry) -> CacheEntry:
    return CacheEntry(
        key=entry.key,
        resource_id=entry.resource_id,
        parameters=dict(entry.parameters),
        result_filters=dict(entry.result_filters),
        result=_stored_copy(entry.result),
        created_at=entry.created_at,
        expires_at=entry.expires_at,
        label=entry.label,
        notes=entry.notes,
        saved=entry.saved,
    )
