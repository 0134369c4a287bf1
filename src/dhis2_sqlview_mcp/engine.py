# DHIS2 SQL View MCP Server
# File: engine.py
# Version: v1

"""Execution facade: cache lookup, batch fetch, cache fill.

Per invocation the engine moves through
CACHE_LOOKUP -> CACHE_HIT, or CACHE_MISS -> PRIMING -> FETCHING -> DONE
(or PARTIAL_DONE / FAILED). Nothing survives an invocation except what it
put in the CacheStore.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .auth import Dhis2Session
from .batching import BatchOrchestrator
from .cache import SAVED_KEY_PREFIX, CacheStore
from .client import Dhis2Client
from .config import Dhis2Config
from .models import CanonicalResult, ExecutionOptions, QueryResource

logger = logging.getLogger(__name__)


class SqlViewEngine:
    """Single entry point for executing DHIS2 SQL views with caching.

    The cache store is injected so its lifecycle belongs to whoever builds
    the engine (once per process, or once per test).
    """

    def __init__(
        self,
        client: Dhis2Client,
        cache: CacheStore,
        session: Optional[Dhis2Session] = None,
        max_pages: int = 20,
        pacing_every: int = 5,
        pacing_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.cache = cache
        self.session = session
        self.max_pages = max_pages
        self.pacing_every = pacing_every
        self.pacing_seconds = pacing_seconds
        self._sleep = sleep
        self._inflight: Dict[Tuple[str, int, int], "asyncio.Task[CanonicalResult]"] = {}

    @classmethod
    def from_config(
        cls,
        config: Dhis2Config,
        client: Optional[Dhis2Client] = None,
        cache: Optional[CacheStore] = None,
        session: Optional[Dhis2Session] = None,
    ) -> "SqlViewEngine":
        return cls(
            client=client or Dhis2Client(config=config),
            cache=cache or CacheStore(max_entries=config.cache_max_entries, path=config.cache_path),
            session=session,
            max_pages=config.max_pages,
            pacing_every=config.pacing_every,
            pacing_seconds=config.pacing_seconds,
        )

    def _session(self, session: Optional[Dhis2Session]) -> Dhis2Session:
        resolved = session or self.session
        if resolved is None:
            raise RuntimeError(
                "No DHIS2 session supplied. Pass session=... or build the "
                "engine with a default session."
            )
        return resolved

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        resource_id: str,
        options: Optional[ExecutionOptions] = None,
        session: Optional[Dhis2Session] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CanonicalResult:
        """Execute a SQL view, serving from cache when a valid entry exists.

        A partial result (later page failed) is returned with ``partial``
        and ``error`` set, and is cached like a complete one. Errors on the
        first page are raised.
        """
        options = options or ExecutionOptions()
        key = self.cache.key(resource_id, options.parameters, options.result_filters)

        if options.use_cache:
            entry = self.cache.lookup(key)
            if entry is not None:
                logger.debug("Cache hit for '%s' (%s)", resource_id, key)
                result = entry.result.copy()
                result.from_cache = True
                result.execution_time_ms = 0
                return result

        # Concurrent misses on the same key and budgets share one fetch.
        flight = (key, options.page_size, options.max_rows)
        task = self._inflight.get(flight)
        if task is None:
            task = asyncio.ensure_future(
                self._fetch_and_store(resource_id, options, self._session(session), cancel_event)
            )
            self._inflight[flight] = task
            task.add_done_callback(lambda _t, f=flight: self._inflight.pop(f, None))
        else:
            logger.debug("Joining in-flight execution of '%s'", resource_id)

        result = await asyncio.shield(task)
        return result.copy()

    async def _fetch_and_store(
        self,
        resource_id: str,
        options: ExecutionOptions,
        session: Dhis2Session,
        cancel_event: Optional[asyncio.Event],
    ) -> CanonicalResult:
        orchestrator = BatchOrchestrator(
            self.client,
            session,
            max_pages=self.max_pages,
            pacing_every=self.pacing_every,
            pacing_seconds=self.pacing_seconds,
            sleep=self._sleep,
        )
        result = await orchestrator.run(QueryResource(id=resource_id), options, cancel_event)

        if result.cancelled:
            logger.info("Not caching cancelled execution of '%s'", resource_id)
        elif options.cache_ttl_minutes <= 0:
            logger.debug("Caching disabled for '%s' (ttl=%s)", resource_id, options.cache_ttl_minutes)
        else:
            entry = self.cache.new_entry(
                resource_id,
                result,
                parameters=options.parameters,
                result_filters=options.result_filters,
                ttl_minutes=options.cache_ttl_minutes,
            )
            self.cache.put(entry)

        logger.info(
            "Executed SQL view '%s': %d rows in %d batches (%dms)%s",
            resource_id,
            result.row_count,
            result.batch_count,
            result.execution_time_ms,
            " [partial]" if result.partial else "",
        )
        return result

    async def refresh(
        self,
        resource_id: str,
        options: Optional[ExecutionOptions] = None,
        session: Optional[Dhis2Session] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CanonicalResult:
        """Execute bypassing the cache; the fresh result overwrites the entry."""
        options = dataclasses.replace(options or ExecutionOptions(), use_cache=False)
        return await self.execute(resource_id, options, session=session, cancel_event=cancel_event)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def save(
        self,
        resource_id: str,
        result: CanonicalResult,
        label: Optional[str] = None,
        notes: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        result_filters: Optional[Dict[str, str]] = None,
    ) -> str:
        return self.cache.save(
            resource_id,
            result,
            label=label,
            notes=notes,
            parameters=parameters,
            result_filters=result_filters,
        )

    def get_saved(self, key: str) -> Optional[CanonicalResult]:
        entry = self.cache.lookup(key)
        if entry is None:
            return None
        result = entry.result.copy()
        result.from_cache = True
        result.execution_time_ms = 0
        return result

    def delete_saved(self, key: str) -> bool:
        """Delete a saved result. Keys outside the saved namespace are refused."""
        if not key.startswith(SAVED_KEY_PREFIX):
            return False
        return self.cache.remove(key)

    def invalidate(self, resource_id: str) -> int:
        return self.cache.invalidate(resource_id)

    def purge_expired(self) -> int:
        return self.cache.purge_expired()

    # ------------------------------------------------------------------
    # Metadata (read-through, not cached)
    # ------------------------------------------------------------------

    async def metadata(self, resource_id: str, session: Optional[Dhis2Session] = None) -> QueryResource:
        return await self.client.get_sql_view(self._session(session), resource_id)

    async def prime(self, resource_id: str, session: Optional[Dhis2Session] = None) -> bool:
        """Best-effort materialisation; False when DHIS2 refused it."""
        return await self.client.prime(self._session(session), resource_id)

    async def list_resources(self, session: Optional[Dhis2Session] = None) -> List[QueryResource]:
        return await self.client.list_sql_views(self._session(session))
