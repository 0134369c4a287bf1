# DHIS2 SQL View MCP Server
# File: batching.py
# Version: v1

"""Batch orchestrator: page through a SQL view until the data runs out.

The loop only learns that there is no more data by observing a short (or
empty) page, so a final page of exactly ``page_size`` rows costs one extra
request that comes back empty. Callers rely on that empty page as the
end-of-data signal.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .auth import Dhis2Session
from .errors import SqlViewError
from .models import CanonicalResult, ExecutionOptions, QueryResource
from .normalize import normalize, project_rows

logger = logging.getLogger(__name__)


class PageSource(Protocol):
    """The subset of Dhis2Client the orchestrator needs."""

    async def prime(self, session: Dhis2Session, resource_id: str) -> bool: ...

    async def fetch_page(
        self,
        session: Dhis2Session,
        resource_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        result_filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        page_size: int = 1000,
        fmt: str = "json",
    ) -> Any: ...


class BatchOrchestrator:
    """Drive repeated page fetches and assemble one CanonicalResult."""

    def __init__(
        self,
        client: PageSource,
        session: Dhis2Session,
        max_pages: int = 20,
        pacing_every: int = 5,
        pacing_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.session = session
        self.max_pages = int(max_pages)
        self.pacing_every = int(pacing_every)
        self.pacing_seconds = float(pacing_seconds)
        self._sleep = sleep

    async def run(
        self,
        resource: QueryResource,
        options: ExecutionOptions,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CanonicalResult:
        """Fetch all pages of ``resource`` within the row and page budgets.

        Raises on any failure of page 1. A failure on a later page returns
        the rows assembled so far with ``partial=True`` and ``error`` set.
        Cancellation returns the rows so far with ``cancelled=True``.
        """
        started = time.time()
        page_size = options.page_size
        max_rows = options.max_rows

        await self.client.prime(self.session, resource.id)

        columns: List[str] = []
        rows: List[Dict[str, Any]] = []
        batches = 0
        page = 1
        partial = False
        cancelled = False
        error: Optional[SqlViewError] = None

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    "Execution of '%s' cancelled before page %d; keeping %d rows.",
                    resource.id,
                    page,
                    len(rows),
                )
                cancelled = True
                break

            try:
                payload = await self.client.fetch_page(
                    self.session,
                    resource.id,
                    parameters=options.parameters,
                    result_filters=options.result_filters,
                    page=page,
                    page_size=page_size,
                )
            except SqlViewError as exc:
                if batches == 0:
                    raise
                logger.warning(
                    "Page %d of '%s' failed; returning partial result of %d rows from %d batches: %s",
                    page,
                    resource.id,
                    len(rows),
                    batches,
                    exc,
                )
                partial = True
                error = exc
                break

            normalized = normalize(payload)
            batches += 1

            if not columns and normalized.columns:
                # Columns are fixed by the first page that reports any.
                columns = normalized.columns
                rows[:] = project_rows(rows, columns)
                batch_rows = normalized.rows
            else:
                batch_rows = project_rows(normalized.rows, columns)

            rows.extend(batch_rows)
            logger.debug(
                "Batch %d of '%s': %d rows (%s shape, total %d)",
                page,
                resource.id,
                len(batch_rows),
                normalized.shape,
                len(rows),
            )

            if len(batch_rows) < page_size:
                logger.debug("Reached end of data for '%s' (short page).", resource.id)
                break

            if len(rows) >= max_rows:
                logger.info("Reached maximum row limit %d for '%s'.", max_rows, resource.id)
                break

            if batches >= self.max_pages:
                logger.warning(
                    "Page ceiling %d reached for '%s'; stopping with %d rows.",
                    self.max_pages,
                    resource.id,
                    len(rows),
                )
                break

            page += 1

            # Pause between batches to avoid overwhelming the server.
            if self.pacing_every > 0 and batches % self.pacing_every == 0:
                logger.debug("Pausing %.2fs between batches.", self.pacing_seconds)
                await self._sleep(self.pacing_seconds)

        if len(rows) > max_rows:
            del rows[max_rows:]

        return CanonicalResult(
            columns=list(columns),
            rows=rows,
            execution_time_ms=int((time.time() - started) * 1000),
            from_cache=False,
            batch_count=batches,
            partial=partial,
            cancelled=cancelled,
            error=error,
        )
