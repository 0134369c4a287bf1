# DHIS2 SQL View MCP Server
# File: client.py
# Version: v1
"""Remote query client for DHIS2 SQL view APIs.

Implements:

- prime() via POST /api/sqlViews/<id>/execute (best effort)
- fetch_page() via GET /api/sqlViews/<id>/data.json
- get_sql_view() for per-view metadata
- list_sql_views() for discovery

The client holds no identity; every call takes a Dhis2Session.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import httpx
from httpx import RequestError

from .auth import Dhis2Session
from .config import Dhis2Config
from .errors import SqlViewError, TransientError, classify_status
from .models import QueryResource

logger = logging.getLogger(__name__)

_VIEW_FIELDS = "id,name,displayName,description,type,cacheStrategy,sqlQuery,lastUpdated"


def build_data_params(
    parameters: Optional[Mapping[str, Any]] = None,
    result_filters: Optional[Mapping[str, Any]] = None,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
    fmt: str = "json",
) -> List[Tuple[str, str]]:
    """Query pairs for the SQL view data endpoint.

    Variables use DHIS2's ``var=name:value`` form and filters
    ``criteria=column:value``; both may repeat.
    """
    params: List[Tuple[str, str]] = []

    if fmt and fmt != "json":
        params.append(("format", fmt))

    for name, value in (parameters or {}).items():
        params.append(("var", f"{name}:{value}"))

    for column, value in (result_filters or {}).items():
        params.append(("criteria", f"{column}:{value}"))

    if page:
        params.append(("page", str(int(page))))
    if page_size:
        params.append(("pageSize", str(int(page_size))))

    return params


@dataclass
class Dhis2Client:
    """Wrapper around the DHIS2 sqlViews API family."""

    config: Dhis2Config

    # Injected by tests (httpx.MockTransport); None means real network.
    transport: Optional[httpx.AsyncBaseTransport] = None

    # Awaited between retry attempts.
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _http_client(self) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {
            "timeout": self.config.request_timeout_seconds,
            "verify": self.config.verify_tls,
        }
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return httpx.AsyncClient(**kwargs)

    async def _request(
        self,
        method: str,
        session: Dhis2Session,
        path: str,
        *,
        what: str,
        resource_id: Optional[str] = None,
        params: Any = None,
    ) -> httpx.Response:
        """Single HTTP call with status classification. No retries here."""
        url = session.api_url(path)

        async with self._http_client() as http_client:
            try:
                response = await http_client.request(
                    method, url, headers=session.headers(), params=params
                )
            except RequestError as exc:
                # Timeouts are RequestErrors too.
                raise TransientError(
                    f"Error calling DHIS2 API to {what} at '{url}': {exc}",
                    url=url,
                    resource_id=resource_id,
                ) from exc

        if response.is_error:
            status = response.status_code
            body_preview = response.text[:500]
            raise classify_status(
                status,
                f"Failed to {what} from '{url}' (HTTP {status}). "
                f"Response snippet: {body_preview}",
                url=url,
                resource_id=resource_id,
            )

        return response

    # ------------------------------------------------------------------
    # Basic health
    # ------------------------------------------------------------------

    async def ping(self, session: Dhis2Session) -> bool:
        """Check that the instance answers /api/system/info."""
        try:
            await self._request("GET", session, "system/info", what="read system info")
        except SqlViewError as exc:
            logger.warning("DHIS2 ping failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # SQL view execution
    # ------------------------------------------------------------------

    async def prime(self, session: Dhis2Session, resource_id: str) -> bool:
        """Ask DHIS2 to (re)materialise a view before reading it.

        Plain views and query views do not support this, so any failure is
        logged and swallowed. Returns True when the call succeeded.
        """
        try:
            await self._request(
                "POST",
                session,
                f"sqlViews/{resource_id}/execute",
                what=f"execute SQL view '{resource_id}'",
                resource_id=resource_id,
            )
        except SqlViewError as exc:
            logger.warning(
                "Priming SQL view '%s' failed, continuing with data fetch: %s",
                resource_id,
                exc,
            )
            return False

        logger.debug("Primed SQL view '%s'", resource_id)
        return True

    async def fetch_page(
        self,
        session: Dhis2Session,
        resource_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
        result_filters: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        page_size: int = 1000,
        fmt: str = "json",
    ) -> Any:
        """Fetch one page of SQL view data and return the decoded payload.

        Transient failures are retried up to ``config.max_retries`` times
        with exponential backoff before being raised. Fatal errors are
        raised immediately. A body that is not valid JSON yields None.
        """
        params = build_data_params(parameters, result_filters, page, page_size, fmt)
        attempt = 0

        while True:
            try:
                response = await self._request(
                    "GET",
                    session,
                    f"sqlViews/{resource_id}/data.json",
                    what=f"fetch page {page} of SQL view '{resource_id}'",
                    resource_id=resource_id,
                    params=params,
                )
                break
            except TransientError as exc:
                if attempt >= self.config.max_retries:
                    raise
                delay = self.config.retry_backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.info(
                    "Transient failure on page %d of '%s' (attempt %d/%d), retrying in %.2fs: %s",
                    page,
                    resource_id,
                    attempt,
                    self.config.max_retries,
                    delay,
                    exc,
                )
                await self.sleep(delay)

        try:
            return response.json()
        except ValueError:
            logger.warning(
                "Page %d of SQL view '%s' is not valid JSON; treating as empty.",
                page,
                resource_id,
            )
            return None

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_sql_view(self, session: Dhis2Session, resource_id: str) -> QueryResource:
        """Fetch metadata (type, query text, cache strategy) for one view."""
        response = await self._request(
            "GET",
            session,
            f"sqlViews/{resource_id}",
            what=f"fetch metadata for SQL view '{resource_id}'",
            resource_id=resource_id,
            params={"fields": _VIEW_FIELDS},
        )

        data = response.json()
        if not isinstance(data, dict):
            raise SqlViewError(
                f"Unexpected response when fetching SQL view '{resource_id}': "
                f"expected JSON object, got {type(data).__name__}.",
                resource_id=resource_id,
            )

        return QueryResource.from_payload(data)

    async def list_sql_views(self, session: Dhis2Session) -> List[QueryResource]:
        """List all SQL views visible to the session."""
        response = await self._request(
            "GET",
            session,
            "sqlViews.json",
            what="list SQL views",
            params={"paging": "false", "fields": _VIEW_FIELDS},
        )

        data = response.json()
        raw_views = data.get("sqlViews") if isinstance(data, dict) else data

        views: List[QueryResource] = []
        if isinstance(raw_views, list):
            for item in raw_views:
                if not isinstance(item, dict):
                    continue
                views.append(QueryResource.from_payload(item))

        return views
