# DHIS2 SQL View MCP Server
# File: tools/tasks.py
# Version: v1
#
# NOTE: This module is the single place where we define "business logic"
# that is exposed as MCP tools.  The stdio transport simply calls
# `register_tools(server)` to wire these up.

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from ..auth import Dhis2Session
from ..cache import SAVED_KEY_PREFIX, CacheStore
from ..client import Dhis2Client
from ..config import Dhis2Config
from ..engine import SqlViewEngine
from ..errors import ResourceNotFoundError, SqlViewError
from ..models import CanonicalResult, ExecutionOptions, QueryResource
from ..transform import apply_filters, paginate_rows, rows_to_csv, sort_rows, summarize_columns


_MAX_PAGE_SIZE = 50000
_MOCK_BASE_URL = "https://mock.dhis2.local"


# ---------------------------------------------------------------------------
# Internal helpers (env flags, shared cache/engine, mock client)
# ---------------------------------------------------------------------------


def _env_flag(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _make_error(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Small, LLM-friendly error shape used by diagnostics and partial results."""
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return err


def _cap_int(value: int, cap: int, min_value: int = 1) -> tuple[int, bool]:
    """Clamp an integer to [min_value, cap]. Returns (effective, cap_applied)."""
    try:
        v = int(value)
    except (TypeError, ValueError):
        v = min_value

    if v < min_value:
        v = min_value
        return v, True

    if cap > 0 and v > cap:
        return cap, True

    return v, False


_CACHE: CacheStore | None = None
_CACHE_SIGNATURE: tuple[int, str | None] | None = None

_ENGINE: SqlViewEngine | None = None
_ENGINE_SIGNATURE: tuple[Any, ...] | None = None


def _get_cache(cfg: Dhis2Config) -> CacheStore:
    """Lazily create (or re-create) the process-wide result cache."""
    global _CACHE, _CACHE_SIGNATURE

    signature = (int(cfg.cache_max_entries), cfg.cache_path)
    if _CACHE is None or _CACHE_SIGNATURE != signature:
        _CACHE = CacheStore(max_entries=signature[0], path=signature[1])
        _CACHE_SIGNATURE = signature
    return _CACHE


def _reset_state() -> None:
    """Forget the shared cache and engine (used by tests)."""
    global _CACHE, _CACHE_SIGNATURE, _ENGINE, _ENGINE_SIGNATURE
    _CACHE = None
    _CACHE_SIGNATURE = None
    _ENGINE = None
    _ENGINE_SIGNATURE = None


def _is_mock(cfg: Dhis2Config) -> bool:
    return cfg.mock_mode or _env_flag("DHIS2_MOCK_MODE", False)


def _make_session(cfg: Dhis2Config) -> Dhis2Session:
    if _is_mock(cfg):
        return Dhis2Session(base_url=cfg.base_url or _MOCK_BASE_URL)
    return Dhis2Session.from_config(cfg)


def _get_engine(cfg: Optional[Dhis2Config] = None) -> SqlViewEngine:
    """Return the shared engine, rebuilding it when config or client factory change.

    ``id(_make_client)`` is part of the signature so tests that monkeypatch
    the factory get a fresh engine wired to their fake client.
    """
    global _ENGINE, _ENGINE_SIGNATURE

    cfg = cfg or Dhis2Config.from_env()
    cache = _get_cache(cfg)
    signature = (
        id(_make_client),
        id(cache),
        cfg.base_url,
        _is_mock(cfg),
        cfg.max_pages,
        cfg.pacing_every,
        cfg.pacing_seconds,
    )
    if _ENGINE is None or _ENGINE_SIGNATURE != signature:
        _ENGINE = SqlViewEngine(
            client=_make_client(),
            cache=cache,
            session=_make_session(cfg),
            max_pages=cfg.max_pages,
            pacing_every=cfg.pacing_every,
            pacing_seconds=cfg.pacing_seconds,
        )
        _ENGINE_SIGNATURE = signature
    return _ENGINE


@dataclass
class _MockView:
    payload: Dict[str, Any]
    columns: List[str]
    rows: List[List[Any]]
    shape: str


def _mock_org_unit_rows() -> List[List[Any]]:
    levels = ["National", "Region", "District", "Facility"]
    return [
        [f"OU{i:05d}", f"Org unit {i}", levels[i % len(levels)], f"2024-0{1 + i % 9}-15"]
        for i in range(1, 121)
    ]


def _mock_data_element_rows() -> List[List[Any]]:
    value_types = ["NUMBER", "INTEGER", "TEXT", "BOOLEAN", "DATE"]
    return [
        [f"DE{i:05d}", f"Data element {i}", value_types[i % len(value_types)], i % 3 != 0]
        for i in range(1, 46)
    ]


def _mock_value_rows() -> List[List[Any]]:
    periods = ["202401", "202402", "202403"]
    return [
        [periods[i % len(periods)], f"DE{1 + i % 7:05d}", f"OU{1 + i % 11:05d}", float(10 * i)]
        for i in range(30)
    ]


class MockDhis2Client:
    """Small in-memory stand-in for Dhis2Client.

    Activated when DHIS2_MOCK_MODE is truthy. Each mock view answers in a
    different envelope shape so the normaliser is exercised end to end.
    """

    def __init__(self, config: Optional[Dhis2Config] = None) -> None:
        self._config = config
        self.fetch_calls: List[Dict[str, Any]] = []

        self._views: Dict[str, _MockView] = {
            "mockOrgUnits": _MockView(
                payload={
                    "id": "mockOrgUnits",
                    "name": "Organisation units (Mock)",
                    "description": "Materialized view over organisation units.",
                    "type": "MATERIALIZED_VIEW",
                    "cacheStrategy": "CACHE_1_HOUR",
                    "sqlQuery": "select uid, name, level, lastupdated from organisationunit",
                },
                columns=["uid", "name", "level", "lastupdated"],
                rows=_mock_org_unit_rows(),
                shape="grid",
            ),
            "mockDataElements": _MockView(
                payload={
                    "id": "mockDataElements",
                    "name": "Data elements (Mock)",
                    "description": "Plain view over data elements.",
                    "type": "VIEW",
                    "cacheStrategy": "RESPECT_SYSTEM_SETTING",
                    "sqlQuery": "select uid, name, valuetype, zeroissignificant from dataelement",
                },
                columns=["uid", "name", "valuetype", "zeroissignificant"],
                rows=_mock_data_element_rows(),
                shape="flat",
            ),
            "mockValuesByPeriod": _MockView(
                payload={
                    "id": "mockValuesByPeriod",
                    "name": "Data values by period (Mock)",
                    "description": "Query view filtered by a period variable.",
                    "type": "QUERY",
                    "cacheStrategy": "NO_CACHE",
                    "sqlQuery": "select * from datavalue where period = '${period}'",
                },
                columns=["period", "dataelement", "orgunit", "value"],
                rows=_mock_value_rows(),
                shape="wrapped",
            ),
        }

    async def ping(self, session: Dhis2Session) -> bool:
        return True

    async def prime(self, session: Dhis2Session, resource_id: str) -> bool:
        view = self._views.get(resource_id)
        return bool(view and view.payload["type"] == "MATERIALIZED_VIEW")

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
        self.fetch_calls.append({"resource_id": resource_id, "page": page, "page_size": page_size})

        view = self._views.get(resource_id)
        if view is None:
            raise ResourceNotFoundError(
                f"Unknown mock SQL view '{resource_id}'.", status_code=404, resource_id=resource_id
            )

        rows = view.rows
        if "period" in (parameters or {}) and "period" in view.columns:
            idx = view.columns.index("period")
            rows = [r for r in rows if str(r[idx]) == str(parameters["period"])]
        for column, value in (result_filters or {}).items():
            if column in view.columns:
                idx = view.columns.index(column)
                rows = [r for r in rows if str(r[idx]) == str(value)]

        start = (max(page, 1) - 1) * page_size
        chunk = [list(r) for r in rows[start:start + page_size]]

        if view.shape == "grid":
            return {
                "listGrid": {
                    "title": view.payload["name"],
                    "headers": [{"name": c, "column": c} for c in view.columns],
                    "rows": chunk,
                }
            }
        if view.shape == "flat":
            return {"headers": [{"name": c} for c in view.columns], "rows": chunk}
        return {"data": [dict(zip(view.columns, r)) for r in chunk]}

    async def get_sql_view(self, session: Dhis2Session, resource_id: str) -> QueryResource:
        view = self._views.get(resource_id)
        if view is None:
            raise ResourceNotFoundError(
                f"Unknown mock SQL view '{resource_id}'.", status_code=404, resource_id=resource_id
            )
        return QueryResource.from_payload(view.payload)

    async def list_sql_views(self, session: Dhis2Session) -> List[QueryResource]:
        return [QueryResource.from_payload(v.payload) for v in self._views.values()]


def _make_client(cfg: Optional[Dhis2Config] = None) -> Dhis2Client:
    """Create a Dhis2Client from environment variables.

    If DHIS2_MOCK_MODE is truthy, a lightweight in-process mock client
    is returned instead of a real HTTP client.

    Note: Callers should prefer invoking this with *no arguments* to keep
    unit tests monkeypatch-friendly (tests often replace _make_client with
    a no-arg lambda).
    """
    cfg = cfg or Dhis2Config.from_env()

    if _is_mock(cfg):
        return MockDhis2Client(config=cfg)  # type: ignore[return-value]

    return Dhis2Client(config=cfg)


def _resource_payload(resource: QueryResource) -> Dict[str, Any]:
    return {
        "id": resource.id,
        "name": resource.name,
        "description": resource.description,
        "kind": resource.kind.value if resource.kind else None,
        "cache_strategy": resource.cache_strategy,
        "declared_parameters": resource.declared_parameters,
    }


def _build_options(
    cfg: Dhis2Config,
    parameters: Optional[Dict[str, Any]],
    filters: Optional[Dict[str, str]],
    page_size: Optional[int],
    max_rows: Optional[int],
    use_cache: bool,
    cache_ttl_minutes: Optional[int],
    output_format: str,
) -> tuple[ExecutionOptions, Dict[str, Any]]:
    requested_max_rows = max_rows if max_rows is not None else cfg.max_rows
    effective_max_rows, cap_applied = _cap_int(requested_max_rows, cfg.max_rows, min_value=1)
    effective_page_size, _ = _cap_int(
        page_size if page_size is not None else cfg.page_size, _MAX_PAGE_SIZE, min_value=1
    )
    ttl = cfg.cache_ttl_minutes if cache_ttl_minutes is None else int(cache_ttl_minutes)

    options = ExecutionOptions(
        parameters=dict(parameters or {}),
        result_filters=dict(filters or {}),
        page_size=effective_page_size,
        max_rows=effective_max_rows,
        use_cache=bool(use_cache),
        cache_ttl_minutes=ttl,
        output_format=(output_format or "json").lower(),
    )
    meta = {
        "requested_max_rows": requested_max_rows,
        "effective_max_rows": effective_max_rows,
        "cap_max_rows": cfg.max_rows,
        "cap_applied": bool(cap_applied),
        "page_size": effective_page_size,
        "cache_ttl_minutes": ttl,
    }
    return options, meta


def _result_payload(
    view_id: str,
    result: CanonicalResult,
    output_format: str = "json",
    meta: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "view_id": view_id,
        "columns": result.columns,
        "row_count": result.row_count,
        "batch_count": result.batch_count,
        "execution_time_ms": result.execution_time_ms,
        "from_cache": result.from_cache,
        "partial": result.partial,
        "cancelled": result.cancelled,
        "warning": None,
        "error": None,
        "meta": dict(meta or {}),
    }

    if output_format == "csv":
        out["csv"] = rows_to_csv(result.columns, result.rows)
    else:
        out["rows"] = result.rows

    if result.partial:
        out["warning"] = (
            f"Only {result.row_count} rows from {result.batch_count} pages were retrieved; "
            "a later page failed. The data may be incomplete."
        )
    if result.error is not None:
        code = result.error.code if isinstance(result.error, SqlViewError) else "ERROR"
        out["error"] = _make_error(code, str(result.error))

    return out


async def _check_parameters(
    engine: SqlViewEngine,
    view_id: str,
    parameters: Optional[Dict[str, Any]],
    meta: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    """Error payload when the view declares ${...} variables the caller left out."""
    resource = await engine.metadata(view_id)
    missing = resource.missing_parameters(parameters)
    if not missing:
        return None

    return {
        "view_id": view_id,
        "columns": [],
        "rows": [],
        "row_count": 0,
        "batch_count": 0,
        "execution_time_ms": 0,
        "from_cache": False,
        "partial": False,
        "cancelled": False,
        "warning": None,
        "error": _make_error(
            "MISSING_PARAMETERS",
            f"SQL view '{view_id}' needs values for: {', '.join(missing)}",
            {"missing": missing, "declared": resource.declared_parameters},
        ),
        "meta": dict(meta),
    }


# ---------------------------------------------------------------------------
# Core tools
# ---------------------------------------------------------------------------


async def ping() -> Dict[str, Any]:
    cfg = Dhis2Config.from_env()
    client = _make_client()
    ok = await client.ping(_make_session(cfg))
    return {"ok": bool(ok)}


async def list_sql_views() -> Dict[str, Any]:
    engine = _get_engine()
    views = await engine.list_resources()
    return {"sql_views": [_resource_payload(v) for v in views]}


async def get_sql_view(view_id: str) -> Dict[str, Any]:
    engine = _get_engine()
    resource = await engine.metadata(view_id)
    out = _resource_payload(resource)
    out["sql_query"] = resource.raw_definition
    out["raw"] = resource.raw
    return out


async def check_sql_view_access(view_id: str) -> Dict[str, Any]:
    """Can these credentials read the view? Also tries to prime it."""
    engine = _get_engine()
    try:
        resource = await engine.metadata(view_id)
    except SqlViewError as exc:
        return {
            "view_id": view_id,
            "accessible": False,
            "primed": False,
            "view": None,
            "error": _make_error(exc.code, str(exc), {"status_code": exc.status_code}),
        }

    primed = await engine.prime(view_id)
    return {
        "view_id": view_id,
        "accessible": True,
        "primed": bool(primed),
        "view": _resource_payload(resource),
        "error": None,
    }


async def execute_sql_view(
    view_id: str,
    parameters: Optional[Dict[str, Any]] = None,
    filters: Optional[Dict[str, str]] = None,
    page_size: Optional[int] = None,
    max_rows: Optional[int] = None,
    use_cache: bool = True,
    cache_ttl_minutes: Optional[int] = None,
    output_format: str = "json",
) -> Dict[str, Any]:
    cfg = Dhis2Config.from_env()
    options, meta = _build_options(
        cfg, parameters, filters, page_size, max_rows, use_cache, cache_ttl_minutes, output_format
    )

    engine = _get_engine(cfg)
    rejected = await _check_parameters(engine, view_id, options.parameters, meta)
    if rejected is not None:
        return rejected
    result = await engine.execute(view_id, options)
    return _result_payload(view_id, result, options.output_format, meta)


async def refresh_sql_view(
    view_id: str,
    parameters: Optional[Dict[str, Any]] = None,
    filters: Optional[Dict[str, str]] = None,
    page_size: Optional[int] = None,
    max_rows: Optional[int] = None,
    cache_ttl_minutes: Optional[int] = None,
    output_format: str = "json",
) -> Dict[str, Any]:
    cfg = Dhis2Config.from_env()
    options, meta = _build_options(
        cfg, parameters, filters, page_size, max_rows, False, cache_ttl_minutes, output_format
    )

    engine = _get_engine(cfg)
    rejected = await _check_parameters(engine, view_id, options.parameters, meta)
    if rejected is not None:
        return rejected
    result = await engine.refresh(view_id, options)
    return _result_payload(view_id, result, options.output_format, meta)


async def save_sql_view_result(
    view_id: str,
    label: Optional[str] = None,
    notes: Optional[str] = None,
    parameters: Optional[Dict[str, Any]] = None,
    filters: Optional[Dict[str, str]] = None,
    max_rows: Optional[int] = None,
) -> Dict[str, Any]:
    """Execute (cache first) and keep the result under a saved, non-expiring key."""
    cfg = Dhis2Config.from_env()
    options, meta = _build_options(cfg, parameters, filters, None, max_rows, True, None, "json")

    engine = _get_engine(cfg)
    result = await engine.execute(view_id, options)
    key = engine.save(
        view_id,
        result,
        label=label,
        notes=notes,
        parameters=options.parameters,
        result_filters=options.result_filters,
    )
    return {
        "key": key,
        "view_id": view_id,
        "label": label or f"SQL view {view_id}",
        "row_count": result.row_count,
        "partial": result.partial,
        "meta": meta,
    }


async def get_saved_result(key: str, output_format: str = "json") -> Dict[str, Any]:
    engine = _get_engine()
    result = engine.get_saved(key)
    if result is None:
        return {"key": key, "found": False}

    entry = engine.cache.get(key)
    out = _result_payload(entry.resource_id if entry else "", result, (output_format or "json").lower())
    out["key"] = key
    out["found"] = True
    if entry is not None:
        out["label"] = entry.label
        out["notes"] = entry.notes
    return out


async def delete_saved_result(key: str) -> Dict[str, Any]:
    if not key.startswith(SAVED_KEY_PREFIX):
        return {
            "key": key,
            "removed": False,
            "error": _make_error("NOT_SAVED_KEY", f"'{key}' is not a saved result key."),
        }

    engine = _get_engine()
    return {"key": key, "removed": engine.delete_saved(key)}


async def list_cached_results(view_id: Optional[str] = None) -> Dict[str, Any]:
    engine = _get_engine()
    engine.purge_expired()
    entries = engine.cache.entries(view_id)
    return {"entries": [e.summary() for e in entries], "stats": engine.cache.stats()}


async def invalidate_sql_view_cache(view_id: str) -> Dict[str, Any]:
    engine = _get_engine()
    removed = engine.invalidate(view_id)
    return {"view_id": view_id, "removed": removed}


async def purge_expired_cache() -> Dict[str, Any]:
    engine = _get_engine()
    removed = engine.purge_expired()
    return {"removed": removed, "stats": engine.cache.stats()}


async def browse_sql_view(
    view_id: str,
    parameters: Optional[Dict[str, Any]] = None,
    where: Optional[Dict[str, str]] = None,
    sort_by: Optional[str] = None,
    descending: bool = False,
    page: int = 1,
    rows_per_page: int = 50,
) -> Dict[str, Any]:
    """Client-side filter / sort / page over a (cached) SQL view result.

    ``where`` expressions run locally against the assembled rows, unlike
    ``filters`` on execute, which DHIS2 applies server-side.
    """
    cfg = Dhis2Config.from_env()
    options, meta = _build_options(cfg, parameters, None, None, None, True, None, "json")

    engine = _get_engine(cfg)
    result = await engine.execute(view_id, options)

    rows = apply_filters(result.rows, where)
    rows = sort_rows(rows, sort_by, descending=descending)
    rows_per_page, _ = _cap_int(rows_per_page, cfg.max_rows, min_value=1)
    paged = paginate_rows(rows, page=page, page_size=rows_per_page)

    meta.update({"matched_rows": len(rows), "total_rows": result.row_count, "from_cache": result.from_cache})
    return {
        "view_id": view_id,
        "columns": result.columns,
        "rows": paged["rows"],
        "pagination": paged["pagination"],
        "partial": result.partial,
        "meta": meta,
    }


async def summarize_sql_view(
    view_id: str,
    parameters: Optional[Dict[str, Any]] = None,
    filters: Optional[Dict[str, str]] = None,
    max_rows: Optional[int] = None,
) -> Dict[str, Any]:
    cfg = Dhis2Config.from_env()
    options, meta = _build_options(cfg, parameters, filters, None, max_rows, True, None, "json")

    engine = _get_engine(cfg)
    result = await engine.execute(view_id, options)

    return {
        "view_id": view_id,
        "row_count": result.row_count,
        "columns": summarize_columns(result.rows, result.columns),
        "partial": result.partial,
        "from_cache": result.from_cache,
        "meta": meta,
    }


# ---------------------------------------------------------------------------
# Diagnostics & identity helpers
# ---------------------------------------------------------------------------


def _collect_instance_info() -> Dict[str, Any]:
    """Redacted snapshot of instance / credential configuration from env."""
    cfg = Dhis2Config.from_env()

    host = None
    if cfg.base_url:
        host = urlparse(cfg.base_url).hostname or cfg.base_url

    return {
        "base_url": cfg.base_url,
        "host": host,
        "mock_mode": _is_mock(cfg),
        "verify_tls": bool(cfg.verify_tls),
        "auth": {
            "api_token_configured": bool(cfg.api_token),
            "username_configured": bool(cfg.username),
            "password_configured": bool(cfg.password),
        },
        "limits": {
            "page_size": cfg.page_size,
            "max_rows": cfg.max_rows,
            "max_pages": cfg.max_pages,
            "pacing_every": cfg.pacing_every,
            "pacing_seconds": cfg.pacing_seconds,
            "request_timeout_seconds": cfg.request_timeout_seconds,
            "max_retries": cfg.max_retries,
        },
        "cache_config": {
            "ttl_minutes": cfg.cache_ttl_minutes,
            "max_entries": cfg.cache_max_entries,
            "path_configured": bool(cfg.cache_path),
        },
    }


async def get_instance_info() -> Dict[str, Any]:
    return _collect_instance_info()


async def diagnostics() -> Dict[str, Any]:
    started = time.time()
    cfg = Dhis2Config.from_env()
    config_info = _collect_instance_info()

    cache = _get_cache(cfg)
    cache.purge_expired()

    checks: List[Dict[str, Any]] = []
    overall_ok = True

    # Client init
    t0 = time.time()
    try:
        client = _make_client()
        session = _make_session(cfg)
        checks.append(
            {"name": "client_init", "ok": True, "error": None, "elapsed_ms": int((time.time() - t0) * 1000)}
        )
    except RuntimeError as exc:
        checks.append(
            {
                "name": "client_init",
                "ok": False,
                "error": _make_error("CONFIG_ERROR", str(exc)),
                "elapsed_ms": int((time.time() - t0) * 1000),
            }
        )
        return {
            "ok": False,
            "mock_mode": config_info["mock_mode"],
            "config": config_info,
            "checks": checks,
            "meta": {"elapsed_ms": int((time.time() - started) * 1000), "cache": cache.stats()},
        }

    # Ping
    t0 = time.time()
    try:
        ok_ping = await client.ping(session)
        error = None if ok_ping else _make_error("BACKEND_ERROR", "Ping returned a falsy result.")
    except SqlViewError as exc:
        ok_ping = False
        error = _make_error("BACKEND_ERROR", str(exc))
    overall_ok = overall_ok and bool(ok_ping)
    checks.append(
        {"name": "ping", "ok": bool(ok_ping), "error": error, "elapsed_ms": int((time.time() - t0) * 1000)}
    )

    # List SQL views
    t0 = time.time()
    try:
        views = await client.list_sql_views(session)
        checks.append(
            {
                "name": "list_sql_views",
                "ok": True,
                "error": None,
                "elapsed_ms": int((time.time() - t0) * 1000),
                "details": {"view_count": len(views)},
            }
        )
    except SqlViewError as exc:
        overall_ok = False
        checks.append(
            {
                "name": "list_sql_views",
                "ok": False,
                "error": _make_error(exc.code, str(exc)),
                "elapsed_ms": int((time.time() - t0) * 1000),
            }
        )

    return {
        "ok": overall_ok,
        "mock_mode": config_info["mock_mode"],
        "config": config_info,
        "checks": checks,
        "meta": {"elapsed_ms": int((time.time() - started) * 1000), "cache": cache.stats()},
    }


# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------


def register_tools(server: Any) -> None:
    """Register MCP tools on an MCP Server-like instance."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(name="dhis2_ping", description="Basic health check for the DHIS2 instance.")
    async def mcp_ping() -> Dict[str, Any]:
        return await ping()

    @server.tool(name="dhis2_list_sql_views", description="List DHIS2 SQL views visible to these credentials.")
    async def mcp_list_sql_views() -> Dict[str, Any]:
        return await list_sql_views()

    @server.tool(
        name="dhis2_get_sql_view",
        description="Get metadata for a DHIS2 SQL view, including its type and declared ${variables}.",
    )
    async def mcp_get_sql_view(view_id: str) -> Dict[str, Any]:
        return await get_sql_view(view_id=view_id)

    @server.tool(
        name="dhis2_test_sql_view_access",
        description="Check that a SQL view exists and is readable, and try to prime it.",
    )
    async def mcp_check_sql_view_access(view_id: str) -> Dict[str, Any]:
        return await check_sql_view_access(view_id=view_id)

    @server.tool(
        name="dhis2_execute_sql_view",
        description=(
            "Execute a DHIS2 SQL view across as many pages as needed (bounded by max_rows), "
            "serving from cache when possible."
        ),
    )
    async def mcp_execute_sql_view(
        view_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        filters: Optional[Dict[str, str]] = None,
        page_size: Optional[int] = None,
        max_rows: Optional[int] = None,
        use_cache: bool = True,
        cache_ttl_minutes: Optional[int] = None,
        output_format: str = "json",
    ) -> Dict[str, Any]:
        return await execute_sql_view(
            view_id=view_id,
            parameters=parameters,
            filters=filters,
            page_size=page_size,
            max_rows=max_rows,
            use_cache=use_cache,
            cache_ttl_minutes=cache_ttl_minutes,
            output_format=output_format,
        )

    @server.tool(
        name="dhis2_refresh_sql_view",
        description="Re-execute a DHIS2 SQL view ignoring the cache and overwrite the cached result.",
    )
    async def mcp_refresh_sql_view(
        view_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        filters: Optional[Dict[str, str]] = None,
        page_size: Optional[int] = None,
        max_rows: Optional[int] = None,
        cache_ttl_minutes: Optional[int] = None,
        output_format: str = "json",
    ) -> Dict[str, Any]:
        return await refresh_sql_view(
            view_id=view_id,
            parameters=parameters,
            filters=filters,
            page_size=page_size,
            max_rows=max_rows,
            cache_ttl_minutes=cache_ttl_minutes,
            output_format=output_format,
        )

    @server.tool(
        name="dhis2_save_sql_view_result",
        description="Save a SQL view result under a named key that does not expire.",
    )
    async def mcp_save_sql_view_result(
        view_id: str,
        label: Optional[str] = None,
        notes: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        filters: Optional[Dict[str, str]] = None,
        max_rows: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await save_sql_view_result(
            view_id=view_id,
            label=label,
            notes=notes,
            parameters=parameters,
            filters=filters,
            max_rows=max_rows,
        )

    @server.tool(
        name="dhis2_delete_saved_result",
        description="Delete a saved SQL view result by key. Cached results are left alone.",
    )
    async def mcp_delete_saved_result(key: str) -> Dict[str, Any]:
        return await delete_saved_result(key=key)

    @server.tool(name="dhis2_get_saved_result", description="Load a previously saved SQL view result by key.")
    async def mcp_get_saved_result(key: str, output_format: str = "json") -> Dict[str, Any]:
        return await get_saved_result(key=key, output_format=output_format)

    @server.tool(
        name="dhis2_list_cached_results",
        description="List cached and saved SQL view results (without row data) plus cache statistics.",
    )
    async def mcp_list_cached_results(view_id: Optional[str] = None) -> Dict[str, Any]:
        return await list_cached_results(view_id=view_id)

    @server.tool(
        name="dhis2_invalidate_sql_view_cache",
        description="Drop all cached (not saved) results for a SQL view.",
    )
    async def mcp_invalidate_sql_view_cache(view_id: str) -> Dict[str, Any]:
        return await invalidate_sql_view_cache(view_id=view_id)

    @server.tool(name="dhis2_purge_expired_cache", description="Remove expired entries from the result cache.")
    async def mcp_purge_expired_cache() -> Dict[str, Any]:
        return await purge_expired_cache()

    @server.tool(
        name="dhis2_browse_sql_view",
        description="Filter, sort and page through a SQL view result locally (uses the cache).",
    )
    async def mcp_browse_sql_view(
        view_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        where: Optional[Dict[str, str]] = None,
        sort_by: Optional[str] = None,
        descending: bool = False,
        page: int = 1,
        rows_per_page: int = 50,
    ) -> Dict[str, Any]:
        return await browse_sql_view(
            view_id=view_id,
            parameters=parameters,
            where=where,
            sort_by=sort_by,
            descending=descending,
            page=page,
            rows_per_page=rows_per_page,
        )

    @server.tool(
        name="dhis2_summarize_sql_view",
        description="Profile each column of a SQL view result: inferred type, nulls, distinct values, min/max.",
    )
    async def mcp_summarize_sql_view(
        view_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        filters: Optional[Dict[str, str]] = None,
        max_rows: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await summarize_sql_view(
            view_id=view_id, parameters=parameters, filters=filters, max_rows=max_rows
        )

    @server.tool(name="dhis2_get_instance_info", description="Show redacted DHIS2 connection settings.")
    async def mcp_get_instance_info() -> Dict[str, Any]:
        return await get_instance_info()

    @server.tool(
        name="dhis2_diagnostics",
        description="Run health checks (client init, ping, list SQL views) and report cache statistics.",
    )
    async def mcp_diagnostics() -> Dict[str, Any]:
        return await diagnostics()
