# DHIS2 SQL View MCP Server
# File: tests/test_engine.py
# Version: v1

"""SqlViewEngine: cache hits, refresh, save, singleflight, error paths."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from dhis2_sqlview_mcp.auth import Dhis2Session
from dhis2_sqlview_mcp.cache import CacheStore
from dhis2_sqlview_mcp.engine import SqlViewEngine
from dhis2_sqlview_mcp.errors import AuthenticationError, TransientError
from dhis2_sqlview_mcp.models import ExecutionOptions, QueryResource, ResourceKind


SESSION = Dhis2Session(base_url="https://dhis.example.org", authorization="ApiToken t")


class FlatViewClient:
    """Serves ``total`` flat rows per view, counting every page request."""

    def __init__(self, total: int = 60, fail_first_page: Exception = None) -> None:
        self.total = total
        self.fail_first_page = fail_first_page
        self.fetches: List[Dict[str, Any]] = []
        self.gate: asyncio.Event = None

    async def prime(self, session, resource_id) -> bool:
        return False

    async def fetch_page(self, session, resource_id, parameters=None, result_filters=None,
                         page=1, page_size=1000, fmt="json"):
        self.fetches.append({"id": resource_id, "page": page, "parameters": dict(parameters or {})})
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_first_page is not None and page == 1:
            raise self.fail_first_page

        start = (page - 1) * page_size
        end = min(start + page_size, self.total)
        rows = [[str(i), f"name {i}"] for i in range(start, max(start, end))]
        return {"headers": [{"name": "uid"}, {"name": "name"}], "rows": rows}

    async def get_sql_view(self, session, resource_id):
        return QueryResource(id=resource_id, kind=ResourceKind.STATIC, raw_definition="select 1")

    async def list_sql_views(self, session):
        return [QueryResource(id="R1"), QueryResource(id="R2")]


async def _no_sleep(seconds: float) -> None:
    return None


def _engine(client, session=SESSION, **kwargs) -> SqlViewEngine:
    return SqlViewEngine(client, CacheStore(), session=session, sleep=_no_sleep, **kwargs)


@pytest.mark.asyncio
async def test_second_execution_is_served_from_cache() -> None:
    client = FlatViewClient(total=60)
    engine = _engine(client)

    first = await engine.execute("R1", ExecutionOptions(page_size=50))
    assert first.row_count == 60
    assert first.batch_count == 2
    assert first.from_cache is False
    assert len(client.fetches) == 2

    second = await engine.execute("R1", ExecutionOptions(page_size=50))
    assert second.from_cache is True
    assert second.execution_time_ms == 0
    assert second.rows == first.rows
    assert second.columns == first.columns
    assert len(client.fetches) == 2


@pytest.mark.asyncio
async def test_uncached_run_still_fills_the_cache() -> None:
    client = FlatViewClient(total=60)
    engine = _engine(client)

    first = await engine.execute("R1", ExecutionOptions(page_size=50, use_cache=False))
    assert first.row_count == 60
    assert first.batch_count == 2
    assert first.from_cache is False
    assert [f["page"] for f in client.fetches] == [1, 2]

    second = await engine.execute("R1", ExecutionOptions(page_size=50))
    assert second.from_cache is True
    assert second.execution_time_ms == 0
    assert second.row_count == 60
    assert second.batch_count == 2
    assert second.rows == first.rows
    assert len(client.fetches) == 2


@pytest.mark.asyncio
async def test_cached_result_is_isolated_from_caller_mutation() -> None:
    engine = _engine(FlatViewClient(total=5))

    first = await engine.execute("R1")
    first.rows[0]["name"] = "tampered"

    second = await engine.execute("R1")
    assert second.rows[0]["name"] == "name 0"


@pytest.mark.asyncio
async def test_different_parameters_are_separate_entries() -> None:
    client = FlatViewClient(total=5)
    engine = _engine(client)

    await engine.execute("R1", ExecutionOptions(parameters={"period": "202401"}))
    await engine.execute("R1", ExecutionOptions(parameters={"period": "202402"}))
    await engine.execute("R1", ExecutionOptions(parameters={"period": "202401"}))

    assert [f["parameters"]["period"] for f in client.fetches] == ["202401", "202402"]


@pytest.mark.asyncio
async def test_use_cache_false_bypasses_lookup() -> None:
    client = FlatViewClient(total=5)
    engine = _engine(client)

    await engine.execute("R1")
    result = await engine.execute("R1", ExecutionOptions(use_cache=False))

    assert result.from_cache is False
    assert len(client.fetches) == 2


@pytest.mark.asyncio
async def test_refresh_overwrites_cached_entry() -> None:
    client = FlatViewClient(total=5)
    engine = _engine(client)

    await engine.execute("R1")
    client.total = 7
    refreshed = await engine.refresh("R1")
    assert refreshed.row_count == 7
    assert refreshed.from_cache is False

    cached = await engine.execute("R1")
    assert cached.from_cache is True
    assert cached.row_count == 7


@pytest.mark.asyncio
async def test_invalidate_forces_refetch() -> None:
    client = FlatViewClient(total=5)
    engine = _engine(client)

    await engine.execute("R1", ExecutionOptions(parameters={"period": "A"}))
    await engine.execute("R1", ExecutionOptions(parameters={"period": "B"}))
    await engine.execute("R2")

    assert engine.invalidate("R1") == 2
    assert engine.invalidate("R1") == 0

    await engine.execute("R1", ExecutionOptions(parameters={"period": "A"}))
    await engine.execute("R2")
    assert len(client.fetches) == 4


@pytest.mark.asyncio
async def test_save_and_get_saved_survive_invalidate() -> None:
    engine = _engine(FlatViewClient(total=3))

    result = await engine.execute("R1")
    key = engine.save("R1", result, label="Snapshot", notes="before import")
    assert key.startswith("saved_")

    engine.invalidate("R1")
    saved = engine.get_saved(key)
    assert saved is not None
    assert saved.from_cache is True
    assert saved.rows == result.rows

    assert engine.get_saved("saved_missing") is None


@pytest.mark.asyncio
async def test_zero_ttl_is_not_cached() -> None:
    client = FlatViewClient(total=3)
    engine = _engine(client)

    await engine.execute("R1", ExecutionOptions(cache_ttl_minutes=0))
    await engine.execute("R1", ExecutionOptions(cache_ttl_minutes=0))

    assert len(client.fetches) == 2
    assert len(engine.cache) == 0


@pytest.mark.asyncio
async def test_cancelled_execution_is_not_cached() -> None:
    client = FlatViewClient(total=3)
    engine = _engine(client)
    cancel = asyncio.Event()
    cancel.set()

    result = await engine.execute("R1", cancel_event=cancel)
    assert result.cancelled is True
    assert result.row_count == 0
    assert len(engine.cache) == 0


@pytest.mark.asyncio
async def test_partial_result_is_returned_and_cached() -> None:
    class FlakySecondPage(FlatViewClient):
        async def fetch_page(self, session, resource_id, parameters=None, result_filters=None,
                             page=1, page_size=1000, fmt="json"):
            if page == 2:
                self.fetches.append({"id": resource_id, "page": page, "parameters": {}})
                raise TransientError("HTTP 503", status_code=503)
            return await super().fetch_page(session, resource_id, parameters, result_filters,
                                            page, page_size, fmt)

    engine = _engine(FlakySecondPage(total=60))
    result = await engine.execute("R1", ExecutionOptions(page_size=50))

    assert result.partial is True
    assert result.row_count == 50
    assert isinstance(result.error, TransientError)

    cached = await engine.execute("R1", ExecutionOptions(page_size=50))
    assert cached.from_cache is True
    assert cached.partial is True
    assert cached.error is None


@pytest.mark.asyncio
async def test_first_page_error_raises_and_caches_nothing() -> None:
    engine = _engine(FlatViewClient(fail_first_page=AuthenticationError("HTTP 401", status_code=401)))

    with pytest.raises(AuthenticationError):
        await engine.execute("R1")
    assert len(engine.cache) == 0


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch() -> None:
    client = FlatViewClient(total=5)
    client.gate = asyncio.Event()
    engine = _engine(client)

    tasks = [asyncio.ensure_future(engine.execute("R1")) for _ in range(3)]
    await asyncio.sleep(0)
    client.gate.set()
    results = await asyncio.gather(*tasks)

    assert len(client.fetches) == 1
    assert all(r.rows == results[0].rows for r in results)
    results[0].rows.clear()
    assert results[1].row_count == 5


@pytest.mark.asyncio
async def test_metadata_and_listing_pass_through() -> None:
    engine = _engine(FlatViewClient())

    resource = await engine.metadata("R9")
    assert resource.id == "R9"
    assert [r.id for r in await engine.list_resources()] == ["R1", "R2"]


@pytest.mark.asyncio
async def test_missing_session_is_reported() -> None:
    engine = _engine(FlatViewClient(), session=None)

    with pytest.raises(RuntimeError, match="No DHIS2 session"):
        await engine.execute("R1")

    result = await engine.execute("R1", session=SESSION)
    assert result.row_count == 60


@pytest.mark.asyncio
async def test_delete_saved_only_touches_saved_entries() -> None:
    engine = _engine(FlatViewClient(total=3))
    result = await engine.execute("R1")
    key = engine.save("R1", result)

    ephemeral = engine.cache.key("R1")
    assert engine.delete_saved(ephemeral) is False
    assert engine.cache.get(ephemeral) is not None

    assert engine.delete_saved(key) is True
    assert engine.get_saved(key) is None
    assert engine.delete_saved(key) is False


@pytest.mark.asyncio
async def test_prime_passes_through_to_client() -> None:
    class PrimingClient(FlatViewClient):
        async def prime(self, session, resource_id) -> bool:
            self.fetches.append({"id": resource_id, "page": 0, "parameters": {}})
            return True

    client = PrimingClient()
    engine = _engine(client)

    assert await engine.prime("R1") is True
    assert client.fetches == [{"id": "R1", "page": 0, "parameters": {}}]
