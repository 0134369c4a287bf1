# DHIS2 SQL View MCP Server
# File: tests/test_client.py
# Version: v1

"""HTTP-level tests for Dhis2Client using httpx.MockTransport."""

from __future__ import annotations

from typing import List

import httpx
import pytest

from dhis2_sqlview_mcp.auth import Dhis2Session
from dhis2_sqlview_mcp.client import Dhis2Client, build_data_params
from dhis2_sqlview_mcp.config import Dhis2Config
from dhis2_sqlview_mcp.errors import (
    AuthenticationError,
    ForbiddenError,
    RemoteRequestError,
    ResourceNotFoundError,
    TransientError,
)
from dhis2_sqlview_mcp.models import ResourceKind


SESSION = Dhis2Session.basic("https://dhis.example.org", "admin", "district")


def _config(**overrides) -> Dhis2Config:
    config = Dhis2Config(
        base_url="https://dhis.example.org",
        username="admin",
        password="district",
        api_token=None,
        mock_mode=False,
        max_retries=2,
        retry_backoff_seconds=0.5,
    )
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _client(handler, **overrides) -> Dhis2Client:
    return Dhis2Client(
        config=_config(**overrides),
        transport=httpx.MockTransport(handler),
        sleep=RecordingSleep(),
    )


def test_build_data_params_repeats_var_and_criteria() -> None:
    params = build_data_params(
        parameters={"period": "202401", "level": 2},
        result_filters={"orgunit": "ImspTQPwCqd"},
        page=3,
        page_size=50,
    )
    assert params == [
        ("var", "period:202401"),
        ("var", "level:2"),
        ("criteria", "orgunit:ImspTQPwCqd"),
        ("page", "3"),
        ("pageSize", "50"),
    ]


def test_build_data_params_adds_format_for_non_json() -> None:
    assert build_data_params(fmt="csv")[0] == ("format", "csv")
    assert build_data_params(fmt="json") == []


@pytest.mark.asyncio
async def test_fetch_page_sends_expected_request() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"headers": [{"name": "a"}], "rows": [["1"]]})

    client = _client(handler)
    payload = await client.fetch_page(
        SESSION,
        "R1",
        parameters={"period": "202401"},
        result_filters={"level": "2"},
        page=2,
        page_size=50,
    )

    assert payload == {"headers": [{"name": "a"}], "rows": [["1"]]}
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/api/sqlViews/R1/data.json"
    assert request.url.params.get_list("var") == ["period:202401"]
    assert request.url.params.get_list("criteria") == ["level:2"]
    assert request.url.params["page"] == "2"
    assert request.url.params["pageSize"] == "50"
    assert request.headers["Authorization"] == "Basic YWRtaW46ZGlzdHJpY3Q="


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error_cls",
    [
        (401, AuthenticationError),
        (403, ForbiddenError),
        (404, ResourceNotFoundError),
        (400, RemoteRequestError),
        (409, RemoteRequestError),
    ],
)
async def test_fatal_statuses_are_not_retried(status, error_cls) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, text="nope")

    client = _client(handler)
    with pytest.raises(error_cls) as excinfo:
        await client.fetch_page(SESSION, "R1")

    assert len(calls) == 1
    assert excinfo.value.status_code == status
    assert excinfo.value.resource_id == "R1"
    assert excinfo.value.fatal is True
    assert f"HTTP {status}" in str(excinfo.value)


@pytest.mark.asyncio
async def test_transient_failure_is_retried_then_succeeds() -> None:
    responses = [
        httpx.Response(503, text="busy"),
        httpx.Response(429, text="slow down"),
        httpx.Response(200, json=[{"a": 1}]),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    client = _client(handler)
    payload = await client.fetch_page(SESSION, "R1")

    assert payload == [{"a": 1}]
    assert client.sleep.calls == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retries_exhausted_raises_transient() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502, text="bad gateway")

    client = _client(handler, max_retries=1)
    with pytest.raises(TransientError) as excinfo:
        await client.fetch_page(SESSION, "R1")

    assert len(calls) == 2
    assert excinfo.value.fatal is False
    assert excinfo.value.code == "TRANSIENT"


@pytest.mark.asyncio
async def test_network_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = _client(handler, max_retries=0)
    with pytest.raises(TransientError):
        await client.fetch_page(SESSION, "R1")


@pytest.mark.asyncio
async def test_invalid_json_body_yields_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>login</html>")

    client = _client(handler)
    assert await client.fetch_page(SESSION, "R1") is None


@pytest.mark.asyncio
async def test_prime_posts_and_swallows_errors() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/MV1/execute"):
            return httpx.Response(201, json={"status": "OK"})
        return httpx.Response(409, text="not a materialized view")

    client = _client(handler)
    assert await client.prime(SESSION, "MV1") is True
    assert await client.prime(SESSION, "V1") is False

    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/sqlViews/MV1/execute"


@pytest.mark.asyncio
async def test_ping_reports_health() -> None:
    def ok(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/system/info"
        return httpx.Response(200, json={"version": "2.40"})

    def down(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="down")

    assert await _client(ok).ping(SESSION) is True
    assert await _client(down).ping(SESSION) is False


@pytest.mark.asyncio
async def test_get_sql_view_parses_metadata() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/sqlViews/Q1"
        assert "sqlQuery" in request.url.params["fields"]
        return httpx.Response(
            200,
            json={
                "id": "Q1",
                "displayName": "Values by period",
                "type": "QUERY",
                "cacheStrategy": "NO_CACHE",
                "sqlQuery": "select * from datavalue where periodid = '${period}' and x = '${ou}'",
            },
        )

    resource = await _client(handler).get_sql_view(SESSION, "Q1")

    assert resource.id == "Q1"
    assert resource.kind is ResourceKind.PARAMETERIZED
    assert resource.declared_parameters == ["period", "ou"]
    assert resource.missing_parameters({"period": "202401"}) == ["ou"]


@pytest.mark.asyncio
async def test_list_sql_views_skips_junk_items() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["paging"] == "false"
        return httpx.Response(
            200,
            json={
                "sqlViews": [
                    {"id": "A", "name": "Org units", "type": "MATERIALIZED_VIEW"},
                    "junk",
                    {"id": "B", "name": "Elements", "type": "VIEW"},
                ]
            },
        )

    views = await _client(handler).list_sql_views(SESSION)
    assert [v.id for v in views] == ["A", "B"]
    assert views[0].kind is ResourceKind.MATERIALIZED
