"""Unit tests for the Fly.io client and provider adapter (mocked httpx)."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from preview_plane.app.errors import (
    FatalProviderError,
    ProviderNotFoundError,
    TransientProviderError,
)
from preview_plane.app.protocols import App, Machine, ProviderControlAPI
from preview_plane.app.providers import FlyClient, FlyProvider

GRAPHQL_URL = "https://api.fly.test/graphql"
MACHINES_URL = "https://machines.fly.test/v1"


def _make_client(http_client) -> FlyClient:
    return FlyClient(
        api_token="fly-test-token",
        graphql_url=GRAPHQL_URL,
        machines_url=MACHINES_URL,
        http_client=http_client,
    )


def _mock_http(*responses: httpx.Response) -> AsyncMock:
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(side_effect=list(responses))
    return mock_http


# ── GraphQL ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_app_sends_graphql_query():
    mock_http = _mock_http(
        httpx.Response(200, json={"data": {"app": {"name": "preview-abc", "status": "deployed"}}})
    )
    client = _make_client(mock_http)

    app = await client.get_app("preview-abc")

    assert app["name"] == "preview-abc"
    call = mock_http.request.call_args
    assert call.args[0] == "POST"
    assert call.args[1] == GRAPHQL_URL
    assert call.kwargs["headers"]["Authorization"] == "Bearer fly-test-token"
    assert call.kwargs["json"]["variables"] == {"name": "preview-abc"}


@pytest.mark.asyncio
async def test_get_app_not_found_returns_none():
    mock_http = _mock_http(
        httpx.Response(
            200,
            json={"errors": [{"message": "Could not find App", "extensions": {"code": "NOT_FOUND"}}]},
        )
    )
    assert await _make_client(mock_http).get_app("preview-missing") is None


@pytest.mark.asyncio
async def test_graphql_error_is_fatal():
    mock_http = _mock_http(
        httpx.Response(200, json={"errors": [{"message": "Name has already been taken"}]})
    )
    with pytest.raises(FatalProviderError) as exc_info:
        await _make_client(mock_http).create_app("preview-abc", organization_id="org")
    assert "already been taken" in str(exc_info.value)


@pytest.mark.asyncio
async def test_create_app_sends_org_and_region():
    mock_http = _mock_http(
        httpx.Response(200, json={"data": {"createApp": {"app": {"id": "a1", "name": "preview-abc"}}}})
    )
    app = await _make_client(mock_http).create_app(
        "preview-abc", organization_id="org-1", region="iad",
    )

    assert app["id"] == "a1"
    variables = mock_http.request.call_args.kwargs["json"]["variables"]
    assert variables["input"] == {
        "organizationId": "org-1",
        "name": "preview-abc",
        "preferredRegion": "iad",
    }


@pytest.mark.asyncio
async def test_set_secrets_sends_sorted_key_values():
    mock_http = _mock_http(
        httpx.Response(200, json={"data": {"setSecrets": {"release": {"id": "r1"}}}})
    )
    await _make_client(mock_http).set_secrets("preview-abc", {"PORT": "3000", "BRANCH": "main"})

    variables = mock_http.request.call_args.kwargs["json"]["variables"]
    assert variables["input"]["appId"] == "preview-abc"
    assert variables["input"]["secrets"] == [
        {"key": "BRANCH", "value": "main"},
        {"key": "PORT", "value": "3000"},
    ]


# ── Machines API ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_machine_posts_payload():
    mock_http = _mock_http(httpx.Response(200, json={"id": "m1", "state": "created"}))
    payload = {"config": {"image": "node:20-alpine"}, "region": "iad"}

    machine = await _make_client(mock_http).create_machine("preview-abc", payload)

    assert machine["id"] == "m1"
    call = mock_http.request.call_args
    assert call.args[0] == "POST"
    assert call.args[1] == f"{MACHINES_URL}/apps/preview-abc/machines"
    assert call.kwargs["json"] == payload


@pytest.mark.asyncio
async def test_start_and_get_machine_urls():
    mock_http = _mock_http(
        httpx.Response(200, json={"ok": True}),
        httpx.Response(200, json={"id": "m1", "state": "started"}),
    )
    client = _make_client(mock_http)

    await client.start_machine("preview-abc", "m1")
    machine = await client.get_machine("preview-abc", "m1")

    urls = [call.args[1] for call in mock_http.request.call_args_list]
    assert urls == [
        f"{MACHINES_URL}/apps/preview-abc/machines/m1/start",
        f"{MACHINES_URL}/apps/preview-abc/machines/m1",
    ]
    assert machine["state"] == "started"


@pytest.mark.asyncio
async def test_get_machine_logs_sends_limit():
    entries = [{"message": "npm ERR! missing script: dev"}]
    mock_http = _mock_http(httpx.Response(200, json=entries))

    logs = await _make_client(mock_http).get_machine_logs("preview-abc", "m1", limit=50)

    assert logs == entries
    call = mock_http.request.call_args
    assert call.args[0] == "GET"
    assert call.args[1] == f"{MACHINES_URL}/apps/preview-abc/machines/m1/logs"
    assert call.kwargs["params"] == {"limit": 50}


@pytest.mark.asyncio
async def test_get_machine_logs_missing_machine_is_empty():
    mock_http = _mock_http(httpx.Response(404, json={"error": "not found"}))
    assert await _make_client(mock_http).get_machine_logs("preview-abc", "m1") == []


@pytest.mark.asyncio
async def test_get_machine_logs_unwraps_object_payload():
    mock_http = _mock_http(httpx.Response(200, json={"logs": [{"message": "ready"}]}))
    assert await _make_client(mock_http).get_machine_logs("preview-abc", "m1") == [
        {"message": "ready"}
    ]


@pytest.mark.asyncio
async def test_get_machine_logs_server_error_is_transient():
    mock_http = _mock_http(httpx.Response(503, text="unavailable"))
    with pytest.raises(TransientProviderError):
        await _make_client(mock_http).get_machine_logs("preview-abc", "m1")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
async def test_retryable_status_is_transient(status):
    mock_http = _mock_http(httpx.Response(status, json={"error": "busy"}))
    with pytest.raises(TransientProviderError) as exc_info:
        await _make_client(mock_http).get_machine("preview-abc", "m1")
    assert exc_info.value.status_code == status
    assert exc_info.value.operation == "get_machine"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 403, 422])
async def test_client_error_is_fatal(status):
    mock_http = _mock_http(httpx.Response(status, json={"error": "bad request"}))
    with pytest.raises(FatalProviderError) as exc_info:
        await _make_client(mock_http).create_machine("preview-abc", {})
    assert not isinstance(exc_info.value, ProviderNotFoundError)
    assert str(exc_info.value) == "bad request"


@pytest.mark.asyncio
async def test_404_is_not_found():
    mock_http = _mock_http(httpx.Response(404, text="not found"))
    with pytest.raises(ProviderNotFoundError):
        await _make_client(mock_http).get_machine("preview-abc", "m1")


@pytest.mark.asyncio
async def test_timeout_is_transient():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
    with pytest.raises(TransientProviderError):
        await _make_client(mock_http).start_machine("preview-abc", "m1")


@pytest.mark.asyncio
async def test_connection_error_is_transient():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(TransientProviderError):
        await _make_client(mock_http).get_app("preview-abc")


# ── Provider adapter ─────────────────────────────────────────────


def _graphql_handler(responses: dict[str, Any], seen: list[str]):
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.fly.test":
            body = json.loads(request.content)
            operation = body["query"].split("(")[0].split()[-1]
            seen.append(operation)
            return httpx.Response(200, json=responses[operation])
        seen.append(f"{request.method} {request.url.path}")
        return httpx.Response(200, json={"id": "m1", "state": "started", "region": "iad"})

    return handler


@pytest.mark.asyncio
async def test_provider_creates_app_when_missing():
    seen: list[str] = []
    responses = {
        "GetApp": {"data": {"app": None}},
        "CreateApp": {"data": {"createApp": {"app": {"id": "a1", "name": "preview-abc"}}}},
    }
    transport = httpx.MockTransport(_graphql_handler(responses, seen))
    async with httpx.AsyncClient(transport=transport) as http_client:
        provider = FlyProvider(_make_client(http_client), organization_id="org-1")
        app = await provider.create_or_get_app("preview-abc")

    assert isinstance(provider, ProviderControlAPI)
    assert app.name == "preview-abc"
    assert seen == ["GetApp", "CreateApp"]


@pytest.mark.asyncio
async def test_provider_reuses_existing_app():
    seen: list[str] = []
    responses = {
        "GetApp": {
            "data": {
                "app": {
                    "id": "a1",
                    "name": "preview-abc",
                    "status": "deployed",
                    "machines": {"nodes": [{"id": "m1", "state": "started"}]},
                }
            }
        },
    }
    transport = httpx.MockTransport(_graphql_handler(responses, seen))
    async with httpx.AsyncClient(transport=transport) as http_client:
        provider = FlyProvider(_make_client(http_client))
        app = await provider.create_or_get_app("preview-abc")

    assert seen == ["GetApp"]
    assert app.primary_machine.id == "m1"
    assert app.primary_machine.state == "started"


def test_primary_machine_skips_dead_machines():
    app = App(
        name="preview-abc",
        machines=(Machine(id="m1", state="destroyed"), Machine(id="m2", state="started")),
    )
    assert app.primary_machine.id == "m2"
    halted = App(name="preview-abc", machines=(Machine(id="m1", state="halted"),))
    assert halted.primary_machine.id == "m1"
    assert App(name="preview-abc").primary_machine is None


@pytest.mark.asyncio
async def test_provider_machine_round_trip():
    seen: list[str] = []
    transport = httpx.MockTransport(_graphql_handler({}, seen))
    async with httpx.AsyncClient(transport=transport) as http_client:
        provider = FlyProvider(_make_client(http_client))
        machine = await provider.create_machine("preview-abc", {"config": {}})
        await provider.start_machine("preview-abc", machine.id)
        polled = await provider.get_machine("preview-abc", machine.id)

    assert machine.id == "m1"
    assert polled.state == "started"
    assert seen == [
        "POST /v1/apps/preview-abc/machines",
        "POST /v1/apps/preview-abc/machines/m1/start",
        "GET /v1/apps/preview-abc/machines/m1",
    ]


@pytest.mark.asyncio
async def test_provider_allocates_address():
    seen: list[str] = []
    responses = {
        "AllocateIPAddress": {
            "data": {"allocateIpAddress": {"ipAddress": {"address": "1.2.3.4", "type": "v4"}}}
        },
    }
    transport = httpx.MockTransport(_graphql_handler(responses, seen))
    async with httpx.AsyncClient(transport=transport) as http_client:
        provider = FlyProvider(_make_client(http_client))
        assert await provider.allocate_network_identity("preview-abc") == "1.2.3.4"


@pytest.mark.asyncio
async def test_provider_skips_empty_secrets():
    mock_http = AsyncMock()
    provider = FlyProvider(_make_client(mock_http))

    await provider.set_secrets("preview-abc", {})

    mock_http.request.assert_not_called()


@pytest.mark.asyncio
async def test_provider_delete_missing_app_is_silent():
    mock_http = _mock_http(
        httpx.Response(
            200,
            json={"errors": [{"message": "not found", "extensions": {"code": "NOT_FOUND"}}]},
        )
    )
    provider = FlyProvider(_make_client(mock_http))

    await provider.delete_app("preview-gone")


@pytest.mark.asyncio
async def test_provider_delete_propagates_other_errors():
    mock_http = _mock_http(httpx.Response(503, text="unavailable"))
    provider = FlyProvider(_make_client(mock_http))

    with pytest.raises(TransientProviderError):
        await provider.delete_app("preview-abc")


@pytest.mark.asyncio
async def test_provider_create_machine_requires_id():
    mock_http = _mock_http(httpx.Response(200, json={"state": "created"}))
    provider = FlyProvider(_make_client(mock_http))

    with pytest.raises(FatalProviderError):
        await provider.create_machine("preview-abc", {})
