"""Unit tests for the GitHub repository source (mocked httpx)."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from preview_plane.app.errors import RepositoryAccessError, TransientProviderError
from preview_plane.app.protocols import RepositorySource
from preview_plane.app.sources import GitHubRepositorySource


def _source(handler, **kwargs) -> tuple[GitHubRepositorySource, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    source = GitHubRepositorySource(
        api_url="https://api.github.test", http_client=http_client, **kwargs,
    )
    return source, http_client


@pytest.mark.asyncio
async def test_list_files_returns_blob_paths():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["params"] = dict(request.url.params)
        seen["headers"] = dict(request.headers)
        return httpx.Response(
            200,
            json={
                "tree": [
                    {"path": "package.json", "type": "blob"},
                    {"path": "src", "type": "tree"},
                    {"path": "src/index.js", "type": "blob"},
                ],
                "truncated": False,
            },
        )

    source, http_client = _source(handler)
    async with http_client:
        paths = await source.list_files("acme/web", "feature/x")

    assert isinstance(source, RepositorySource)
    assert paths == ["package.json", "src/index.js"]
    assert "/repos/acme/web/git/trees/feature%2Fx?" in seen["url"]
    assert seen["params"] == {"recursive": "1"}
    assert "authorization" not in seen["headers"]


@pytest.mark.asyncio
async def test_token_sent_when_configured():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"tree": []})

    source, http_client = _source(handler, token="ghp_test")
    async with http_client:
        assert await source.list_files("acme/web", "main") == []

    assert seen["auth"] == "Bearer ghp_test"


@pytest.mark.asyncio
async def test_read_file_returns_raw_text():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["accept"] = request.headers.get("accept")
        return httpx.Response(200, text='{"type": "node"}')

    source, http_client = _source(handler)
    async with http_client:
        text = await source.read_file("acme/web", "main", ".roseram/preview.json")

    assert text == '{"type": "node"}'
    assert seen["path"] == "/repos/acme/web/contents/.roseram/preview.json"
    assert seen["params"] == {"ref": "main"}
    assert seen["accept"] == "application/vnd.github.raw"


@pytest.mark.asyncio
async def test_read_missing_file_returns_none():
    source, http_client = _source(lambda request: httpx.Response(404, json={}))
    async with http_client:
        assert await source.read_file("acme/web", "main", ".roseram/preview.json") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403, 404, 422])
async def test_listing_errors_are_access_errors(status):
    source, http_client = _source(lambda request: httpx.Response(status, json={}))
    async with http_client:
        with pytest.raises(RepositoryAccessError) as exc_info:
            await source.list_files("acme/private", "main")

    assert exc_info.value.status_code == status


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 502, 503])
async def test_rate_limit_and_outages_are_transient(status):
    source, http_client = _source(lambda request: httpx.Response(status, json={}))
    async with http_client:
        with pytest.raises(TransientProviderError):
            await source.list_files("acme/web", "main")


@pytest.mark.asyncio
async def test_transport_failure_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    source, http_client = _source(handler)
    async with http_client:
        with pytest.raises(TransientProviderError):
            await source.read_file("acme/web", "main", "package.json")
