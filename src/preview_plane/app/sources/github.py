"""GitHub repository source.

Lists a branch's files through the git trees API and reads single files
through the contents API (raw media type). Only the root listing matters to
inspection, but the full recursive tree is returned so callers can count files.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from ..errors import RepositoryAccessError, TransientProviderError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"

_TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class GitHubRepositorySource:
    """RepositorySource backed by the GitHub REST API."""

    def __init__(
        self,
        *,
        token: str | None = None,
        api_url: str = DEFAULT_API_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient()
        self._timeout = float(timeout_seconds)

    def _headers(self, accept: str = "application/vnd.github+json") -> dict[str, str]:
        headers = {"Accept": accept, "X-GitHub-Api-Version": "2022-11-28"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get(
        self,
        path: str,
        *,
        params: dict[str, str] | None = None,
        accept: str = "application/vnd.github+json",
    ) -> httpx.Response:
        try:
            return await self._client.request(
                "GET",
                f"{self._api_url}{path}",
                params=params,
                headers=self._headers(accept),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransientProviderError(
                f"GitHub request timed out: {path}", operation="github"
            ) from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(
                f"GitHub request failed: {exc.__class__.__name__}", operation="github"
            ) from exc

    def _raise_for_status(self, resp: httpx.Response, owner_repo: str) -> None:
        if resp.status_code < 400:
            return
        if resp.status_code in _TRANSIENT_STATUS_CODES:
            raise TransientProviderError(
                f"GitHub returned {resp.status_code} for {owner_repo}",
                status_code=resp.status_code,
                operation="github",
            )
        raise RepositoryAccessError(
            f"GitHub returned {resp.status_code} for {owner_repo}",
            status_code=resp.status_code,
        )

    async def list_files(self, owner_repo: str, branch: str) -> list[str]:
        resp = await self._get(
            f"/repos/{owner_repo}/git/trees/{quote(branch, safe='')}",
            params={"recursive": "1"},
        )
        self._raise_for_status(resp, owner_repo)

        payload = resp.json()
        paths = [
            entry["path"]
            for entry in payload.get("tree", [])
            if entry.get("type") == "blob" and entry.get("path")
        ]
        if payload.get("truncated"):
            logger.warning(
                "GitHub tree listing truncated for %s@%s",
                owner_repo,
                branch,
                extra={"repo": owner_repo, "branch": branch},
            )
        return paths

    async def read_file(self, owner_repo: str, branch: str, path: str) -> str | None:
        """Return file text, or None when the file does not exist."""
        resp = await self._get(
            f"/repos/{owner_repo}/contents/{quote(path)}",
            params={"ref": branch},
            accept="application/vnd.github.raw",
        )
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, owner_repo)
        return resp.text
