"""Async PostgREST client for the Supabase-backed record store.

Service-role access only. Filters are equality matches; ``None`` is sent as
``is.null`` as PostgREST requires.
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from .errors import SupabaseAuthError, SupabaseConflictError, SupabaseError

# Module-level shared client for connection pooling.
_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def _encode_match(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"is.{'true' if value else 'false'}"
    return f"eq.{value}"


def match_params(match: Mapping[str, Any] | None) -> dict[str, str]:
    """Encode ``{column: value}`` equality filters as PostgREST query params."""
    return {str(column): _encode_match(value) for column, value in (match or {}).items()}


class SupabaseClient:
    """Minimal async PostgREST client (service role)."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._supabase_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout_seconds = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()

    @property
    def base_rest_url(self) -> str:
        return f"{self._supabase_url}/rest/v1"

    def _headers(self, *, returning: bool = False) -> dict[str, str]:
        # Never log these headers.
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }
        if returning:
            headers["Prefer"] = "return=representation"
        return headers

    def _raise_for_error(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        message = resp.text
        code = details = None
        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get("message") or message
                code = payload.get("code")
                details = payload.get("details")
        except ValueError:
            pass

        err_cls: type[SupabaseError]
        if resp.status_code in (401, 403):
            err_cls = SupabaseAuthError
        elif resp.status_code == 409:
            err_cls = SupabaseConflictError
        else:
            err_cls = SupabaseError
        raise err_cls(
            status_code=resp.status_code,
            message=message,
            code=code,
            details=details,
        )

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any | None = None,
        returning: bool = False,
    ) -> list[dict[str, Any]]:
        resp = await self._client.request(
            method,
            f"{self.base_rest_url}/{table}",
            params=dict(params or {}),
            json=json,
            headers=self._headers(returning=returning),
            timeout=self._timeout_seconds,
        )
        self._raise_for_error(resp)
        payload = resp.json()
        if not isinstance(payload, list):
            raise SupabaseError(
                status_code=500,
                message=f"expected list response from {method} {table}",
            )
        return payload

    async def select(
        self,
        table: str,
        match: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        params = match_params(match)
        params["select"] = "*"
        if limit is not None:
            params["limit"] = str(int(limit))
        if order:
            params["order"] = order
        return await self._request("GET", table, params=params)

    async def insert(self, table: str, row: Mapping[str, Any]) -> list[dict[str, Any]]:
        return await self._request("POST", table, json=dict(row), returning=True)

    async def update(
        self,
        table: str,
        match: Mapping[str, Any],
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        if not match:
            raise ValueError("update requires at least one filter")
        return await self._request(
            "PATCH", table, params=match_params(match), json=dict(data), returning=True,
        )
