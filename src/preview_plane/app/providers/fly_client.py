"""Async HTTP client for the Fly.io platform APIs.

App lifecycle, secrets and IP allocation go through the GraphQL API; machine
operations go through the Machines REST API. Both authenticate with a static
bearer token that never leaves the server.

Failures are classified where they are caught:
  - timeouts, connection failures, 429 and 5xx -> ``TransientProviderError``
  - 404 and GraphQL ``NOT_FOUND`` -> ``ProviderNotFoundError``
  - any other 4xx or GraphQL error -> ``FatalProviderError``

The client does not retry. Retry policy belongs to the orchestrator.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..errors import (
    FatalProviderError,
    ProviderNotFoundError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_GRAPHQL_URL = "https://api.fly.io/graphql"
DEFAULT_MACHINES_URL = "https://api.machines.dev/v1"

_TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_GET_APP_QUERY = """
query GetApp($name: String!) {
  app(name: $name) {
    id
    name
    status
    machines(first: 10) {
      nodes {
        id
        state
        region
      }
    }
  }
}
"""

_CREATE_APP_MUTATION = """
mutation CreateApp($input: CreateAppInput!) {
  createApp(input: $input) {
    app {
      id
      name
      status
    }
  }
}
"""

_SET_SECRETS_MUTATION = """
mutation SetSecrets($input: SetSecretsInput!) {
  setSecrets(input: $input) {
    release {
      id
      version
      status
    }
  }
}
"""

_ALLOCATE_IP_MUTATION = """
mutation AllocateIPAddress($input: AllocateIPAddressInput!) {
  allocateIpAddress(input: $input) {
    ipAddress {
      id
      address
      type
    }
  }
}
"""

_DELETE_APP_MUTATION = """
mutation DeleteApp($appId: ID!) {
  deleteApp(appId: $appId) {
    organization {
      id
    }
  }
}
"""


# ── Module-level shared client ───────────────────────────────────

_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


# ── Client ───────────────────────────────────────────────────────


class FlyClient:
    """Async HTTP client for Fly.io GraphQL and Machines APIs."""

    def __init__(
        self,
        *,
        api_token: str,
        graphql_url: str = DEFAULT_GRAPHQL_URL,
        machines_url: str = DEFAULT_MACHINES_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not api_token:
            raise ValueError("api_token is required")

        self._api_token = api_token
        self._graphql_url = graphql_url
        self._machines_url = machines_url.rstrip("/")
        self._client = http_client or _get_shared_async_client()
        self._timeout = float(timeout_seconds)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_token}"}

    async def _send(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        json: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                url,
                headers=self._auth_headers(),
                json=json,
                params=params,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransientProviderError(
                f"Fly.io {operation} timed out", operation=operation
            ) from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(
                f"Fly.io {operation} failed: {exc.__class__.__name__}",
                operation=operation,
            ) from exc

    def _raise_for_status(self, resp: httpx.Response, *, operation: str) -> None:
        if resp.status_code < 400:
            return

        body = resp.text
        message = body[:200] if body else f"HTTP {resp.status_code}"

        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get("error", payload.get("message", message))
        except (ValueError, KeyError):
            pass

        if resp.status_code == 404:
            raise ProviderNotFoundError(message, operation=operation)
        if resp.status_code in _TRANSIENT_STATUS_CODES or resp.status_code >= 500:
            raise TransientProviderError(
                message, status_code=resp.status_code, operation=operation
            )
        raise FatalProviderError(
            message, status_code=resp.status_code, operation=operation
        )

    async def _graphql(
        self,
        query: str,
        variables: Mapping[str, Any],
        *,
        operation: str,
    ) -> dict[str, Any]:
        resp = await self._send(
            "POST",
            self._graphql_url,
            operation=operation,
            json={"query": query, "variables": dict(variables)},
        )
        self._raise_for_status(resp, operation=operation)

        payload = resp.json()
        errors = payload.get("errors") or []
        if errors:
            message = "; ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e)
                for e in errors
            )
            codes = {
                (e.get("extensions") or {}).get("code")
                for e in errors
                if isinstance(e, dict)
            }
            if "NOT_FOUND" in codes:
                raise ProviderNotFoundError(message, operation=operation)
            raise FatalProviderError(
                f"Fly.io GraphQL error: {message}", operation=operation
            )
        return payload.get("data") or {}

    # ── GraphQL API ──────────────────────────────────────────────

    async def get_app(self, name: str) -> dict[str, Any] | None:
        """Return app metadata (with its first machine), or None if missing."""
        try:
            data = await self._graphql(_GET_APP_QUERY, {"name": name}, operation="get_app")
        except ProviderNotFoundError:
            return None
        return data.get("app")

    async def create_app(
        self,
        name: str,
        *,
        organization_id: str,
        region: str | None = None,
    ) -> dict[str, Any]:
        app_input: dict[str, Any] = {"organizationId": organization_id, "name": name}
        if region:
            app_input["preferredRegion"] = region

        data = await self._graphql(
            _CREATE_APP_MUTATION, {"input": app_input}, operation="create_app"
        )
        app = (data.get("createApp") or {}).get("app")
        if not app:
            raise FatalProviderError(
                f"Fly.io did not return an app for {name!r}", operation="create_app"
            )
        logger.info("Fly app created: name=%s", name, extra={"app_name": name})
        return app

    async def set_secrets(self, name: str, secrets: Mapping[str, str]) -> dict[str, Any] | None:
        secret_list = [
            {"key": key, "value": str(value)} for key, value in sorted(secrets.items())
        ]
        data = await self._graphql(
            _SET_SECRETS_MUTATION,
            {"input": {"appId": name, "secrets": secret_list}},
            operation="set_secrets",
        )
        return (data.get("setSecrets") or {}).get("release")

    async def allocate_ip_address(self, name: str, *, ip_type: str = "v4") -> dict[str, Any] | None:
        data = await self._graphql(
            _ALLOCATE_IP_MUTATION,
            {"input": {"appId": name, "type": ip_type}},
            operation="allocate_ip_address",
        )
        return (data.get("allocateIpAddress") or {}).get("ipAddress")

    async def delete_app(self, name: str) -> None:
        await self._graphql(_DELETE_APP_MUTATION, {"appId": name}, operation="delete_app")
        logger.info("Fly app deleted: name=%s", name, extra={"app_name": name})

    # ── Machines API ─────────────────────────────────────────────

    async def create_machine(self, app_name: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        resp = await self._send(
            "POST",
            f"{self._machines_url}/apps/{app_name}/machines",
            operation="create_machine",
            json=dict(payload),
        )
        self._raise_for_status(resp, operation="create_machine")
        machine = resp.json()
        logger.info(
            "Fly machine created: app=%s machine=%s",
            app_name,
            machine.get("id"),
            extra={"app_name": app_name, "machine_id": machine.get("id")},
        )
        return machine

    async def start_machine(self, app_name: str, machine_id: str) -> None:
        resp = await self._send(
            "POST",
            f"{self._machines_url}/apps/{app_name}/machines/{machine_id}/start",
            operation="start_machine",
        )
        self._raise_for_status(resp, operation="start_machine")

    async def get_machine(self, app_name: str, machine_id: str) -> dict[str, Any]:
        resp = await self._send(
            "GET",
            f"{self._machines_url}/apps/{app_name}/machines/{machine_id}",
            operation="get_machine",
        )
        self._raise_for_status(resp, operation="get_machine")
        return resp.json()

    async def get_machine_logs(
        self, app_name: str, machine_id: str, *, limit: int = 100
    ) -> list[Any]:
        """Return recent log entries; a machine without logs yields ``[]``."""
        resp = await self._send(
            "GET",
            f"{self._machines_url}/apps/{app_name}/machines/{machine_id}/logs",
            operation="get_machine_logs",
            params={"limit": limit},
        )
        if resp.status_code == 404:
            return []
        self._raise_for_status(resp, operation="get_machine_logs")
        payload = resp.json()
        if isinstance(payload, list):
            return payload
        return (payload or {}).get("logs") or []
