"""FlyProvider: ProviderControlAPI backed by Fly.io.

Wraps ``FlyClient`` raw payloads into ``App`` / ``Machine`` value objects.
One Fly app per preview; the app name is the preview instance name.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..errors import FatalProviderError, ProviderNotFoundError
from ..protocols import App, Machine
from .fly_client import FlyClient

logger = logging.getLogger(__name__)


def _machine_from_payload(payload: Mapping[str, Any]) -> Machine:
    return Machine(
        id=str(payload.get("id", "")),
        state=payload.get("state"),
        region=payload.get("region"),
    )


def _app_from_payload(payload: Mapping[str, Any]) -> App:
    nodes = ((payload.get("machines") or {}).get("nodes")) or []
    return App(
        name=payload.get("name", ""),
        id=payload.get("id"),
        status=payload.get("status"),
        machines=tuple(_machine_from_payload(node) for node in nodes),
    )


class FlyProvider:
    """ProviderControlAPI backed by the Fly.io APIs."""

    def __init__(
        self,
        client: FlyClient,
        *,
        organization_id: str = "personal",
        region: str | None = None,
    ) -> None:
        self._client = client
        self._organization_id = organization_id
        self._region = region

    async def create_or_get_app(self, name: str) -> App:
        existing = await self.get_app(name)
        if existing is not None:
            logger.info("Found existing Fly app: name=%s", name, extra={"app_name": name})
            return existing

        payload = await self._client.create_app(
            name,
            organization_id=self._organization_id,
            region=self._region,
        )
        return _app_from_payload(payload)

    async def get_app(self, name: str) -> App | None:
        payload = await self._client.get_app(name)
        if payload is None:
            return None
        return _app_from_payload(payload)

    async def set_secrets(self, name: str, secrets: Mapping[str, str]) -> None:
        if not secrets:
            return
        await self._client.set_secrets(name, secrets)
        logger.info(
            "Secrets set: app=%s count=%d",
            name,
            len(secrets),
            extra={"app_name": name},
        )

    async def allocate_network_identity(self, name: str) -> str | None:
        ip = await self._client.allocate_ip_address(name)
        return (ip or {}).get("address")

    async def create_machine(self, name: str, config: Mapping[str, Any]) -> Machine:
        payload = await self._client.create_machine(name, config)
        machine = _machine_from_payload(payload)
        if not machine.id:
            raise FatalProviderError(
                f"Fly.io did not return a machine id for {name!r}",
                operation="create_machine",
            )
        return machine

    async def start_machine(self, name: str, machine_id: str) -> None:
        await self._client.start_machine(name, machine_id)
        logger.info(
            "Machine started: app=%s machine=%s",
            name,
            machine_id,
            extra={"app_name": name, "machine_id": machine_id},
        )

    async def get_machine(self, name: str, machine_id: str) -> Machine:
        payload = await self._client.get_machine(name, machine_id)
        return _machine_from_payload(payload)

    async def get_machine_logs(
        self, name: str, machine_id: str, limit: int = 100,
    ) -> list[Any]:
        return await self._client.get_machine_logs(name, machine_id, limit=limit)

    async def delete_app(self, name: str) -> None:
        """Delete the app. Succeeds silently when it is already gone."""
        try:
            await self._client.delete_app(name)
        except ProviderNotFoundError:
            logger.info(
                "Fly app already deleted: name=%s",
                name,
                extra={"app_name": name},
            )
