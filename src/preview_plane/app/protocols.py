"""Record store, provider and repository-source interfaces.

The orchestrator and app factory accept any implementation matching these
protocols: the in-memory ones for local dev and tests, Supabase / Fly.io /
GitHub adapters otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, runtime_checkable

from .provisioning.records import PreviewInstance
from .provisioning.state_machine import MACHINE_DEAD_STATES


# ── Provider value objects ───────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Machine:
    id: str
    state: str | None = None
    region: str | None = None


@dataclass(frozen=True, slots=True)
class App:
    name: str
    id: str | None = None
    status: str | None = None
    machines: tuple[Machine, ...] = ()

    @property
    def primary_machine(self) -> Machine | None:
        """First live machine, else the first machine, else None."""
        for machine in self.machines:
            if machine.state not in MACHINE_DEAD_STATES:
                return machine
        return self.machines[0] if self.machines else None


# ── Protocols ────────────────────────────────────────────────────────


@runtime_checkable
class PreviewRecordStore(Protocol):
    """Preview record persistence keyed by id, queryable by identity.

    ``insert`` raises ``DuplicatePreviewError`` when a record for the same
    ``(project_id, user_id)`` already exists.
    """

    async def get(self, record_id: str) -> PreviewInstance | None: ...
    async def find_by_identity(
        self, project_id: str, user_id: str | None,
    ) -> PreviewInstance | None: ...
    async def insert(self, record: PreviewInstance) -> PreviewInstance: ...
    async def update(self, record_id: str, **fields: Any) -> PreviewInstance | None: ...
    async def list_for_user(self, user_id: str | None) -> list[PreviewInstance]: ...


@runtime_checkable
class ProviderControlAPI(Protocol):
    """Remote compute control operations.

    Raises ``TransientProviderError`` for retryable failures,
    ``ProviderNotFoundError`` for missing resources and ``FatalProviderError``
    otherwise.
    """

    async def create_or_get_app(self, name: str) -> App: ...
    async def get_app(self, name: str) -> App | None: ...
    async def set_secrets(self, name: str, secrets: Mapping[str, str]) -> None: ...
    async def allocate_network_identity(self, name: str) -> str | None: ...
    async def create_machine(self, name: str, config: Mapping[str, Any]) -> Machine: ...
    async def start_machine(self, name: str, machine_id: str) -> None: ...
    async def get_machine(self, name: str, machine_id: str) -> Machine: ...
    async def get_machine_logs(
        self, name: str, machine_id: str, limit: int = 100,
    ) -> list[Any]: ...
    async def delete_app(self, name: str) -> None: ...


@runtime_checkable
class RepositorySource(Protocol):
    """Read-only access to a hosted repository at a branch."""

    async def list_files(self, owner_repo: str, branch: str) -> list[str]: ...
    async def read_file(
        self, owner_repo: str, branch: str, path: str,
    ) -> str | None: ...
