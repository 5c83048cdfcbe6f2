"""In-memory implementations for local development and tests.

Used when ENVIRONMENT=local. They satisfy the protocol interfaces but keep
everything in dicts (no persistence across restarts).
"""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from .errors import DuplicatePreviewError, ProviderNotFoundError
from .protocols import App, Machine
from .provisioning.records import PreviewInstance


class InMemoryPreviewRecordStore:
    """Record store mirroring the unique ``(project_id, user_id)`` index."""

    def __init__(self) -> None:
        self._records: dict[str, PreviewInstance] = {}

    async def get(self, record_id: str) -> PreviewInstance | None:
        record = self._records.get(record_id)
        return replace(record) if record else None

    async def find_by_identity(
        self, project_id: str, user_id: str | None,
    ) -> PreviewInstance | None:
        for record in self._records.values():
            if record.project_id == project_id and record.user_id == user_id:
                return replace(record)
        return None

    async def insert(self, record: PreviewInstance) -> PreviewInstance:
        if await self.find_by_identity(record.project_id, record.user_id):
            raise DuplicatePreviewError(record.project_id, record.user_id)
        self._records[record.id] = replace(record)
        return replace(record)

    async def update(self, record_id: str, **fields: Any) -> PreviewInstance | None:
        record = self._records.get(record_id)
        if record is None:
            return None
        fields.setdefault('updated_at', datetime.now(timezone.utc))
        updated = replace(record, **fields)
        self._records[record_id] = updated
        return replace(updated)

    async def list_for_user(self, user_id: str | None) -> list[PreviewInstance]:
        return [
            replace(record) for record in self._records.values()
            if record.user_id == user_id
        ]


class InMemoryProvider:
    """Scriptable provider that records every call.

    ``failures`` maps an operation name (``create_or_get_app``,
    ``create_machine``, ...) to exceptions raised on successive calls; once
    the queue is empty the operation succeeds. ``machine_states`` is the
    sequence ``get_machine`` reports, the last value repeating. ``machine_logs``
    maps a machine id to the entries ``get_machine_logs`` returns.
    """

    def __init__(
        self,
        *,
        failures: Mapping[str, Iterable[BaseException]] | None = None,
        machine_states: Iterable[str] = ('started',),
        region: str = 'iad',
    ) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.apps: dict[str, App] = {}
        self.secrets: dict[str, dict[str, str]] = {}
        self.machine_configs: dict[str, Mapping[str, Any]] = {}
        self.machine_logs: dict[str, list[Any]] = {}
        self._failures = {
            name: deque(errors) for name, errors in (failures or {}).items()
        }
        self._machine_states = list(machine_states) or ['started']
        self._state_reads: dict[str, int] = {}
        self._region = region
        self._ids = itertools.count(1)

    def fail(self, operation: str, *errors: BaseException) -> None:
        self._failures.setdefault(operation, deque()).extend(errors)

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    async def create_or_get_app(self, name: str) -> App:
        self._record('create_or_get_app', name)
        app = self.apps.get(name)
        if app is None:
            app = App(name=name, id=f'app_{next(self._ids)}', status='pending')
            self.apps[name] = app
        return self._live(app)

    async def get_app(self, name: str) -> App | None:
        self._record('get_app', name)
        app = self.apps.get(name)
        return self._live(app) if app is not None else None

    async def set_secrets(self, name: str, secrets: Mapping[str, str]) -> None:
        self._record('set_secrets', name, dict(secrets))
        self.secrets.setdefault(name, {}).update(secrets)

    async def allocate_network_identity(self, name: str) -> str | None:
        self._record('allocate_network_identity', name)
        return '127.0.0.1'

    async def create_machine(self, name: str, config: Mapping[str, Any]) -> Machine:
        self._record('create_machine', name, config)
        app = self._require_app(name)
        machine = Machine(id=f'm_{next(self._ids)}', state='created', region=self._region)
        self.machine_configs[machine.id] = config
        self.apps[name] = replace(app, machines=app.machines + (machine,))
        return machine

    async def start_machine(self, name: str, machine_id: str) -> None:
        self._record('start_machine', name, machine_id)
        self._require_machine(name, machine_id)

    async def get_machine(self, name: str, machine_id: str) -> Machine:
        self._record('get_machine', name, machine_id)
        machine = self._require_machine(name, machine_id)
        reads = self._state_reads.get(machine_id, 0)
        self._state_reads[machine_id] = reads + 1
        state = self._machine_states[min(reads, len(self._machine_states) - 1)]
        return replace(machine, state=state)

    async def get_machine_logs(
        self, name: str, machine_id: str, limit: int = 100,
    ) -> list[Any]:
        self._record('get_machine_logs', name, machine_id, limit)
        self._require_app(name)
        return list(self.machine_logs.get(machine_id, []))[-limit:]

    async def delete_app(self, name: str) -> None:
        self._record('delete_app', name)
        if self.apps.pop(name, None) is None:
            raise ProviderNotFoundError(f'app {name!r} not found', operation='delete_app')

    def _live(self, app: App) -> App:
        machines = tuple(
            replace(machine, state=self._peek_state(machine.id))
            for machine in app.machines
        )
        return replace(app, machines=machines)

    def _peek_state(self, machine_id: str) -> str:
        reads = self._state_reads.get(machine_id, 0)
        return self._machine_states[min(reads, len(self._machine_states) - 1)]

    def _require_app(self, name: str) -> App:
        app = self.apps.get(name)
        if app is None:
            raise ProviderNotFoundError(f'app {name!r} not found')
        return app

    def _require_machine(self, name: str, machine_id: str) -> Machine:
        for machine in self._require_app(name).machines:
            if machine.id == machine_id:
                return machine
        raise ProviderNotFoundError(f'machine {machine_id!r} not found')


class InMemoryRepositorySource:
    """Repository source backed by ``{owner_repo: {path: content}}``."""

    def __init__(self, repos: Mapping[str, Mapping[str, str]] | None = None) -> None:
        self._repos = {name: dict(files) for name, files in (repos or {}).items()}
        self.calls: list[tuple[str, ...]] = []

    def add_repo(self, owner_repo: str, files: Mapping[str, str]) -> None:
        self._repos[owner_repo] = dict(files)

    async def list_files(self, owner_repo: str, branch: str) -> list[str]:
        self.calls.append(('list_files', owner_repo, branch))
        return sorted(self._repos.get(owner_repo, {}))

    async def read_file(self, owner_repo: str, branch: str, path: str) -> str | None:
        self.calls.append(('read_file', owner_repo, branch, path))
        return self._repos.get(owner_repo, {}).get(path)
