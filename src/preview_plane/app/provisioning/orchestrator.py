"""Preview orchestrator: request, provision, inspect and tear down previews.

Lifecycle of one preview record:

  request_preview  -> record inserted as ``provisioning``; provisioning is
                      submitted to the task pool and the call returns.
  provision        -> up to ``max_attempts`` attempts. Each attempt:
                        a. create or reuse the remote app
                        b. push secrets                  (best effort)
                        c. allocate a public address     (best effort)
                        d. render boot script + machine config
                        e. create the machine, or reuse the app's live one
                        f. start it and poll until ``started``
                        g. record -> ``running`` with URL and port
                      A transient failure with attempts left moves the record
                      to ``detecting_environment`` and sleeps
                      ``retry_base_delay * attempt``. Anything else, or the
                      last transient failure, moves it to ``error``.
  destroy          -> best-effort remote delete; record -> ``stopped``.

Record writes go through the transition table, so a preview stopped while its
provisioning task is still running is never flipped back to ``running``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ..contracts.builder import build_contract
from ..contracts.runtime_contract import (
    CONTRACT_FILE_PATH,
    RuntimeContract,
    parse_contract_file,
)
from ..errors import (
    DuplicatePreviewError,
    ErrorClass,
    FatalProviderError,
    PreviewNotFoundError,
    PreviewRequestError,
    ProviderError,
    TransientProviderError,
    classify_error,
)
from ..inspection.repo_inspector import inspect
from ..observability.metrics import (
    PROVISION_ATTEMPTS_TOTAL,
    PROVISION_DURATION_SECONDS,
    PROVISION_RESULTS_TOTAL,
    PROVISIONS_IN_FLIGHT,
    TEARDOWN_FAILURES_TOTAL,
)
from ..settings import PreviewPlaneSettings
from . import boot_script
from .naming import build_instance_name, build_preview_url
from .records import PreviewInstance
from .state_machine import (
    DETECTING_ENVIRONMENT,
    ERROR,
    MACHINE_DEAD_STATES,
    MACHINE_READY_STATES,
    PROVISIONING,
    RUNNING,
    STOPPED,
    RemoteStatus,
    can_transition,
    map_machine_state,
    retry_message,
)
from .task_pool import ProvisioningTaskPool

if TYPE_CHECKING:
    from ..protocols import PreviewRecordStore, ProviderControlAPI, RepositorySource

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class PreviewIdentity:
    """Who a preview belongs to. One record exists per identity."""

    project_id: str
    user_id: str | None = None


@dataclass(frozen=True, slots=True)
class StatusReport:
    """A record together with a live read of its remote machine."""

    record: PreviewInstance
    remote_status: RemoteStatus | None
    remote_error: str | None = None

    def to_public_dict(self) -> dict[str, Any]:
        payload = self.record.to_public_dict()
        payload['remoteStatus'] = (
            self.remote_status.value if self.remote_status else None
        )
        payload['remoteError'] = self.remote_error
        return payload


@dataclass(frozen=True, slots=True)
class LogsReport:
    """Recent output of a preview's machine."""

    record: PreviewInstance
    machine_id: str | None
    logs: list[Any]
    error: str | None = None

    def to_public_dict(self) -> dict[str, Any]:
        return {
            'id': self.record.id,
            'instanceName': self.record.instance_name,
            'machineId': self.machine_id,
            'logs': self.logs,
            'error': self.error,
        }


class PreviewOrchestrator:
    """Owns every status transition of preview records."""

    def __init__(
        self,
        *,
        store: PreviewRecordStore,
        provider: ProviderControlAPI,
        source: RepositorySource,
        settings: PreviewPlaneSettings | None = None,
        pool: ProvisioningTaskPool | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._provider = provider
        self._source = source
        self._settings = settings or PreviewPlaneSettings()
        self._pool = pool or ProvisioningTaskPool(
            self._settings.max_concurrent_provisions
        )
        self._sleep = sleep

    @property
    def pool(self) -> ProvisioningTaskPool:
        return self._pool

    # ── Request path ─────────────────────────────────────────────────

    async def request_preview(
        self,
        owner_repo: str,
        branch: str,
        identity: PreviewIdentity,
    ) -> PreviewInstance:
        """Return the preview for ``identity``, creating it if needed.

        A new record is returned in ``provisioning`` status; remote work runs
        in the background. An existing record is returned unchanged, whatever
        its status.

        Raises:
            PreviewRequestError: On a malformed repo, branch or project id.
        """
        record, _ = await self.ensure_preview(owner_repo, branch, identity)
        return record

    async def ensure_preview(
        self,
        owner_repo: str,
        branch: str,
        identity: PreviewIdentity,
    ) -> tuple[PreviewInstance, bool]:
        """Like ``request_preview`` but also report whether a record was created."""
        _validate_request(owner_repo, branch, identity)

        existing = await self._store.find_by_identity(
            identity.project_id, identity.user_id,
        )
        if existing is not None:
            logger.info(
                'Returning existing preview %s (status=%s)',
                existing.id,
                existing.status,
                extra={'record_id': existing.id, 'project_id': identity.project_id},
            )
            return existing, False

        owner, repo = owner_repo.split('/', 1)
        record = PreviewInstance(
            id=str(uuid.uuid4()),
            project_id=identity.project_id,
            user_id=identity.user_id,
            owner=owner,
            repo=repo,
            branch=branch,
            instance_name=build_instance_name(identity.user_id, identity.project_id),
            status=PROVISIONING,
        )

        try:
            record = await self._store.insert(record)
        except DuplicatePreviewError:
            winner = await self._store.find_by_identity(
                identity.project_id, identity.user_id,
            )
            if winner is None:
                raise
            logger.info(
                'Concurrent request for project %s; returning %s',
                identity.project_id,
                winner.id,
                extra={'record_id': winner.id, 'project_id': identity.project_id},
            )
            return winner, False

        logger.info(
            'Preview requested: %s@%s -> %s',
            owner_repo,
            branch,
            record.instance_name,
            extra={
                'record_id': record.id,
                'instance_name': record.instance_name,
                'project_id': record.project_id,
            },
        )
        self._pool.submit(record.id, lambda: self.provision(record))
        return record, True

    # ── Provisioning ─────────────────────────────────────────────────

    async def provision(self, record: PreviewInstance) -> PreviewInstance | None:
        """Drive ``record`` to ``running`` or ``error``.

        Returns the final record, or None when the record was stopped or
        deleted underneath the task. Never raises (cancellation aside).
        """
        PROVISIONS_IN_FLIGHT.inc()
        started = time.monotonic()
        final: PreviewInstance | None = None
        try:
            final = await self._provision_with_retry(record)
        except Exception:
            logger.exception(
                'Provisioning aborted for %s',
                record.instance_name,
                extra={'record_id': record.id, 'instance_name': record.instance_name},
            )
        finally:
            PROVISIONS_IN_FLIGHT.dec()
            status = final.status if final is not None else 'abandoned'
            PROVISION_RESULTS_TOTAL.labels(status=status).inc()
            PROVISION_DURATION_SECONDS.labels(status=status).observe(
                time.monotonic() - started
            )
        return final

    async def _provision_with_retry(
        self, record: PreviewInstance,
    ) -> PreviewInstance | None:
        max_attempts = self._settings.max_attempts
        contract: RuntimeContract | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                if contract is None:
                    contract = await self.resolve_contract(record)
                preview_url = await self._attempt(record, contract)
            except Exception as exc:
                error_class = classify_error(exc)
                PROVISION_ATTEMPTS_TOTAL.labels(outcome=error_class.value).inc()
                message = str(exc) or exc.__class__.__name__

                if error_class is ErrorClass.TRANSIENT and attempt < max_attempts:
                    logger.warning(
                        'Provisioning attempt %d/%d failed for %s: %s',
                        attempt,
                        max_attempts,
                        record.instance_name,
                        message,
                        extra={
                            'record_id': record.id,
                            'attempt': attempt,
                            'error_class': error_class.value,
                        },
                    )
                    updated = await self._transition(
                        record.id,
                        DETECTING_ENVIRONMENT,
                        error_message=retry_message(attempt + 1, max_attempts),
                    )
                    if updated is None:
                        return None
                    await self._sleep(self._settings.retry_base_delay * attempt)
                    continue

                logger.error(
                    'Provisioning failed for %s after %d attempt(s): %s',
                    record.instance_name,
                    attempt,
                    message,
                    extra={
                        'record_id': record.id,
                        'attempt': attempt,
                        'error_class': error_class.value,
                    },
                )
                return await self._transition(record.id, ERROR, error_message=message)

            PROVISION_ATTEMPTS_TOTAL.labels(outcome='success').inc()
            logger.info(
                'Preview running: %s at %s',
                record.instance_name,
                preview_url,
                extra={'record_id': record.id, 'attempt': attempt},
            )
            return await self._transition(
                record.id,
                RUNNING,
                preview_url=preview_url,
                port=contract.port,
                error_message=None,
            )
        return None

    async def resolve_contract(self, record: PreviewInstance) -> RuntimeContract:
        """Use the repository's committed contract, else inspect and generate one.

        Raises:
            ContractValidationError: If the committed contract is invalid.
        """
        text = await self._source.read_file(
            record.owner_repo, record.branch, CONTRACT_FILE_PATH,
        )
        if text is not None:
            logger.info(
                'Using committed contract for %s',
                record.owner_repo,
                extra={'record_id': record.id},
            )
            return parse_contract_file(text)

        paths = await self._source.list_files(record.owner_repo, record.branch)
        return build_contract(inspect(paths))

    async def _attempt(self, record: PreviewInstance, contract: RuntimeContract) -> str:
        name = record.instance_name
        settings = self._settings

        app = await self._provider.create_or_get_app(name)

        secrets = {
            **contract.env,
            'GITHUB_REPO': record.owner_repo,
            'BRANCH': record.branch,
            'PROJECT_ID': record.project_id,
            'PORT': str(contract.port),
        }
        try:
            await self._provider.set_secrets(name, secrets)
        except Exception as exc:
            logger.warning(
                'Could not set secrets for %s: %s',
                name,
                exc,
                extra={'record_id': record.id, 'instance_name': name},
            )

        try:
            await self._provider.allocate_network_identity(name)
        except Exception as exc:
            logger.warning(
                'Could not allocate address for %s: %s',
                name,
                exc,
                extra={'record_id': record.id, 'instance_name': name},
            )

        script = boot_script.build(record.owner_repo, record.branch, contract)
        config = boot_script.build_machine_config(
            script,
            contract,
            region=settings.fly_region,
            memory_mb=settings.machine_memory_mb,
            cpus=settings.machine_cpus,
        )

        machine = app.primary_machine
        if machine is None or machine.state in MACHINE_DEAD_STATES:
            machine = await self._provider.create_machine(name, config)
        else:
            # An earlier attempt or request already created this app's machine.
            logger.info(
                'Reusing machine %s for %s',
                machine.id,
                name,
                extra={'record_id': record.id, 'machine_id': machine.id},
            )
        if machine.state not in MACHINE_READY_STATES:
            await self._provider.start_machine(name, machine.id)
        await self._await_ready(name, machine.id)

        return build_preview_url(name, settings.preview_url_template)

    async def _await_ready(self, name: str, machine_id: str) -> None:
        polls = self._settings.readiness_poll_attempts
        for _ in range(polls):
            try:
                machine = await self._provider.get_machine(name, machine_id)
            except TransientProviderError as exc:
                logger.debug('Machine poll failed for %s: %s', name, exc)
            else:
                if machine.state in MACHINE_READY_STATES:
                    return
                if machine.state in MACHINE_DEAD_STATES:
                    raise FatalProviderError(
                        f'Machine in state: {machine.state}',
                        operation='get_machine',
                    )
            await self._sleep(self._settings.readiness_poll_interval)

        if polls:
            logger.warning(
                'Machine %s for %s not started after %d polls; assuming running',
                machine_id,
                name,
                polls,
                extra={'instance_name': name, 'machine_id': machine_id},
            )

    async def _transition(
        self, record_id: str, to_status: str, **fields: Any,
    ) -> PreviewInstance | None:
        current = await self._store.get(record_id)
        if current is None:
            logger.warning(
                'Preview %s disappeared during provisioning',
                record_id,
                extra={'record_id': record_id},
            )
            return None
        if not can_transition(current.status, to_status):
            logger.info(
                'Skipping %s -> %s for preview %s',
                current.status,
                to_status,
                record_id,
                extra={'record_id': record_id},
            )
            return None
        return await self._store.update(record_id, status=to_status, **fields)

    # ── Read paths ───────────────────────────────────────────────────

    async def get_status(self, record_id: str) -> PreviewInstance:
        """Return the stored record.

        Raises:
            PreviewNotFoundError: If no record has this id.
        """
        record = await self._store.get(record_id)
        if record is None:
            raise PreviewNotFoundError(record_id)
        return record

    async def remote_status(self, instance_name: str) -> RemoteStatus:
        """Read the remote machine state. Never mutates records."""
        app = await self._provider.get_app(instance_name)
        if app is None:
            return RemoteStatus.NOT_FOUND
        machine = app.primary_machine
        if machine is None:
            return RemoteStatus.PENDING
        return map_machine_state(machine.state)

    async def check_status(self, record_id: str) -> StatusReport:
        """Stored record plus a live remote read (the manual "check now" path)."""
        record = await self.get_status(record_id)
        try:
            remote = await self.remote_status(record.instance_name)
        except ProviderError as exc:
            logger.warning(
                'Remote status check failed for %s: %s',
                record.instance_name,
                exc,
                extra={'record_id': record_id},
            )
            return StatusReport(record=record, remote_status=None, remote_error=str(exc))
        return StatusReport(record=record, remote_status=remote)

    async def get_logs(self, record_id: str, limit: int = 100) -> LogsReport:
        """Fetch the latest ``limit`` log entries of the preview's machine.

        A crashed dev server keeps its machine alive, so this is how its
        output is read. Provider failures are reported, not raised.

        Raises:
            PreviewNotFoundError: If no record has this id.
        """
        record = await self.get_status(record_id)
        name = record.instance_name
        machine_id = None
        try:
            app = await self._provider.get_app(name)
            machine = app.primary_machine if app is not None else None
            if machine is None:
                return LogsReport(record=record, machine_id=None, logs=[])
            machine_id = machine.id
            logs = await self._provider.get_machine_logs(name, machine_id, limit)
        except ProviderError as exc:
            logger.warning(
                'Could not fetch logs for %s: %s',
                name,
                exc,
                extra={'record_id': record_id, 'instance_name': name},
            )
            return LogsReport(
                record=record, machine_id=machine_id, logs=[], error=str(exc),
            )
        return LogsReport(record=record, machine_id=machine_id, logs=logs)

    async def list_previews(self, user_id: str | None) -> list[PreviewInstance]:
        return await self._store.list_for_user(user_id)

    # ── Teardown ─────────────────────────────────────────────────────

    async def destroy(self, record_id: str) -> dict[str, str]:
        """Release the remote app and mark the record ``stopped``.

        Remote failures are logged and swallowed; the record is stopped
        regardless.

        Raises:
            PreviewNotFoundError: If no record has this id.
        """
        record = await self.get_status(record_id)
        try:
            await self._provider.delete_app(record.instance_name)
        except Exception as exc:
            TEARDOWN_FAILURES_TOTAL.inc()
            logger.warning(
                'Could not delete remote app %s: %s',
                record.instance_name,
                exc,
                extra={'record_id': record_id, 'instance_name': record.instance_name},
            )

        await self._store.update(record_id, status=STOPPED)
        logger.info(
            'Preview stopped: %s',
            record.instance_name,
            extra={'record_id': record_id, 'instance_name': record.instance_name},
        )
        return {'status': STOPPED}

    async def shutdown(self) -> None:
        await self._pool.shutdown()


def _validate_request(owner_repo: str, branch: str, identity: PreviewIdentity) -> None:
    if not isinstance(identity.project_id, str) or not identity.project_id.strip():
        raise PreviewRequestError('project id is required')
    if not branch or not isinstance(branch, str):
        raise PreviewRequestError('branch is required')
    boot_script.check_owner_repo(owner_repo)
    boot_script.check_branch(branch)
