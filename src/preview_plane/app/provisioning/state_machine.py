"""Preview lifecycle vocabulary and transition rules.

Record status flow:
  provisioning -> {detecting_environment}* -> running | error

and the terminal manual path:
  any status -> stopped

``detecting_environment`` doubles as the "retrying" status: a record
re-enters it once per retried attempt.

Remote machine state is a separate, read-only vocabulary (``RemoteStatus``)
used by status checks. It never drives record transitions.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType

PROVISIONING = 'provisioning'
DETECTING_ENVIRONMENT = 'detecting_environment'
RUNNING = 'running'
ERROR = 'error'
STOPPED = 'stopped'

PREVIEW_STATUSES = (
    PROVISIONING,
    DETECTING_ENVIRONMENT,
    RUNNING,
    ERROR,
    STOPPED,
)

ACTIVE_STATUSES = frozenset({PROVISIONING, DETECTING_ENVIRONMENT})
TERMINAL_STATUSES = frozenset({RUNNING, ERROR, STOPPED})

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        PROVISIONING: frozenset({DETECTING_ENVIRONMENT, RUNNING, ERROR, STOPPED}),
        DETECTING_ENVIRONMENT: frozenset(
            {DETECTING_ENVIRONMENT, RUNNING, ERROR, STOPPED}
        ),
        RUNNING: frozenset({STOPPED}),
        ERROR: frozenset({STOPPED}),
        STOPPED: frozenset({STOPPED}),
    }
)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def retry_message(next_attempt: int, max_attempts: int) -> str:
    """Error message shown while a record waits for its next attempt."""
    return f'Retrying provisioning (attempt {next_attempt}/{max_attempts})...'


# ── Remote status ────────────────────────────────────────────────────


class RemoteStatus(str, Enum):
    """Provider machine state mapped into the local vocabulary."""

    RUNNING = 'running'
    ERROR = 'error'
    PROVISIONING = 'provisioning'
    PENDING = 'pending'
    NOT_FOUND = 'not_found'


MACHINE_STATE_MAP = MappingProxyType(
    {
        'started': RemoteStatus.RUNNING,
        'destroyed': RemoteStatus.ERROR,
        'halted': RemoteStatus.ERROR,
        'starting': RemoteStatus.PROVISIONING,
    }
)

# Readiness polling outcomes.
MACHINE_READY_STATES = frozenset({'started'})
MACHINE_DEAD_STATES = frozenset({'destroyed', 'halted'})


def map_machine_state(state: str | None) -> RemoteStatus:
    """Map a provider machine state string; unknown or missing is ``pending``."""
    if not state:
        return RemoteStatus.PENDING
    return MACHINE_STATE_MAP.get(state.lower(), RemoteStatus.PENDING)
