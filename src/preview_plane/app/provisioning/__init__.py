"""Preview provisioning: naming, status vocabulary, records and boot scripts.

The orchestrator and task pool are imported from their modules directly
(``provisioning.orchestrator``, ``provisioning.task_pool``); importing them
here would pull the provider adapters into every record import.
"""

from .naming import build_instance_name, build_preview_url
from .records import PreviewInstance
from .state_machine import (
    ACTIVE_STATUSES,
    PREVIEW_STATUSES,
    TERMINAL_STATUSES,
    RemoteStatus,
    can_transition,
    map_machine_state,
)

__all__ = [
    "ACTIVE_STATUSES",
    "PREVIEW_STATUSES",
    "TERMINAL_STATUSES",
    "PreviewInstance",
    "RemoteStatus",
    "build_instance_name",
    "build_preview_url",
    "can_transition",
    "map_machine_state",
]
