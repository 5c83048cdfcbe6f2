"""Error taxonomy for preview provisioning.

Four failure classes drive orchestration behaviour:

  - ``ContractValidationError``: malformed runtime contract. Fatal, never
    retried, raised synchronously to whoever builds the contract.
  - ``TransientProviderError``: network-classified provider failure
    (timeouts, refused connections, DNS, websocket drops). Retried with
    backoff up to the attempt budget.
  - ``FatalProviderError``: any other provider failure. Aborts immediately.
  - Best-effort failures (secret push, network identity, teardown) are not
    modelled as a type; they are logged and swallowed where they happen.

Errors are kept dependency-free so they can cross module boundaries without
leaking httpx responses (or tokens).
"""

from __future__ import annotations

import socket
from enum import Enum


class PreviewPlaneError(Exception):
    """Base error for the preview plane."""


# ── Contract ─────────────────────────────────────────────────────────


class ContractValidationError(PreviewPlaneError, ValueError):
    """Raised when a runtime contract fails schema validation."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


# ── Provider ─────────────────────────────────────────────────────────


class ProviderError(PreviewPlaneError):
    """Base error for remote compute provider failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.operation = operation
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Retryable provider failure (timeout, connection refused, DNS, websocket)."""


class FatalProviderError(ProviderError):
    """Non-retryable provider failure."""


class ProviderNotFoundError(FatalProviderError):
    """The requested app or machine does not exist."""

    def __init__(self, message: str = "resource not found", **kwargs) -> None:
        kwargs.setdefault("status_code", 404)
        super().__init__(message, **kwargs)


# ── Repository source ────────────────────────────────────────────────


class RepositoryAccessError(PreviewPlaneError):
    """The repository or branch cannot be read (missing, private, rate limited)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


# ── Records / requests ───────────────────────────────────────────────


class PreviewNotFoundError(PreviewPlaneError, LookupError):
    """No preview record exists for the given id."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"preview {record_id!r} not found")


class PreviewRequestError(PreviewPlaneError, ValueError):
    """Invalid preview request input (repo, branch, identity)."""


class DuplicatePreviewError(PreviewPlaneError):
    """A record for the same (project_id, user_id) identity already exists."""

    def __init__(self, project_id: str, user_id: str | None) -> None:
        self.project_id = project_id
        self.user_id = user_id
        super().__init__(
            f"preview for project {project_id!r} and user {user_id!r} already exists"
        )


# ── Classification ───────────────────────────────────────────────────


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"
    VALIDATION = "validation"


def classify_error(exc: BaseException) -> ErrorClass:
    """Map an exception raised during provisioning to its retry class.

    Classification is by type only. Adapters translate transport failures
    into ``TransientProviderError`` at the point they are caught.
    """
    if isinstance(exc, ContractValidationError):
        return ErrorClass.VALIDATION
    if isinstance(exc, TransientProviderError):
        return ErrorClass.TRANSIENT
    # Timeouts, refused connections and DNS failures surfacing from the
    # event loop rather than an adapter.
    if isinstance(exc, (TimeoutError, ConnectionError, socket.gaierror)):
        return ErrorClass.TRANSIENT
    return ErrorClass.FATAL
