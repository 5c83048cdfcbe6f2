"""Structured logging configuration.

structlog renders every stdlib ``logging`` record, so modules keep using
``logging.getLogger(__name__)`` with ``extra={...}`` and still get JSON lines
correlated by request ID.

Usage::

    from preview_plane.app.observability import configure_logging

    configure_logging(level="INFO", json_output=True)  # once, at startup
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog

# Request-scoped correlation ID, set by RequestIdMiddleware.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# LogRecord attributes that are not user ``extra`` fields.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_configured = False


def _add_request_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _add_record_extras(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Lift ``extra={...}`` fields from foreign stdlib records into the event."""
    record = event_dict.get("_record")
    if record is None:
        return event_dict
    for key, value in vars(record).items():
        if key not in _RESERVED_ATTRS and not key.startswith("_"):
            event_dict.setdefault(key, value)
    return event_dict


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    force: bool = False,
) -> None:
    """Configure structlog and the stdlib root logger.

    Idempotent unless ``force`` is set.
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared_processors, _add_record_extras],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
