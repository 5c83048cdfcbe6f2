"""Logging, metrics and request correlation for the preview plane."""

from .logging import configure_logging, request_id_ctx
from .metrics import metrics_text
from .middleware import MetricsMiddleware, RequestIdMiddleware

__all__ = [
    "MetricsMiddleware",
    "RequestIdMiddleware",
    "configure_logging",
    "metrics_text",
    "request_id_ctx",
]
