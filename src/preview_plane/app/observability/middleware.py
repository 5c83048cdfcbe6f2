"""HTTP middleware for the preview API.

``RequestIdMiddleware`` tags every request with a correlation id that ends up
in error envelopes, log lines and the ``X-Request-ID`` response header.
``MetricsMiddleware`` feeds the HTTP counters and latency histogram, labelled
by route shape rather than by preview id.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import request_id_ctx
from .metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL

REQUEST_ID_HEADER = "X-Request-ID"

_CLIENT_REQUEST_ID = re.compile(r"^[A-Za-z0-9-]{8,128}$")

_PREVIEW_ID_SEGMENT = re.compile(r"^/api/v1/previews/[^/]+")


def _normalize_path(path: str) -> str:
    """Replace the preview id in ``/api/v1/previews/<id>/...`` with ``{id}``."""
    return _PREVIEW_ID_SEGMENT.sub("/api/v1/previews/{id}", path)


def _resolve_request_id(header_value: str | None) -> str:
    if header_value and _CLIENT_REQUEST_ID.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID when it looks sane, else mint a UUID."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = _resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        labels = {"method": request.method, "path": _normalize_path(request.url.path)}
        status = "500"
        started = time.perf_counter()
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            HTTP_REQUESTS_TOTAL.labels(status=status, **labels).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(**labels).observe(
                time.perf_counter() - started
            )
