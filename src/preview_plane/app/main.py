"""Preview plane FastAPI application factory.

The create_app() factory is the single entry point for building the preview
plane ASGI application. It wires middleware (request-ID, metrics, CORS), the
preview routes, and injects the record store, compute provider and repository
source via dependency injection.

Usage:
    # Local development (in-memory store, provider and repository source)
    from preview_plane.app import create_app, PreviewPlaneSettings
    app = create_app(PreviewPlaneSettings())

    # Non-local (Supabase, Fly.io and GitHub built from settings)
    settings = PreviewPlaneSettings.from_env()
    app = create_app(settings)

    # Testing (full DI control)
    app = create_app(settings, record_store=store, provider=fake, sleep=no_sleep)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .observability import (
    MetricsMiddleware,
    RequestIdMiddleware,
    configure_logging,
    metrics_text,
)
from .protocols import PreviewRecordStore, ProviderControlAPI, RepositorySource
from .provisioning.orchestrator import PreviewOrchestrator, SleepFn
from .provisioning.task_pool import ProvisioningTaskPool
from .routes.previews import create_previews_router, error_response
from .settings import PreviewPlaneSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppDependencies:
    """Container for the injected store, provider and orchestrator.

    Stored on ``app.state.deps`` so route handlers and tests can reach them.
    """

    record_store: PreviewRecordStore
    provider: ProviderControlAPI
    repository_source: RepositorySource
    orchestrator: PreviewOrchestrator


def _build_inmemory_deps():
    """Construct in-memory store, provider and source for local development."""
    from .inmemory import (
        InMemoryPreviewRecordStore,
        InMemoryProvider,
        InMemoryRepositorySource,
    )

    return InMemoryPreviewRecordStore(), InMemoryProvider(), InMemoryRepositorySource()


def _build_remote_deps(settings: PreviewPlaneSettings):
    """Construct Supabase, Fly.io and GitHub adapters from settings."""
    from .db import SupabaseClient, SupabasePreviewRecordStore
    from .providers import FlyClient, FlyProvider
    from .sources import GitHubRepositorySource

    store = SupabasePreviewRecordStore(
        SupabaseClient(
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
        )
    )
    provider = FlyProvider(
        FlyClient(
            api_token=settings.fly_api_token,
            graphql_url=settings.fly_graphql_url,
            machines_url=settings.fly_machines_url,
        ),
        organization_id=settings.fly_org_slug,
        region=settings.fly_region,
    )
    source = GitHubRepositorySource(token=settings.github_token or None)
    return store, provider, source


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: PreviewPlaneSettings | None = None,
    *,
    record_store: PreviewRecordStore | None = None,
    provider: ProviderControlAPI | None = None,
    repository_source: RepositorySource | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> FastAPI:
    """Create a configured preview plane FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        record_store, provider, repository_source: Overrides. When None,
            local mode uses in-memory implementations and non-local mode
            builds the Supabase / Fly.io / GitHub adapters from settings.
        sleep: Backoff sleep for provisioning retries and readiness polls.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = PreviewPlaneSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Preview plane settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    if record_store is None or provider is None or repository_source is None:
        if settings.is_local:
            defaults = _build_inmemory_deps()
        else:
            defaults = _build_remote_deps(settings)
        record_store = record_store or defaults[0]
        provider = provider or defaults[1]
        repository_source = repository_source or defaults[2]

    orchestrator = PreviewOrchestrator(
        store=record_store,
        provider=provider,
        source=repository_source,
        settings=settings,
        pool=ProvisioningTaskPool(settings.max_concurrent_provisions),
        sleep=sleep,
    )
    deps = AppDependencies(
        record_store=record_store,
        provider=provider,
        repository_source=repository_source,
        orchestrator=orchestrator,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(
            level=settings.log_level,
            json_output=settings.log_format == "json",
        )
        logger.info("Preview plane startup (environment=%s)", settings.environment)
        yield
        await orchestrator.shutdown()
        logger.info("Preview plane shutdown")

    app = FastAPI(
        title="Preview Plane",
        description="Provision and track ephemeral development previews",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestID -> Metrics -> CORS -> route handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return error_response(request, 400, "INVALID_REQUEST", details)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
            "provisioning": len(orchestrator.pool),
        }

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_previews_router(orchestrator))

    return app


# For uvicorn, use --factory flag:
#   uvicorn preview_plane.app.main:create_app --factory
# This avoids executing create_app() at import time.
