"""Preview plane configuration settings.

PreviewPlaneSettings is the single configuration object accepted by
create_app() and the orchestrator. It is a plain dataclass (not env-coupled)
so tests can inject config without touching os.environ; ``from_env`` is only
called at the process edge.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .providers.fly_client import DEFAULT_GRAPHQL_URL, DEFAULT_MACHINES_URL

DEFAULT_CORS_ORIGINS: tuple[str, ...] = (
    "http://localhost:5173",
    "http://localhost:3000",
)


@dataclass(frozen=True, slots=True)
class PreviewPlaneSettings:
    """Configuration for the preview plane.

    All fields have local-development defaults. Non-local environments must
    supply Fly.io and Supabase credentials.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Fly.io ─────────────────────────────────────────────────────
    fly_api_token: str = ""
    """Fly.io API token. Never log this."""

    fly_org_slug: str = "personal"
    """Organization that owns preview apps."""

    fly_region: str = "iad"
    """Preferred region for apps and machines."""

    fly_graphql_url: str = DEFAULT_GRAPHQL_URL
    fly_machines_url: str = DEFAULT_MACHINES_URL

    preview_url_template: str = "https://{name}.fly.dev"
    """Public URL of a preview; ``{name}`` is the instance name."""

    machine_memory_mb: int = 1024
    machine_cpus: int = 1

    # ── GitHub ─────────────────────────────────────────────────────
    github_token: str = ""
    """Optional token for private repositories and higher rate limits."""

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    """Service-role key for PostgREST calls. Never log this."""

    # ── Provisioning ───────────────────────────────────────────────
    max_attempts: int = 3
    retry_base_delay: float = 2.0
    """Seconds; the wait before attempt N+1 is ``retry_base_delay * N``."""

    readiness_poll_attempts: int = 30
    readiness_poll_interval: float = 2.0

    max_concurrent_provisions: int = 8

    # ── HTTP / logging ─────────────────────────────────────────────
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.max_attempts < 1:
            errors.append("max_attempts must be >= 1")
        if self.retry_base_delay < 0:
            errors.append("retry_base_delay must be >= 0")
        if self.readiness_poll_attempts < 0:
            errors.append("readiness_poll_attempts must be >= 0")
        if self.max_concurrent_provisions < 1:
            errors.append("max_concurrent_provisions must be >= 1")
        if "{name}" not in self.preview_url_template:
            errors.append("preview_url_template must contain '{name}'")
        if self.log_format not in ("json", "console"):
            errors.append("log_format must be 'json' or 'console'")
        if not self.is_local:
            if not self.fly_api_token:
                errors.append(f"{self.environment}: fly_api_token is required")
            if not self.supabase_url:
                errors.append(f"{self.environment}: supabase_url is required")
            if not self.supabase_service_role_key:
                errors.append(
                    f"{self.environment}: supabase_service_role_key is required"
                )
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> PreviewPlaneSettings:
        """Build settings from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw
            else DEFAULT_CORS_ORIGINS
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            fly_api_token=env.get("FLY_API_TOKEN", ""),
            fly_org_slug=env.get("FLY_ORG_SLUG", "personal"),
            fly_region=env.get("FLY_REGION", "iad"),
            fly_graphql_url=env.get("FLY_GRAPHQL_URL", DEFAULT_GRAPHQL_URL),
            fly_machines_url=env.get("FLY_MACHINES_URL", DEFAULT_MACHINES_URL),
            preview_url_template=env.get(
                "PREVIEW_URL_TEMPLATE", "https://{name}.fly.dev"
            ),
            github_token=env.get("GITHUB_TOKEN", ""),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            max_attempts=int(env.get("PREVIEW_MAX_ATTEMPTS", "3")),
            retry_base_delay=float(env.get("PREVIEW_RETRY_BASE_DELAY", "2.0")),
            max_concurrent_provisions=int(
                env.get("PREVIEW_MAX_CONCURRENT_PROVISIONS", "8")
            ),
            cors_origins=cors,
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_format=env.get("LOG_FORMAT", "json"),
        )
