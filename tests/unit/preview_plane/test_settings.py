"""Unit tests for PreviewPlaneSettings."""

from __future__ import annotations

import pytest

from preview_plane.app.settings import DEFAULT_CORS_ORIGINS, PreviewPlaneSettings


class TestDefaults:
    def test_local_defaults_are_valid(self):
        settings = PreviewPlaneSettings()
        assert settings.is_local
        assert settings.validate() == []

    def test_retry_defaults(self):
        settings = PreviewPlaneSettings()
        assert settings.max_attempts == 3
        assert settings.retry_base_delay == 2.0
        assert settings.preview_url_template == "https://{name}.fly.dev"


class TestValidate:
    def test_non_local_requires_credentials(self):
        errors = PreviewPlaneSettings(environment="production").validate()
        assert any("fly_api_token" in e for e in errors)
        assert any("supabase_url" in e for e in errors)
        assert any("supabase_service_role_key" in e for e in errors)

    def test_non_local_with_credentials_is_valid(self):
        settings = PreviewPlaneSettings(
            environment="production",
            fly_api_token="t",
            supabase_url="https://x.supabase.co",
            supabase_service_role_key="k",
        )
        assert settings.validate() == []

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_attempts": 0},
            {"retry_base_delay": -1.0},
            {"max_concurrent_provisions": 0},
            {"preview_url_template": "https://example.com"},
            {"log_format": "xml"},
        ],
    )
    def test_invalid_values(self, overrides):
        assert PreviewPlaneSettings(**overrides).validate() != []


class TestFromEnv:
    def test_empty_env_gives_defaults(self):
        settings = PreviewPlaneSettings.from_env({})
        assert settings == PreviewPlaneSettings()
        assert settings.cors_origins == DEFAULT_CORS_ORIGINS

    def test_reads_variables(self):
        settings = PreviewPlaneSettings.from_env(
            {
                "ENVIRONMENT": "staging",
                "FLY_API_TOKEN": "fly",
                "FLY_ORG_SLUG": "acme",
                "FLY_REGION": "ams",
                "PREVIEW_URL_TEMPLATE": "https://{name}.previews.acme.dev",
                "GITHUB_TOKEN": "ghp",
                "SUPABASE_URL": "https://x.supabase.co",
                "SUPABASE_SERVICE_ROLE_KEY": "k",
                "PREVIEW_MAX_ATTEMPTS": "5",
                "PREVIEW_RETRY_BASE_DELAY": "0.5",
                "PREVIEW_MAX_CONCURRENT_PROVISIONS": "2",
                "CORS_ORIGINS": "https://a.dev, https://b.dev,",
                "LOG_LEVEL": "DEBUG",
                "LOG_FORMAT": "console",
            }
        )

        assert settings.environment == "staging"
        assert settings.fly_org_slug == "acme"
        assert settings.fly_region == "ams"
        assert settings.github_token == "ghp"
        assert settings.max_attempts == 5
        assert settings.retry_base_delay == 0.5
        assert settings.max_concurrent_provisions == 2
        assert settings.cors_origins == ("https://a.dev", "https://b.dev")
        assert settings.log_format == "console"
        assert settings.validate() == []

    def test_bad_number_raises(self):
        with pytest.raises(ValueError):
            PreviewPlaneSettings.from_env({"PREVIEW_MAX_ATTEMPTS": "three"})
