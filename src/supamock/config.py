"""
Supamock - Configuration and settings.

MockSettings holds the wire conventions the mock backend answers to:
path markers, profile headers, and the Accept values that select a
response shape. Every field can be overridden with a SUPAMOCK_* env var.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class MockSettings(BaseSettings):
    """
    Wire conventions for one mock backend.

    Defaults match what the Supabase client libraries send. Tests that
    need a different layout build their own instance and pass it to
    MockPostgrest instead of touching the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="SUPAMOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths: /rest/v1/<table>, /rest/v1/rpc/<fn>, /functions/v1/<fn>
    default_schema: str = "public"
    rest_version: str = "v1"
    rpc_segment: str = "rpc"
    functions_segment: str = "functions"

    # Schema selection
    read_profile_header: str = "Accept-Profile"
    write_profile_header: str = "Content-Profile"

    # Response shape selection (Accept header)
    single_accept: str = "application/vnd.pgrst.object+json"
    # Off by default: postgrest-py sends application/json on every request
    maybe_single_accept: str | None = None

    # CLI
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


@lru_cache
def get_settings() -> MockSettings:
    """Get cached settings instance."""
    return MockSettings()


class _SettingsProxy:
    """Lazy proxy for settings to avoid loading .env at import time."""

    _instance: MockSettings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
