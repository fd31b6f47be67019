"""
Client configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from disque_client.constants import DEFAULT_CYCLE, DEFAULT_NODE


class Settings(BaseSettings):
    """Client settings loaded from ``DISQUE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DISQUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Cluster
    nodes: str = DEFAULT_NODE  # comma-separated host:port list
    auth: str | None = None
    restrict_to_seeds: bool = True

    # Routing
    cycle: int = DEFAULT_CYCLE

    # Connections
    connect_timeout_seconds: float = 5.0
    request_timeout_seconds: float | None = None
    encoding: str | None = "utf-8"

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "disque-client"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
