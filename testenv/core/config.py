"""Orchestrator configuration using Pydantic Settings."""

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Test environment settings loaded from ``TESTENV_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TESTENV_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Root logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_format: Literal["text", "json"] = Field(
        default="text",
        description="Console log format: plain text or structured JSON",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Optional path of a rotating log file",
    )
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum size of the log file before rotation",
        ge=1024,
    )
    log_file_backup_count: int = Field(
        default=3,
        description="Number of rotated log files to keep",
        ge=0,
    )

    # Container engine settings
    docker_host: str | None = Field(
        default=None,
        description="Container engine URL (e.g. unix:///var/run/docker.sock). "
        "None uses DOCKER_HOST or the default local socket.",
    )
    network_name: str = Field(
        default="test_network",
        description="User-defined bridge network shared by the test containers",
    )

    # Background runtime settings
    runtime_workers: int = Field(
        default=4,
        description="Worker threads available to the background runtime",
        ge=1,
        le=64,
    )
    setup_timeout: float | None = Field(
        default=None,
        description="Optional bound in seconds for each blocking setup step",
        gt=0,
    )
    teardown_timeout: float | None = Field(
        default=None,
        description="Optional bound in seconds for the teardown confirmation. "
        "None blocks until every container has been stopped.",
        gt=0,
    )

    # Relational database container
    postgres_image: str = Field(
        default="postgres:16-alpine",
        description="Image used for the relational database container",
    )
    postgres_startup_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for the database to accept connections",
        gt=0,
    )

    # Identity provider container
    keycloak_image: str = Field(
        default="quay.io/keycloak/keycloak:26.5.2",
        description="Image used for the identity provider container",
    )
    keycloak_startup_timeout: float = Field(
        default=60.0,
        description="Seconds to wait for the identity provider health endpoint",
        gt=0,
    )

    # Readiness polling
    readiness_initial_delay: float = Field(
        default=0.1,
        description="Initial delay between readiness probes in seconds",
        gt=0,
    )
    readiness_max_delay: float = Field(
        default=2.0,
        description="Maximum delay between readiness probes in seconds",
        gt=0,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("docker_host")
    @classmethod
    def validate_docker_host(cls, v: str | None) -> str | None:
        """Validate the container engine URL scheme."""
        if v is not None and not v.startswith(("unix://", "tcp://", "npipe://", "ssh://")):
            raise ValueError(
                f"Invalid docker host. Expected unix://, tcp://, npipe:// or ssh://, got: {v}"
            )
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    # `_env_file` is evaluated at call time so tests can point at another file.
    env_file = os.getenv("TESTENV_ENV_FILE", ".env")
    return Settings(_env_file=env_file)
