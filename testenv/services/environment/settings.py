"""Application settings resolved while the test environment starts.

EnvironmentSettings is the opaque configuration object handed from ``init`` to
the registry. It is mutable while containers start and each container writes
its endpoint into it; ``freeze()`` produces the read-only copy published in
the registry once setup completes.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class EnvironmentSettings(BaseModel):
    """External endpoints and credentials used by the code under test."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    database_url: str | None = Field(
        default=None,
        description="Connection URI of the relational database",
    )
    oauth2_discovery_url: str | None = Field(
        default=None,
        description="OpenID Connect discovery document URL",
    )
    oauth2_token_url: str | None = Field(
        default=None,
        description="Token endpoint used to obtain the test token",
    )
    oauth2_client_id: str | None = None
    oauth2_client_secret: str | None = None
    oauth2_username: str | None = None
    oauth2_password: str | None = None
    oauth2_scope: str = "openid"
    extra: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form values for the application under test",
    )

    def freeze(self) -> FrozenEnvironmentSettings:
        """Return a read-only copy of these settings."""
        return FrozenEnvironmentSettings.model_validate(self.model_dump())


class FrozenEnvironmentSettings(EnvironmentSettings):
    """Read-only settings published after setup.

    Fields cannot be reassigned and ``extra`` is a read-only mapping view.
    """

    model_config = ConfigDict(frozen=True)

    extra: Mapping[str, Any] = Field(  # type: ignore[assignment]
        default_factory=lambda: MappingProxyType({}),
        description="Free-form values for the application under test",
    )

    @field_validator("extra", mode="after")
    @classmethod
    def freeze_extra(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    @field_serializer("extra")
    def serialize_extra(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return dict(value)

    def freeze(self) -> FrozenEnvironmentSettings:
        return self


def apply_postgres_uri(settings: EnvironmentSettings, uri: str) -> None:
    """Point the application's database at a started container."""
    if uri:
        settings.database_url = uri


def apply_keycloak_uri(settings: EnvironmentSettings, uri: str, realm: str) -> None:
    """Point discovery and token endpoints at a started identity provider."""
    if not uri:
        return
    base = f"{uri.rstrip('/')}/realms/{realm}"
    settings.oauth2_discovery_url = f"{base}/.well-known/openid-configuration"
    settings.oauth2_token_url = f"{base}/protocol/openid-connect/token"
