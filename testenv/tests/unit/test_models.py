"""Unit tests for stop capabilities, the stop ledger, handles and settings."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from testenv.services.environment import (
    EnvironmentSettings,
    FrozenEnvironmentSettings,
    KeycloakConfig,
    PostgresConfig,
    ServiceKind,
    StopCapability,
    StopLedger,
    apply_keycloak_uri,
    apply_postgres_uri,
)

pytestmark = pytest.mark.unit


def _capability(name: str, stop: AsyncMock | None = None) -> StopCapability:
    return StopCapability(name, f"{name}-id", stop or AsyncMock())


# =============================================================================
# StopCapability
# =============================================================================


class TestStopCapability:
    """Tests for the one-shot stop action."""

    async def test_invokes_stop_action(self) -> None:
        """Test calling the capability runs its stop action."""
        stop = AsyncMock()
        capability = _capability("db", stop)

        await capability()

        stop.assert_awaited_once()
        assert capability.invoked

    async def test_second_invocation_raises(self) -> None:
        """Test a container is never stopped twice."""
        stop = AsyncMock()
        capability = _capability("db", stop)
        await capability()

        with pytest.raises(RuntimeError, match="already been stopped"):
            await capability()

        stop.assert_awaited_once()

    async def test_failed_stop_still_counts_as_invoked(self) -> None:
        """Test a stop action that raised is not retried."""
        capability = _capability("db", AsyncMock(side_effect=RuntimeError("engine gone")))

        with pytest.raises(RuntimeError, match="engine gone"):
            await capability()

        assert capability.invoked

    def test_repr_truncates_container_id(self) -> None:
        """Test the repr shows a short container ID."""
        capability = StopCapability("db", "0123456789abcdef0123", AsyncMock())
        assert "0123456789ab'" in repr(capability)


# =============================================================================
# StopLedger
# =============================================================================


class TestStopLedger:
    """Tests for the collection drained by teardown."""

    def test_record_and_contains(self) -> None:
        """Test recorded capabilities are found by identity."""
        ledger = StopLedger()
        capability = _capability("db")

        ledger.record(capability)

        assert capability in ledger
        assert _capability("db") not in ledger
        assert len(ledger) == 1

    def test_record_is_idempotent(self) -> None:
        """Test recording the same capability twice keeps one entry."""
        ledger = StopLedger()
        capability = _capability("db")

        ledger.record(capability)
        ledger.record(capability)

        assert ledger.names() == ["db"]

    def test_drain_returns_newest_first_and_empties(self) -> None:
        """Test drain hands every capability over exactly once."""
        ledger = StopLedger()
        for name in ("postgres", "keycloak", "extra"):
            ledger.record(_capability(name))

        drained = ledger.drain()

        assert [c.name for c in drained] == ["extra", "keycloak", "postgres"]
        assert len(ledger) == 0
        assert ledger.drain() == []


# =============================================================================
# ContainerHandle
# =============================================================================


class TestContainerHandle:
    """Tests for published container handles."""

    def test_detached_drops_stop_capability(self, make_handle: Callable[..., Any]) -> None:
        """Test the published copy cannot stop the container."""
        handle, _ = make_handle()

        published = handle.detached()

        assert handle.stop is not None
        assert published.stop is None
        assert published == handle
        assert published.connection_uri == handle.connection_uri

    def test_handle_is_immutable(self, make_handle: Callable[..., Any]) -> None:
        """Test handles cannot be modified after creation."""
        handle, _ = make_handle()
        with pytest.raises(AttributeError):
            handle.connection_uri = "postgres://elsewhere"  # type: ignore[misc]

    def test_repr_hides_stop_capability(self, make_handle: Callable[..., Any]) -> None:
        handle, _ = make_handle()
        assert "StopCapability" not in repr(handle)


# =============================================================================
# Service configuration
# =============================================================================


class TestServiceConfig:
    """Tests for service startup configurations."""

    def test_postgres_defaults(self) -> None:
        config = PostgresConfig()
        assert config.kind is ServiceKind.POSTGRES
        assert (config.database, config.user, config.password) == ("postgres", "postgres", "postgres")
        assert config.init_scripts is None

    def test_keycloak_defaults(self) -> None:
        config = KeycloakConfig(realm_file="realm.json")
        assert config.kind is ServiceKind.KEYCLOAK
        assert config.admin_user == "admin"
        assert config.env == {}


# =============================================================================
# EnvironmentSettings
# =============================================================================


class TestEnvironmentSettings:
    """Tests for settings resolved during setup."""

    def test_freeze_returns_read_only_copy(self) -> None:
        """Test the published settings cannot be changed."""
        settings = EnvironmentSettings(database_url="postgres://a:b@localhost:5432/db")

        frozen = settings.freeze()

        assert isinstance(frozen, FrozenEnvironmentSettings)
        assert frozen.database_url == settings.database_url
        with pytest.raises(ValidationError):
            frozen.database_url = "postgres://other"  # type: ignore[misc]

    def test_freeze_is_a_copy(self) -> None:
        """Test later changes to the mutable settings do not leak into the frozen copy."""
        settings = EnvironmentSettings(extra={"feature": "on"})
        frozen = settings.freeze()

        settings.extra["feature"] = "off"

        assert frozen.extra == {"feature": "on"}

    def test_frozen_extra_is_read_only(self) -> None:
        """Test values in the published extra mapping cannot be changed in place."""
        frozen = EnvironmentSettings(extra={"feature": "on"}).freeze()

        with pytest.raises(TypeError):
            frozen.extra["feature"] = "off"  # type: ignore[index]
        with pytest.raises(TypeError):
            del frozen.extra["feature"]  # type: ignore[attr-defined]

        assert frozen.extra == {"feature": "on"}
        assert frozen.model_dump()["extra"] == {"feature": "on"}

    def test_freeze_of_frozen_is_identity(self) -> None:
        frozen = EnvironmentSettings().freeze()
        assert frozen.freeze() is frozen

    def test_unknown_field_rejected(self) -> None:
        """Test typos in setting names are caught."""
        with pytest.raises(ValidationError):
            EnvironmentSettings(database_uri="postgres://x")  # type: ignore[call-arg]

    def test_apply_postgres_uri(self) -> None:
        settings = EnvironmentSettings()
        apply_postgres_uri(settings, "postgres://u:p@localhost:49153/api")
        assert settings.database_url == "postgres://u:p@localhost:49153/api"

    def test_apply_empty_postgres_uri_keeps_value(self) -> None:
        settings = EnvironmentSettings(database_url="postgres://existing")
        apply_postgres_uri(settings, "")
        assert settings.database_url == "postgres://existing"

    def test_apply_keycloak_uri(self) -> None:
        """Test discovery and token endpoints point at the realm."""
        settings = EnvironmentSettings()

        apply_keycloak_uri(settings, "http://localhost:49160/", "test-realm")

        assert settings.oauth2_discovery_url == (
            "http://localhost:49160/realms/test-realm/.well-known/openid-configuration"
        )
        assert settings.oauth2_token_url == (
            "http://localhost:49160/realms/test-realm/protocol/openid-connect/token"
        )
