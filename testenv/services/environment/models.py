"""Data models for the test environment.

Classes:
    StopCapability: One-shot async action that removes a single container
    StopLedger: Thread-safe, ordered collection of stop capabilities
    ContainerHandle: A running container's endpoint plus its stop capability
    PostgresConfig: Startup configuration of the relational database
    KeycloakConfig: Startup configuration of the identity provider
"""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import ClassVar

from testenv.services.environment.enums import ServiceKind


class StopCapability:
    """Invocable action that stops and removes one container.

    A capability can run at most once; a second invocation raises
    RuntimeError so a container is never stopped twice.

    Attributes:
        name: Container name used in logs and failure reports
        container_id: Engine container ID
        service_kind: Service the container belongs to, if known
    """

    def __init__(
        self,
        name: str,
        container_id: str,
        stop: Callable[[], Awaitable[object]],
        service_kind: ServiceKind | None = None,
    ) -> None:
        self.name = name
        self.container_id = container_id
        self.service_kind = service_kind
        self._stop = stop
        self._lock = threading.Lock()
        self._invoked = False

    @property
    def invoked(self) -> bool:
        return self._invoked

    async def __call__(self) -> None:
        with self._lock:
            if self._invoked:
                raise RuntimeError(f"Container {self.name} has already been stopped")
            self._invoked = True
        await self._stop()

    def __repr__(self) -> str:
        return (
            f"StopCapability(name={self.name!r}, container_id={self.container_id[:12]!r}, "
            f"invoked={self._invoked})"
        )


class StopLedger:
    """Collection of stop capabilities consumed exactly once by teardown.

    Capabilities are recorded as soon as their container exists, so a failure
    later in setup can still remove everything started so far.
    """

    def __init__(self) -> None:
        self._capabilities: list[StopCapability] = []
        self._lock = threading.Lock()

    def record(self, capability: StopCapability) -> None:
        """Record a capability. Recording the same capability twice is a no-op."""
        with self._lock:
            if any(existing is capability for existing in self._capabilities):
                return
            self._capabilities.append(capability)

    def drain(self) -> list[StopCapability]:
        """Remove and return every recorded capability, newest first."""
        with self._lock:
            drained = list(reversed(self._capabilities))
            self._capabilities.clear()
            return drained

    def names(self) -> list[str]:
        with self._lock:
            return [c.name for c in self._capabilities]

    def __len__(self) -> int:
        with self._lock:
            return len(self._capabilities)

    def __contains__(self, capability: object) -> bool:
        with self._lock:
            return any(existing is capability for existing in self._capabilities)


@dataclass(frozen=True, slots=True)
class ContainerHandle:
    """A running, ready service container.

    Attributes:
        service_kind: Which service the container provides
        name: Container name
        container_id: Engine container ID
        connection_uri: Endpoint tests connect to
        ready_at: When the readiness check passed
        stop: Capability owned by the teardown path; None on published copies
    """

    service_kind: ServiceKind
    name: str
    container_id: str
    connection_uri: str
    ready_at: datetime
    stop: StopCapability | None = field(default=None, compare=False, repr=False)

    def detached(self) -> ContainerHandle:
        """Copy of the handle without its stop capability, safe to publish."""
        return replace(self, stop=None)


@dataclass(frozen=True, slots=True)
class PostgresConfig:
    """Startup configuration of a PostgreSQL container.

    Attributes:
        database: Database created on startup
        user: Superuser name
        password: Superuser password
        init_scripts: Directory mounted at /docker-entrypoint-initdb.d
        network: Network to join, defaults to the configured network
        image: Image override, defaults to the configured image
        startup_timeout: Readiness bound override in seconds
    """

    kind: ClassVar[ServiceKind] = ServiceKind.POSTGRES

    database: str = "postgres"
    user: str = "postgres"
    password: str = "postgres"  # pragma: allowlist secret
    init_scripts: str | Path | None = None
    network: str | None = None
    image: str | None = None
    startup_timeout: float | None = None


@dataclass(frozen=True, slots=True)
class KeycloakConfig:
    """Startup configuration of a Keycloak container.

    Attributes:
        realm_file: Realm export imported on startup
        network: Network to join, defaults to the configured network
        admin_user: Bootstrap admin user
        admin_password: Bootstrap admin password
        image: Image override, defaults to the configured image
        startup_timeout: Readiness bound override in seconds
        env: Extra environment variables
    """

    kind: ClassVar[ServiceKind] = ServiceKind.KEYCLOAK

    realm_file: str | Path
    network: str | None = None
    admin_user: str = "admin"
    admin_password: str = "123456"  # pragma: allowlist secret
    image: str | None = None
    startup_timeout: float | None = None
    env: dict[str, str] = field(default_factory=dict)


ServiceConfig = PostgresConfig | KeycloakConfig
