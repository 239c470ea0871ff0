"""Process-wide registry of provisioned test infrastructure.

The registry stores the container handles, the resolved settings and ad-hoc
values such as the authorization token. Access is phase gated:

1. open: populated by the orchestrator during setup, reads are rejected
2. sealed: the environment is ready, entries are immutable and readable
3. draining: teardown is stopping containers, all access is rejected
4. cleared: teardown released every entry, all access is rejected

All operations are serialized by a single lock, so a test thread never
observes a half-populated or half-cleared registry.

Keys:
    settings             -> FrozenEnvironmentSettings
    token                -> str
    container:{kind}     -> ContainerHandle
"""

from __future__ import annotations

import threading
from typing import Any

from testenv.core.exceptions import RegistryUsageError
from testenv.core.logging import get_logger
from testenv.services.environment.enums import RegistryState, ServiceKind
from testenv.services.environment.models import ContainerHandle
from testenv.services.environment.settings import FrozenEnvironmentSettings

logger = get_logger(__name__)

SETTINGS_KEY = "settings"
TOKEN_KEY = "token"
CONTAINER_KEY_PREFIX = "container"


def container_key(kind: ServiceKind | str) -> str:
    """Registry key of the container providing ``kind``."""
    return f"{CONTAINER_KEY_PREFIX}:{ServiceKind(kind).value}"


class GlobalRegistry:
    """Phase-gated key/value store shared by the orchestrator and test code.

    Example:
        registry = GlobalRegistry()

        # During setup (orchestrator)
        registry.set(container_key(ServiceKind.POSTGRES), handle)
        registry.set(TOKEN_KEY, "Bearer ...")
        registry.seal()

        # In tests
        uri = registry.container_uri(ServiceKind.POSTGRES)
        token = registry.token()
    """

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._state = RegistryState.OPEN
        self._lock = threading.RLock()

    @property
    def state(self) -> RegistryState:
        with self._lock:
            return self._state

    # =========================================================================
    # Core Operations
    # =========================================================================

    def set(self, key: str, value: Any) -> None:
        """Store a value while the registry is being populated.

        Raises:
            RegistryUsageError: If the registry is sealed or cleared.
        """
        with self._lock:
            if self._state is not RegistryState.OPEN:
                raise RegistryUsageError(
                    f"Cannot write '{key}': registry is {self._state.value}",
                    key=key,
                    state=self._state.value,
                )
            self._entries[key] = value
            logger.debug("Registry entry set", extra={"key": key})

    def get(self, key: str) -> Any | None:
        """Read a value once the environment is ready.

        Returns:
            The stored value, or None if the key was never set.

        Raises:
            RegistryUsageError: If the registry is not sealed.
        """
        with self._lock:
            self._require_sealed(key)
            return self._entries.get(key)

    def seal(self) -> None:
        """Make the entries immutable and readable."""
        with self._lock:
            if self._state is not RegistryState.OPEN:
                raise RegistryUsageError(
                    f"Cannot seal a {self._state.value} registry", state=self._state.value
                )
            self._state = RegistryState.SEALED
            logger.debug("Registry sealed", extra={"keys": sorted(self._entries)})

    def begin_drain(self) -> None:
        """Reject all access while teardown stops the containers."""
        with self._lock:
            if self._state is not RegistryState.CLEARED:
                self._state = RegistryState.DRAINING
                logger.debug("Registry draining")

    def clear(self) -> None:
        """Release every entry. Subsequent access raises RegistryUsageError."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._state = RegistryState.CLEARED
            logger.debug("Registry cleared", extra={"released": count})

    def keys(self) -> list[str]:
        with self._lock:
            self._require_sealed(None)
            return sorted(self._entries)

    # =========================================================================
    # Typed Read API for tests
    # =========================================================================

    def token(self) -> str:
        """Authorization token obtained during setup; empty if none was obtained."""
        value = self.get(TOKEN_KEY)
        return value if isinstance(value, str) else ""

    def settings(self) -> FrozenEnvironmentSettings:
        """Settings resolved during setup."""
        value = self.get(SETTINGS_KEY)
        if value is None:
            raise RegistryUsageError("No settings were published", key=SETTINGS_KEY)
        return value  # type: ignore[no-any-return]

    def container(self, kind: ServiceKind | str) -> ContainerHandle:
        """Handle of the container providing ``kind``."""
        key = container_key(kind)
        handle = self.get(key)
        if handle is None:
            raise RegistryUsageError(f"No container registered for '{kind}'", key=key)
        return handle  # type: ignore[no-any-return]

    def container_uri(self, kind: ServiceKind | str) -> str:
        """Connection URI of the container providing ``kind``."""
        return self.container(kind).connection_uri

    def _require_sealed(self, key: str | None) -> None:
        if self._state is not RegistryState.SEALED:
            what = f"'{key}'" if key else "registry"
            raise RegistryUsageError(
                f"Cannot read {what}: registry is {self._state.value}",
                key=key,
                state=self._state.value,
            )


# =============================================================================
# Global Singleton
# =============================================================================

_global_registry: GlobalRegistry | None = None
_registry_lock = threading.Lock()


def get_global_registry() -> GlobalRegistry:
    """Get the process-wide GlobalRegistry, creating it on first use."""
    global _global_registry  # noqa: PLW0603

    with _registry_lock:
        if _global_registry is None:
            _global_registry = GlobalRegistry()
            logger.debug("Created global registry")
        return _global_registry


def reset_global_registry() -> None:
    """Drop the global registry.

    Used for testing to ensure clean state between tests.
    """
    global _global_registry  # noqa: PLW0603

    with _registry_lock:
        _global_registry = None


__all__ = [
    "CONTAINER_KEY_PREFIX",
    "SETTINGS_KEY",
    "TOKEN_KEY",
    "GlobalRegistry",
    "container_key",
    "get_global_registry",
    "reset_global_registry",
]
