"""Shared domain model of the test environment.

Import from here instead of the individual modules:

    from testenv.services.environment import (
        # Enums
        Phase,
        ServiceKind,
        # Models
        ContainerHandle,
        StopCapability,
        StopLedger,
        PostgresConfig,
        KeycloakConfig,
        EnvironmentSettings,
        # Registry
        GlobalRegistry,
        get_global_registry,
    )

Modules in this package:
    enums: Phase, ServiceKind, RegistryState and the phase transition table
    models: Container handles, stop capabilities and service configurations
    settings: EnvironmentSettings resolved during setup
    registry: Phase-gated process-wide registry
"""

from testenv.services.environment.enums import (
    TERMINAL_PHASES,
    VALID_TRANSITIONS,
    Phase,
    RegistryState,
    ServiceKind,
)
from testenv.services.environment.models import (
    ContainerHandle,
    KeycloakConfig,
    PostgresConfig,
    ServiceConfig,
    StopCapability,
    StopLedger,
)
from testenv.services.environment.registry import (
    SETTINGS_KEY,
    TOKEN_KEY,
    GlobalRegistry,
    container_key,
    get_global_registry,
    reset_global_registry,
)
from testenv.services.environment.settings import (
    EnvironmentSettings,
    FrozenEnvironmentSettings,
    apply_keycloak_uri,
    apply_postgres_uri,
)

__all__ = [
    "SETTINGS_KEY",
    "TERMINAL_PHASES",
    "TOKEN_KEY",
    "VALID_TRANSITIONS",
    "ContainerHandle",
    "EnvironmentSettings",
    "FrozenEnvironmentSettings",
    "GlobalRegistry",
    "KeycloakConfig",
    "Phase",
    "PostgresConfig",
    "RegistryState",
    "ServiceConfig",
    "ServiceKind",
    "StopCapability",
    "StopLedger",
    "apply_keycloak_uri",
    "apply_postgres_uri",
    "container_key",
    "get_global_registry",
    "reset_global_registry",
]
