"""Enums shared by the test environment components.

- Phase: lifecycle state of the orchestrator
- ServiceKind: closed set of service containers the provisioner can start
- RegistryState: access state of the global registry
"""

from enum import StrEnum, auto


class Phase(StrEnum):
    """Lifecycle phase of the orchestrator."""

    UNINITIALIZED = auto()
    INITIALIZING = auto()
    READY = auto()
    TEARING_DOWN = auto()
    STOPPED = auto()
    FAILED = auto()


class ServiceKind(StrEnum):
    """Service containers supported by the provisioner."""

    POSTGRES = auto()
    KEYCLOAK = auto()


class RegistryState(StrEnum):
    """Access state of the global registry.

    - open: being populated during setup, writes only
    - sealed: ready, reads only
    - draining: teardown in progress, no access
    - cleared: released by teardown, no access
    """

    OPEN = auto()
    SEALED = auto()
    DRAINING = auto()
    CLEARED = auto()


# Valid lifecycle transitions
# Key: current phase, Value: phases reachable from it
VALID_TRANSITIONS: dict[Phase, tuple[Phase, ...]] = {
    Phase.UNINITIALIZED: (Phase.INITIALIZING,),
    Phase.INITIALIZING: (Phase.READY, Phase.FAILED),
    Phase.READY: (Phase.TEARING_DOWN,),
    Phase.TEARING_DOWN: (Phase.STOPPED,),
    Phase.STOPPED: (),  # Terminal state
    Phase.FAILED: (),  # Terminal state
}

TERMINAL_PHASES: frozenset[Phase] = frozenset({Phase.STOPPED, Phase.FAILED})


__all__ = [
    "TERMINAL_PHASES",
    "VALID_TRANSITIONS",
    "Phase",
    "RegistryState",
    "ServiceKind",
]
