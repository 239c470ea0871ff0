"""Core infrastructure components."""

from testenv.core.config import Settings, get_settings
from testenv.core.docker_client import DockerClient
from testenv.core.exceptions import (
    AlreadyInitializedError,
    InvalidPhaseTransition,
    ProvisionError,
    ProvisionErrorKind,
    RegistryUsageError,
    RuntimeBridgeError,
    StopFailure,
    TeardownError,
    TestEnvironmentError,
    TokenAcquisitionError,
)
from testenv.core.logging import (
    get_logger,
    get_phase,
    redact_uri,
    sanitize_error,
    set_phase,
    setup_logging,
)

__all__ = [
    "AlreadyInitializedError",
    "DockerClient",
    "InvalidPhaseTransition",
    "ProvisionError",
    "ProvisionErrorKind",
    "RegistryUsageError",
    "RuntimeBridgeError",
    "Settings",
    "StopFailure",
    "TeardownError",
    "TestEnvironmentError",
    "TokenAcquisitionError",
    "get_logger",
    "get_phase",
    "get_settings",
    "redact_uri",
    "sanitize_error",
    "set_phase",
    "setup_logging",
]
