"""Exception hierarchy for the test environment orchestrator.

Every error raised by the orchestrator derives from TestEnvironmentError and
carries a machine-readable error code plus a details dict for structured
logging:

- AlreadyInitializedError: setup() called more than once
- InvalidPhaseTransition: lifecycle transition outside the allowed table
- ProvisionError: container start or readiness failure (timeout, engine
  unavailable, invalid configuration)
- TeardownError: one or more containers could not be stopped
- RegistryUsageError: registry read before readiness or after teardown
- RuntimeBridgeError: misuse of the background runtime
- TokenAcquisitionError: authorization token could not be obtained
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum, auto
from typing import Any


class ProvisionErrorKind(StrEnum):
    """Reason a container could not be provisioned."""

    TIMEOUT = auto()
    ENGINE_UNAVAILABLE = auto()
    CONFIG_INVALID = auto()


@dataclass(frozen=True, slots=True)
class StopFailure:
    """A container that could not be stopped during teardown.

    Attributes:
        name: Registered container name
        container_id: Engine container ID
        error: Sanitized error message
    """

    name: str
    container_id: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "container_id": self.container_id, "error": self.error}


class TestEnvironmentError(Exception):
    """Base exception for all test environment errors."""

    __test__ = False

    default_message: str = "Test environment error"
    default_error_code: str = "TEST_ENVIRONMENT_ERROR"

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class AlreadyInitializedError(TestEnvironmentError):
    default_message = "Test environment setup has already been called"
    default_error_code = "ALREADY_INITIALIZED"

    def __init__(self, message: str | None = None, *, phase: str | None = None, **kwargs: Any) -> None:
        self.phase = phase
        details = kwargs.pop("details", {}) or {}
        if phase is not None:
            details["phase"] = phase
        super().__init__(message, details=details, **kwargs)


class InvalidPhaseTransition(TestEnvironmentError):
    """Raised when the orchestrator attempts a transition outside the allowed table."""

    default_message = "Invalid lifecycle phase transition"
    default_error_code = "INVALID_PHASE_TRANSITION"

    def __init__(
        self,
        message: str | None = None,
        *,
        from_phase: str | None = None,
        to_phase: str | None = None,
        **kwargs: Any,
    ) -> None:
        if message is None and from_phase and to_phase:
            message = f"Cannot transition from '{from_phase}' to '{to_phase}'"
        self.from_phase = from_phase
        self.to_phase = to_phase
        details = kwargs.pop("details", {}) or {}
        if from_phase is not None:
            details["from_phase"] = from_phase
        if to_phase is not None:
            details["to_phase"] = to_phase
        super().__init__(message, details=details, **kwargs)


class ProvisionError(TestEnvironmentError):
    """Raised when a service container cannot be started or never becomes ready."""

    default_message = "Failed to provision container"
    default_error_code = "PROVISION_FAILED"

    def __init__(
        self,
        message: str | None = None,
        *,
        kind: ProvisionErrorKind,
        service_kind: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.kind = kind
        self.service_kind = service_kind
        details = kwargs.pop("details", {}) or {}
        details["kind"] = kind.value
        if service_kind is not None:
            details["service_kind"] = service_kind
        kwargs.setdefault("error_code", f"PROVISION_{kind.value.upper()}")
        super().__init__(message, details=details, **kwargs)


class TeardownError(TestEnvironmentError):
    """Raised when one or more containers could not be stopped.

    Every registered container is attempted before this is raised, so
    ``failures`` lists all of the containers that may have leaked.
    """

    default_message = "Failed to stop one or more containers"
    default_error_code = "PARTIAL_STOP_FAILURE"

    def __init__(
        self,
        message: str | None = None,
        *,
        failures: list[StopFailure] | None = None,
        **kwargs: Any,
    ) -> None:
        self.failures = list(failures or [])
        if message is None and self.failures:
            names = ", ".join(f.name for f in self.failures)
            message = f"Failed to stop {len(self.failures)} container(s): {names}"
        details = kwargs.pop("details", {}) or {}
        details["failures"] = [f.to_dict() for f in self.failures]
        super().__init__(message, details=details, **kwargs)


class RegistryUsageError(TestEnvironmentError):
    """Raised on registry access outside the phase that permits it."""

    default_message = "Registry accessed outside the ready phase"
    default_error_code = "REGISTRY_USAGE_ERROR"

    def __init__(
        self,
        message: str | None = None,
        *,
        key: str | None = None,
        state: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.key = key
        self.state = state
        details = kwargs.pop("details", {}) or {}
        if key is not None:
            details["key"] = key
        if state is not None:
            details["state"] = state
        super().__init__(message, details=details, **kwargs)


class RuntimeBridgeError(TestEnvironmentError):
    default_message = "Background runtime is not available"
    default_error_code = "RUNTIME_BRIDGE_ERROR"


class TokenAcquisitionError(TestEnvironmentError):
    default_message = "Failed to obtain authorization token"
    default_error_code = "TOKEN_ACQUISITION_FAILED"
