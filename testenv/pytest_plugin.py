"""Pytest integration for the test environment.

Registered through the ``pytest11`` entry point. It tears the default
environment down when the session finishes and provides session fixtures
that wait for readiness:

- testenv_orchestrator: the default Orchestrator, once ready
- testenv_registry: the published registry
- auth_token: the token obtained during setup ("" if none)
- postgres_uri / keycloak_uri: container connection URIs

Fixtures skip when no environment was set up in this session.
"""

from __future__ import annotations

import pytest

from testenv import harness
from testenv.core.exceptions import RegistryUsageError
from testenv.services.environment import GlobalRegistry, Phase, ServiceKind
from testenv.services.orchestrator import Orchestrator


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    """Stop every container once all tests have completed.

    Teardown failures are logged by the orchestrator and never change the
    session's exit status.
    """
    harness.teardown()


@pytest.fixture(scope="session")
def testenv_orchestrator() -> Orchestrator:
    """The default Orchestrator, after setup has completed."""
    orchestrator = harness.current_orchestrator()
    if orchestrator is None or orchestrator.phase is Phase.UNINITIALIZED:
        pytest.skip("No test environment has been set up")
    if not orchestrator.wait_until_ready():
        pytest.fail(f"Test environment is not available (phase: {orchestrator.phase.value})")
    return orchestrator


@pytest.fixture(scope="session")
def testenv_registry(testenv_orchestrator: Orchestrator) -> GlobalRegistry:
    return testenv_orchestrator.registry


@pytest.fixture(scope="session")
def auth_token(testenv_registry: GlobalRegistry) -> str:
    return testenv_registry.token()


def _container_uri(registry: GlobalRegistry, kind: ServiceKind) -> str:
    try:
        return registry.container_uri(kind)
    except RegistryUsageError:
        pytest.skip(f"No {kind.value} container in the test environment")


@pytest.fixture(scope="session")
def postgres_uri(testenv_registry: GlobalRegistry) -> str:
    return _container_uri(testenv_registry, ServiceKind.POSTGRES)


@pytest.fixture(scope="session")
def keycloak_uri(testenv_registry: GlobalRegistry) -> str:
    return _container_uri(testenv_registry, ServiceKind.KEYCLOAK)
