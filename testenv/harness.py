"""Run-before-all / run-after-all entry points for a test run.

The hosting test framework calls ``setup`` once before any test runs and
``teardown`` once after all tests complete. Both act on a single default
Orchestrator created on first use and bound to the process-wide registry.

Example conftest.py:

    from testenv import harness
    from testenv.services.auth import default_post_init
    from testenv.services.environment import EnvironmentSettings, PostgresConfig

    async def init(provisioner):
        settings = EnvironmentSettings()
        postgres = await provisioner.start_postgres(PostgresConfig(database="api"))
        settings.database_url = postgres.connection_uri
        return [postgres], settings

    def pytest_sessionstart(session):
        harness.setup(init, default_post_init)

Teardown is performed by the bundled pytest plugin at session finish.
"""

from __future__ import annotations

import threading

from testenv.core.logging import get_logger, setup_logging
from testenv.services.environment.enums import ServiceKind
from testenv.services.environment.registry import reset_global_registry
from testenv.services.environment.settings import FrozenEnvironmentSettings
from testenv.services.orchestrator import InitFn, Orchestrator, PostInitFn, TeardownReport

logger = get_logger(__name__)

_orchestrator: Orchestrator | None = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> Orchestrator:
    """Get the default Orchestrator, creating it on first use."""
    global _orchestrator  # noqa: PLW0603

    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = Orchestrator()
        return _orchestrator


def current_orchestrator() -> Orchestrator | None:
    """The default Orchestrator if one was created, without creating it."""
    with _orchestrator_lock:
        return _orchestrator


def reset_orchestrator() -> None:
    """Drop the default Orchestrator and the global registry.

    Used for testing to ensure clean state between tests.
    """
    global _orchestrator  # noqa: PLW0603

    with _orchestrator_lock:
        _orchestrator = None
    reset_global_registry()


def setup(init: InitFn, post_init: PostInitFn | None = None) -> None:
    """Configure logging and provision the test environment."""
    setup_logging()
    get_orchestrator().setup(init, post_init)


def teardown(strict: bool = False) -> TeardownReport:
    """Tear down the default environment. A no-op if it was never set up."""
    orchestrator = current_orchestrator()
    if orchestrator is None:
        return TeardownReport()
    return orchestrator.teardown(strict=strict)


def wait_until_ready(timeout: float | None = None) -> bool:
    return get_orchestrator().wait_until_ready(timeout)


def token() -> str:
    return get_orchestrator().token()


def container_uri(kind: ServiceKind | str) -> str:
    return get_orchestrator().container_uri(kind)


def settings() -> FrozenEnvironmentSettings:
    return get_orchestrator().settings()
