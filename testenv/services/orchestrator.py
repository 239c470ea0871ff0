"""Orchestrator for the test environment lifecycle.

The orchestrator coordinates setup, readiness and teardown of the ephemeral
infrastructure a test run depends on. It runs on the caller's synchronous
thread and dispatches every container and network operation onto a
RuntimeBridge, blocking on the bridge's completion future at each step.

Lifecycle:
    Valid transitions:
    - uninitialized -> initializing
    - initializing -> ready, failed
    - ready -> tearing_down
    - tearing_down -> stopped
    - stopped, failed -> (terminal, no transitions)

Setup:
    1. uninitialized -> initializing (under the lock, so setup runs once)
    2. run ``init(provisioner)`` on the bridge; containers are recorded in the
       stop ledger as they are created
    3. publish detached handles, frozen settings and an empty token
    4. run ``post_init(settings, registry)`` on the bridge
    5. seal the registry, initializing -> ready, release the readiness gate

    Any failure shuts the bridge down, removes every recorded container and
    every other container carrying the session label, clears the registry
    and ends in the terminal failed phase. The error is re-raised to the
    caller.

Teardown:
    ready -> tearing_down, stop every recorded container on the bridge (all are
    attempted, failures are collected), wait for the confirmation, clear the
    registry, tearing_down -> stopped, shut the bridge down.

Usage:
    orchestrator = Orchestrator()
    orchestrator.setup(init, post_init)
    ...
    report = orchestrator.teardown()
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from docker.errors import DockerException

from testenv.core.config import Settings, get_settings
from testenv.core.docker_client import DockerClient
from testenv.core.exceptions import (
    AlreadyInitializedError,
    InvalidPhaseTransition,
    StopFailure,
    TeardownError,
)
from testenv.core.logging import get_logger, sanitize_error, set_phase
from testenv.services.environment.enums import (
    TERMINAL_PHASES,
    VALID_TRANSITIONS,
    Phase,
    ServiceKind,
)
from testenv.services.environment.models import ContainerHandle, StopCapability, StopLedger
from testenv.services.environment.registry import (
    SETTINGS_KEY,
    TOKEN_KEY,
    GlobalRegistry,
    container_key,
    get_global_registry,
)
from testenv.services.environment.settings import (
    EnvironmentSettings,
    FrozenEnvironmentSettings,
)
from testenv.services.provisioner import SESSION_LABEL, ContainerProvisioner
from testenv.services.runtime_bridge import RuntimeBridge

logger = get_logger(__name__)

InitFn = Callable[
    [ContainerProvisioner],
    Awaitable[tuple[Sequence[ContainerHandle], EnvironmentSettings]],
]
PostInitFn = Callable[[FrozenEnvironmentSettings, GlobalRegistry], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class TeardownReport:
    """Outcome of stopping the recorded containers.

    Attributes:
        stopped: Names of the containers that were removed
        failures: Containers that could not be removed
    """

    stopped: tuple[str, ...] = ()
    failures: tuple[StopFailure, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return not self.failures


class Orchestrator:
    """State machine driving setup -> ready -> teardown of a test environment.

    ``setup`` may be called once per orchestrator; a second call raises
    AlreadyInitializedError in every phase. ``teardown`` is idempotent.

    Attributes:
        registry: Registry the environment is published to
        ledger: Stop capabilities owned by the teardown path
        session_id: Label shared by every container of this environment
    """

    def __init__(
        self,
        registry: GlobalRegistry | None = None,
        docker: DockerClient | None = None,
        settings: Settings | None = None,
        bridge_factory: Callable[[], RuntimeBridge] | None = None,
    ) -> None:
        """Initialize the orchestrator. Nothing is started until setup().

        Args:
            registry: Registry to publish to. Defaults to the process-wide one.
            docker: Container engine client. Created on setup if None.
            settings: Orchestrator configuration. Defaults to get_settings().
            bridge_factory: Creates the background runtime on setup.
        """
        self._settings = settings or get_settings()
        self.registry = registry if registry is not None else get_global_registry()
        self.ledger = StopLedger()
        self.session_id = uuid.uuid4().hex
        self._docker = docker
        self._bridge_factory = bridge_factory or (
            lambda: RuntimeBridge(max_workers=self._settings.runtime_workers)
        )
        self._bridge: RuntimeBridge | None = None

        self._lock = threading.Lock()
        self._phase = Phase.UNINITIALIZED
        self._history: list[Phase] = [Phase.UNINITIALIZED]
        self._ready = threading.Event()
        self._settled = threading.Event()
        self._stopped = threading.Event()
        self._report = TeardownReport()
        self._failure: BaseException | None = None

    # =========================================================================
    # Lifecycle State
    # =========================================================================

    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._phase

    @property
    def phase_history(self) -> tuple[Phase, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def failure(self) -> BaseException | None:
        """Error that failed setup, if any."""
        return self._failure

    def _transition_locked(self, to_phase: Phase) -> None:
        if to_phase not in VALID_TRANSITIONS[self._phase]:
            raise InvalidPhaseTransition(from_phase=self._phase.value, to_phase=to_phase.value)
        logger.debug(f"Phase {self._phase.value} -> {to_phase.value}")
        self._phase = to_phase
        self._history.append(to_phase)
        set_phase(to_phase.value)

    def _transition(self, to_phase: Phase) -> None:
        with self._lock:
            self._transition_locked(to_phase)

    # =========================================================================
    # Setup
    # =========================================================================

    def setup(self, init: InitFn, post_init: PostInitFn | None = None) -> None:
        """Provision the environment and block until it is ready.

        Args:
            init: Coroutine function receiving the provisioner and returning the
                started container handles and the resolved settings.
            post_init: Optional coroutine function run after the handles and
                settings are published, e.g. to obtain an auth token.

        Raises:
            AlreadyInitializedError: If setup was already called.
            ProvisionError: If a container could not be started.
            Exception: Any error raised by ``init`` or ``post_init``.
        """
        with self._lock:
            if self._phase is not Phase.UNINITIALIZED:
                raise AlreadyInitializedError(
                    f"Test environment is already {self._phase.value}",
                    phase=self._phase.value,
                )
            self._transition_locked(Phase.INITIALIZING)

        logger.info("Initializing Test Environment ...", extra={"session_id": self.session_id})
        timeout = self._settings.setup_timeout

        try:
            self._bridge = self._bridge_factory()
            if self._docker is None:
                self._docker = DockerClient(self._settings.docker_host)
            provisioner = ContainerProvisioner(
                self._docker,
                self.ledger,
                session_id=self.session_id,
                settings=self._settings,
            )

            handles, settings = self._bridge.run_blocking(lambda: init(provisioner), timeout)
            frozen = self._publish(handles, settings)

            if post_init is not None:
                logger.info("Processing Post Initialization Tasks...")
                self._bridge.run_blocking(lambda: post_init(frozen, self.registry), timeout)

            self.registry.seal()
        except BaseException as e:
            self._fail(e)
            raise

        with self._lock:
            self._transition_locked(Phase.READY)
        self._ready.set()
        self._settled.set()
        logger.info("The test environment has been initialized successfully. Starting Tests...")

    def _publish(
        self,
        handles: Sequence[ContainerHandle],
        settings: EnvironmentSettings,
    ) -> FrozenEnvironmentSettings:
        """Take ownership of the stop capabilities and publish the environment."""
        if not isinstance(settings, EnvironmentSettings):
            raise TypeError(f"init must return EnvironmentSettings, got {type(settings).__name__}")

        seen: set[ServiceKind] = set()
        for handle in handles:
            if handle.stop is not None:
                self.ledger.record(handle.stop)
            if handle.service_kind in seen:
                raise ValueError(f"More than one container returned for '{handle.service_kind}'")
            seen.add(handle.service_kind)
            self.registry.set(container_key(handle.service_kind), handle.detached())
            logger.info(
                f"Using {handle.service_kind.value} test container {handle.name}",
                extra={"container_name": handle.name, "service_kind": handle.service_kind.value},
            )

        frozen = settings.freeze()
        self.registry.set(SETTINGS_KEY, frozen)
        self.registry.set(TOKEN_KEY, "")
        return frozen

    def _fail(self, error: BaseException) -> None:
        """Clean up a failed setup and enter the terminal failed phase.

        The runtime is halted first. Its worker pool is joined, so every engine
        call still in flight has returned before cleanup starts. Containers a
        cancelled ``init`` created without recording them are found through the
        session label.
        """
        logger.error(f"Test environment setup failed: {sanitize_error(error)}")
        self._failure = error
        try:
            self._halt_runtime()
            capabilities = self.ledger.drain()
            if capabilities:
                logger.warning(f"Removing {len(capabilities)} container(s) started before the failure")
            report = self._confirm_stopped(capabilities, sweep=True)
            if report.stopped or report.failures:
                self._log_report(report)
            self._report = report
        finally:
            self.registry.clear()
            with self._lock:
                self._transition_locked(Phase.FAILED)
            self._release()
            self._settled.set()

    def _halt_runtime(self) -> None:
        """Shut the runtime down, cancelling work setup left behind."""
        bridge, self._bridge = self._bridge, None
        if bridge is not None:
            bridge.shutdown()

    # =========================================================================
    # Readiness
    # =========================================================================

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Block until setup completes.

        Returns:
            True if the environment is ready, False on timeout or failed setup.
        """
        if not self._settled.wait(timeout):
            return False
        return self._ready.is_set() and self.phase is Phase.READY

    def token(self) -> str:
        return self.registry.token()

    def container_uri(self, kind: ServiceKind | str) -> str:
        return self.registry.container_uri(kind)

    def settings(self) -> FrozenEnvironmentSettings:
        return self.registry.settings()

    # =========================================================================
    # Teardown
    # =========================================================================

    def teardown(self, strict: bool = False) -> TeardownReport:
        """Stop every recorded container and release the environment.

        A no-op before setup and after a previous teardown or failed setup.
        Called while setup is running, it waits for setup to finish first.

        Args:
            strict: Raise TeardownError if any container could not be stopped.

        Returns:
            Names of the stopped containers and the failures.
        """
        while True:
            with self._lock:
                phase = self._phase
                if phase is Phase.READY:
                    self._transition_locked(Phase.TEARING_DOWN)
                    break
            if phase is Phase.INITIALIZING:
                logger.info("Teardown requested during setup, waiting for setup to finish")
                self._settled.wait()
                continue
            if phase is Phase.TEARING_DOWN:
                self._stopped.wait()
                return self._report
            if phase in TERMINAL_PHASES:
                logger.debug(f"Test environment already {phase.value}, nothing to tear down")
            else:
                logger.debug("Teardown before setup, nothing to tear down")
            return self._report

        logger.info("Shutting Down Test Environment. Stopping Containers...")
        self.registry.begin_drain()
        capabilities = self.ledger.drain()
        report = TeardownReport()
        try:
            report = self._confirm_stopped(capabilities)
        finally:
            # Cleared only after the stop confirmation has arrived
            self.registry.clear()
            self._report = report
            self._transition(Phase.STOPPED)
            self._release()
            self._stopped.set()

        self._log_report(report)

        if strict and report.failures:
            raise TeardownError(failures=list(report.failures))
        return report

    def _confirm_stopped(
        self,
        capabilities: list[StopCapability],
        sweep: bool = False,
    ) -> TeardownReport:
        """Send the stop command to the runtime and block for its confirmation.

        With ``sweep``, containers labelled with this session but missing from
        ``capabilities`` are removed as well.
        """
        sweep = sweep and self._docker is not None
        if not capabilities and not sweep:
            return TeardownReport()
        if self._bridge is None or not self._bridge.is_running:
            self._bridge = self._bridge_factory()

        timeout = self._settings.teardown_timeout
        try:
            return self._bridge.run_blocking(lambda: self._stop_all(capabilities, sweep), timeout)
        except TimeoutError:
            pending = [c for c in capabilities if not c.invoked] or capabilities
            return TeardownReport(
                failures=tuple(
                    StopFailure(c.name, c.container_id, f"no confirmation within {timeout}s")
                    for c in pending
                ),
            )

    async def _stop_all(
        self, capabilities: list[StopCapability], sweep: bool = False
    ) -> TeardownReport:
        results = await asyncio.gather(
            *(self._stop_one(capability) for capability in capabilities),
            return_exceptions=True,
        )

        stopped: list[str] = []
        failures: list[StopFailure] = []
        for capability, result in zip(capabilities, results, strict=True):
            if isinstance(result, BaseException):
                failures.append(
                    StopFailure(capability.name, capability.container_id, sanitize_error(result))
                )
            else:
                stopped.append(capability.name)

        if sweep and self._docker is not None:
            known = {capability.container_id for capability in capabilities}
            swept, sweep_failures = await self._remove_unrecorded(self._docker, known)
            stopped.extend(swept)
            failures.extend(sweep_failures)
        return TeardownReport(stopped=tuple(stopped), failures=tuple(failures))

    async def _remove_unrecorded(
        self, docker: DockerClient, known: set[str]
    ) -> tuple[list[str], list[StopFailure]]:
        """Remove containers of this session that were never recorded in the ledger."""
        try:
            labelled = await docker.containers_with_label(SESSION_LABEL, self.session_id)
        except DockerException as e:
            logger.warning(
                f"Cannot list containers of session {self.session_id}: {sanitize_error(e)}",
                extra={"session_id": self.session_id},
            )
            return [], []

        leftovers = [container_id for container_id in labelled if container_id not in known]
        results = await asyncio.gather(
            *(docker.remove_container(container_id) for container_id in leftovers),
            return_exceptions=True,
        )

        removed: list[str] = []
        failures: list[StopFailure] = []
        for container_id, result in zip(leftovers, results, strict=True):
            name = container_id[:12]
            if isinstance(result, BaseException):
                failures.append(StopFailure(name, container_id, sanitize_error(result)))
            else:
                logger.warning(
                    f"Removed unrecorded container {name}",
                    extra={"container_id": container_id, "session_id": self.session_id},
                )
                removed.append(name)
        return removed, failures

    async def _stop_one(self, capability: StopCapability) -> None:
        logger.info(
            f"Stopping container {capability.name} ({capability.container_id[:12]})",
            extra={"container_name": capability.name, "container_id": capability.container_id},
        )
        await capability()

    def _release(self) -> None:
        """Close the engine client and shut the background runtime down."""
        bridge, self._bridge = self._bridge, None
        if bridge is None:
            return
        try:
            if self._docker is not None and bridge.is_running:
                bridge.run_blocking(self._docker.close, timeout=10)
        except Exception as e:
            logger.debug(f"Error closing Docker client: {e}")
        finally:
            bridge.shutdown()

    def _log_report(self, report: TeardownReport) -> None:
        if report.failures:
            for failure in report.failures:
                logger.error(
                    f"Failed to remove container {failure.name}: {failure.error}",
                    extra={"container_name": failure.name, "container_id": failure.container_id},
                )
            logger.error(
                f"Test environment shut down with {len(report.failures)} container(s) left running"
            )
        else:
            logger.info(
                "The test environment has been shut down successfully.",
                extra={"stopped": list(report.stopped)},
            )
