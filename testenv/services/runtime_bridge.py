"""Background asyncio runtime driven from synchronous code.

RuntimeBridge owns a dedicated event loop running on its own thread, with its
own worker pool as the loop's default executor (so ``asyncio.to_thread`` calls
made by the Docker client run on the bridge's workers, not the caller's).

Synchronous callers hand it a coroutine function and block on a single-use
completion future until the result or the exception is available:

    bridge = RuntimeBridge(max_workers=4)
    try:
        handle = bridge.run_blocking(lambda: provisioner.start_postgres(config))
    finally:
        bridge.shutdown()

The runtime is independent of any event loop the caller may already be running.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TypeVar

from testenv.core.config import get_settings
from testenv.core.exceptions import RuntimeBridgeError
from testenv.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RuntimeBridge:
    """Runs async work on a dedicated background loop for synchronous callers.

    Attributes:
        name: Thread name of the loop thread; workers use it as prefix
    """

    def __init__(self, max_workers: int | None = None, name: str = "testenv-runtime") -> None:
        """Start the background loop thread.

        Args:
            max_workers: Worker threads of the loop's executor. Defaults to the
                configured runtime_workers.
            name: Name of the loop thread.
        """
        workers = max_workers or get_settings().runtime_workers
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{name}-worker")
        self._loop = asyncio.new_event_loop()
        self._loop.set_default_executor(self._executor)
        self._lock = threading.Lock()
        self._closed = False
        self._started = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()
        self._started.wait()
        logger.debug(f"Background runtime started with {workers} workers", extra={"workers": workers})

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._started.set)
        try:
            self._loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self._loop)
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()
            logger.debug("Background runtime loop closed")

    @property
    def is_running(self) -> bool:
        return not self._closed and self._thread.is_alive()

    def in_runtime_thread(self) -> bool:
        """True when called from the bridge's own loop thread."""
        return threading.current_thread() is self._thread

    def submit(self, task: Callable[[], Awaitable[T]]) -> Future[T]:
        """Schedule ``task`` on the background loop without waiting.

        Returns:
            A future completed exactly once with the task's result or error.

        Raises:
            RuntimeBridgeError: If the bridge has been shut down.
        """
        with self._lock:
            if self._closed:
                raise RuntimeBridgeError("Cannot dispatch work: background runtime is shut down")
            return asyncio.run_coroutine_threadsafe(self._invoke(task), self._loop)

    def run_blocking(self, task: Callable[[], Awaitable[T]], timeout: float | None = None) -> T:
        """Run ``task`` on the background loop and block until it completes.

        Exceptions raised by the task are re-raised here unchanged.

        Args:
            task: Coroutine function to run.
            timeout: Optional bound in seconds. None waits indefinitely.

        Raises:
            RuntimeBridgeError: If called from the loop thread or after shutdown.
            TimeoutError: If ``timeout`` elapses; the task keeps running.
        """
        if self.in_runtime_thread():
            raise RuntimeBridgeError("run_blocking() called from the background runtime would deadlock")
        return self.submit(task).result(timeout)

    async def _invoke(self, task: Callable[[], Awaitable[T]]) -> T:
        return await task()

    def shutdown(self, wait: bool = True) -> None:
        """Stop the loop and its worker pool. Safe to call multiple times.

        Work still pending on the loop is cancelled, so call this only once
        every dispatched task has completed.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._loop.call_soon_threadsafe(self._loop.stop)
        if wait and not self.in_runtime_thread():
            self._thread.join()
        self._executor.shutdown(wait=wait)
        logger.debug("Background runtime shut down")

    def __enter__(self) -> RuntimeBridge:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
