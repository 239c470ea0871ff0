"""Readiness checks for service containers.

A probe is a coroutine function returning True once the service accepts work.
``wait_until`` polls a probe with exponential backoff and jitter and raises
ProvisionError(TIMEOUT) if the service is not ready within its bound.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import asyncpg
import httpx

from testenv.core.config import get_settings
from testenv.core.exceptions import ProvisionError, ProvisionErrorKind
from testenv.core.logging import get_logger, redact_uri, sanitize_error

if TYPE_CHECKING:
    from testenv.core.docker_client import DockerClient

logger = get_logger(__name__)

Probe = Callable[[], Awaitable[bool]]


async def wait_until(
    probe: Probe,
    *,
    timeout: float,
    description: str,
    service_kind: str | None = None,
    initial_delay: float | None = None,
    max_delay: float | None = None,
) -> int:
    """Poll ``probe`` until it returns True.

    Args:
        probe: Readiness probe
        timeout: Maximum time to wait in seconds
        description: What is being waited for, used in logs and errors
        service_kind: Service kind reported on timeout
        initial_delay: Initial delay between probes, defaults to configuration
        max_delay: Maximum delay between probes, defaults to configuration

    Returns:
        Number of attempts it took.

    Raises:
        ProvisionError: With kind TIMEOUT if the probe never succeeded.
    """
    settings = get_settings()
    delay = initial_delay if initial_delay is not None else settings.readiness_initial_delay
    max_delay = max_delay if max_delay is not None else settings.readiness_max_delay

    loop = asyncio.get_running_loop()
    start = loop.time()
    attempt = 0
    last_error: BaseException | None = None

    while True:
        attempt += 1
        remaining = timeout - (loop.time() - start)
        try:
            if await asyncio.wait_for(probe(), timeout=max(remaining, 0.001)):
                if attempt > 1:
                    logger.info(f"{description} ready after {attempt} attempts")
                return attempt
        except TimeoutError as e:
            last_error = e
        except Exception as e:
            last_error = e
            logger.debug(f"{description} probe failed (attempt {attempt}): {sanitize_error(e)}")

        remaining = timeout - (loop.time() - start)
        if remaining <= 0:
            break
        # Exponential backoff with jitter
        jitter = random.uniform(0, delay * 0.1)  # noqa: S311
        sleep_time = min(delay + jitter, remaining, max_delay)
        await asyncio.sleep(sleep_time)
        delay = min(delay * 2, max_delay)

    details = {"timeout": timeout, "attempts": attempt}
    if last_error is not None:
        details["last_error"] = sanitize_error(last_error)
    raise ProvisionError(
        f"{description} not ready after {timeout} seconds ({attempt} attempts)",
        kind=ProvisionErrorKind.TIMEOUT,
        service_kind=service_kind,
        details=details,
    )


def port_open(host: str, port: int) -> Probe:
    """Probe succeeding once a TCP connection to ``host:port`` is accepted."""

    async def probe() -> bool:
        try:
            _, writer = await asyncio.open_connection(host, port)
        except OSError:
            return False
        writer.close()
        await writer.wait_closed()
        return True

    return probe


def http_ok(
    url: str,
    expected_status: int = 200,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Probe:
    """Probe succeeding once ``GET url`` answers with ``expected_status``."""

    async def probe() -> bool:
        try:
            async with httpx.AsyncClient(timeout=2.0, transport=transport) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Health check {url} failed: {e}")
            return False
        return response.status_code == expected_status

    return probe


def postgres_accepts(dsn: str) -> Probe:
    """Probe succeeding once PostgreSQL accepts a connection and answers a query."""

    async def probe() -> bool:
        try:
            conn = await asyncpg.connect(dsn, timeout=2)
        except (OSError, TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.debug(f"PostgreSQL at {redact_uri(dsn)} not ready: {sanitize_error(e)}")
            return False
        try:
            return bool(await conn.fetchval("SELECT 1") == 1)
        finally:
            await conn.close()

    return probe


def log_contains(docker: DockerClient, container_id: str, needle: str, occurrences: int = 1) -> Probe:
    """Probe succeeding once the container logged ``needle`` ``occurrences`` times."""

    async def probe() -> bool:
        logs = await docker.container_logs(container_id)
        return logs is not None and logs.count(needle) >= occurrences

    return probe
