"""Docker API wrapper for test container management.

This module provides an async wrapper around docker-py for creating, starting,
inspecting and removing the containers of a test environment. The synchronous
docker-py calls run in the event loop's default executor via
asyncio.to_thread() so they never block the background runtime.

Lookups (status, logs) follow a forgiving style and return None on engine
errors. Operations that change engine state (create, start, remove) raise the
docker-py exception so the provisioner can classify it.

Usage:
    async with DockerClient() as client:
        container_id = await client.create_container("postgres:16-alpine", name="db")
        await client.start_container(container_id)
        port = await client.published_port(container_id, 5432)
        await client.remove_container(container_id)
"""

from __future__ import annotations

import asyncio
import io
import tarfile
import time
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from docker import DockerClient as BaseDockerClient  # type: ignore[attr-defined]
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from testenv.core.logging import get_logger

if TYPE_CHECKING:
    from docker.models.containers import Container

logger = get_logger(__name__)


class DockerClient:
    """Async wrapper around docker-py for test container management.

    The client supports both Docker and Podman since they share the same API.
    Construction never touches the engine; ``connect()`` pings it.

    Attributes:
        _docker_host: The engine URL (e.g., unix:///var/run/docker.sock)
        _client: The underlying docker-py client instance
    """

    def __init__(self, docker_host: str | None = None) -> None:
        """Initialize Docker client.

        Args:
            docker_host: Engine URL (e.g., unix:///var/run/docker.sock,
                        tcp://192.168.1.100:2375). If None, uses DOCKER_HOST
                        or the standard local socket.
        """
        self._docker_host = docker_host
        self._client: BaseDockerClient | None = None

    def _require_client(self) -> BaseDockerClient:
        if self._client is None:
            if self._docker_host:
                self._client = BaseDockerClient(base_url=self._docker_host)
            else:
                self._client = BaseDockerClient.from_env()
        return self._client

    async def __aenter__(self) -> DockerClient:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()

    async def connect(self) -> bool:
        """Test connection to the container engine.

        Returns:
            True if the engine answered a ping, False otherwise.
        """
        try:
            client = await asyncio.to_thread(self._require_client)
            await asyncio.to_thread(client.ping)
            logger.info(
                "Successfully connected to Docker daemon",
                extra={"docker_host": self._docker_host or "default"},
            )
            return True
        except DockerException as e:
            logger.warning(
                f"Failed to connect to Docker daemon: {e}",
                extra={"docker_host": self._docker_host or "default", "error": str(e)},
            )
            return False

    def host_address(self) -> str:
        """Host name under which published container ports are reachable.

        Taken from the connected client's base URL, so a remote engine selected
        through DOCKER_HOST resolves to its host. Socket and pipe transports
        publish on localhost.
        """
        base_url = self._client.api.base_url if self._client is not None else self._docker_host
        if base_url:
            parts = urlsplit(base_url)
            if parts.scheme in ("tcp", "http", "https") and parts.hostname:
                return parts.hostname
        return "localhost"

    async def ensure_network(self, name: str) -> bool:
        """Create a bridge network unless it already exists.

        Args:
            name: Network name.

        Returns:
            True if the network was created, False if it already existed.
        """
        client = self._require_client()
        existing = await asyncio.to_thread(client.networks.list, names=[name])
        if any(network.name == name for network in existing):
            logger.debug(f"Reusing network {name}", extra={"network": name})
            return False

        await asyncio.to_thread(client.networks.create, name, driver="bridge")
        logger.info(f"Created network {name}", extra={"network": name})
        return True

    async def create_container(
        self,
        image: str,
        *,
        name: str,
        command: list[str] | None = None,
        environment: dict[str, str] | None = None,
        ports: list[int] | None = None,
        volumes: dict[str, dict[str, str]] | None = None,
        network: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Create (but do not start) a container, pulling the image if missing.

        Every port in ``ports`` is published on a random host port.

        Returns:
            The new container ID.

        Raises:
            ImageNotFound: If the image cannot be pulled.
            DockerException: On any other engine error.
        """
        client = self._require_client()

        try:
            await asyncio.to_thread(client.images.get, image)
        except ImageNotFound:
            logger.info(f"Pulling image {image}", extra={"image": image})
            await asyncio.to_thread(client.images.pull, image)

        container: Container = await asyncio.to_thread(
            client.containers.create,
            image,
            name=name,
            command=command,
            environment=environment or {},
            ports={f"{port}/tcp": None for port in ports or []},
            volumes=volumes or {},
            network=network,
            labels=labels or {},
            detach=True,
        )
        logger.debug(
            f"Created container {name}",
            extra={"container_id": container.id, "container_name": name, "image": image},
        )
        return str(container.id)

    async def put_file(
        self,
        container_id: str,
        path: str,
        data: bytes,
        *,
        owner: tuple[int, int] = (0, 0),
    ) -> None:
        """Copy ``data`` into the container at the absolute ``path``.

        The archive carries every parent directory of ``path`` and is extracted
        at ``/``, so directories missing from the image are created. The engine
        applies ``owner`` (uid, gid) to the file and to each of those
        directories, including ones that already exist.
        """
        client = self._require_client()
        target = PurePosixPath(path)
        if not target.is_absolute():
            raise ValueError(f"Container path must be absolute: {path}")
        relative = target.relative_to("/")
        uid, gid = owner
        mtime = int(time.time())

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as archive:
            for parent in reversed(relative.parents[:-1]):
                directory = tarfile.TarInfo(name=str(parent))
                directory.type = tarfile.DIRTYPE
                directory.mode = 0o755
                directory.mtime = mtime
                directory.uid, directory.gid = uid, gid
                archive.addfile(directory)

            info = tarfile.TarInfo(name=str(relative))
            info.size = len(data)
            info.mode = 0o644
            info.mtime = mtime
            info.uid, info.gid = uid, gid
            archive.addfile(info, io.BytesIO(data))

        container = await asyncio.to_thread(client.containers.get, container_id)
        ok = await asyncio.to_thread(container.put_archive, "/", buffer.getvalue())
        if not ok:
            raise APIError(f"Failed to copy {target.name} into container {container_id}")
        logger.debug(
            f"Copied {len(data)} bytes to {path}",
            extra={"container_id": container_id, "path": path},
        )

    async def start_container(self, container_id: str) -> None:
        """Start a created container.

        Raises:
            DockerException: If the engine refuses to start the container.
        """
        client = self._require_client()
        container = await asyncio.to_thread(client.containers.get, container_id)
        await asyncio.to_thread(container.start)
        logger.info(
            f"Started container {container.name}",
            extra={"container_id": container_id},
        )

    async def published_port(self, container_id: str, port: int) -> int:
        """Host port bound to the container's TCP ``port``.

        Raises:
            DockerException: If the port is not published.
        """
        client = self._require_client()
        container = await asyncio.to_thread(client.containers.get, container_id)
        bindings: dict[str, Any] = container.attrs["NetworkSettings"]["Ports"] or {}
        mapping = bindings.get(f"{port}/tcp")
        if not mapping:
            raise DockerException(f"Port {port}/tcp is not published by {container_id}")
        return int(mapping[0]["HostPort"])

    async def container_logs(self, container_id: str) -> str | None:
        """Get the combined stdout/stderr of a container, or None if unavailable."""
        try:
            client = self._require_client()
            container = await asyncio.to_thread(client.containers.get, container_id)
            raw: bytes = await asyncio.to_thread(container.logs)
            return raw.decode("utf-8", errors="replace")
        except NotFound:
            logger.debug(f"Container not found: {container_id}", extra={"container_id": container_id})
            return None
        except DockerException as e:
            logger.warning(
                f"Error reading logs of container {container_id}: {e}",
                extra={"container_id": container_id, "error": str(e)},
            )
            return None

    async def get_container_status(self, container_id: str) -> str | None:
        """Get container status (created, running, exited, etc).

        Returns:
            Status string or None if not found.
        """
        try:
            client = self._require_client()
            container = await asyncio.to_thread(client.containers.get, container_id)
            status: str = container.status
            return status
        except NotFound:
            logger.debug(f"Container not found: {container_id}", extra={"container_id": container_id})
            return None
        except DockerException as e:
            logger.warning(
                f"Error getting status for container {container_id}: {e}",
                extra={"container_id": container_id, "error": str(e)},
            )
            return None

    async def containers_with_label(self, label: str, value: str) -> list[str]:
        """IDs of every container, running or not, carrying ``label=value``.

        Raises:
            DockerException: If the engine cannot be queried.
        """
        client = self._require_client()
        containers = await asyncio.to_thread(
            client.containers.list, all=True, filters={"label": f"{label}={value}"}
        )
        return [str(container.id) for container in containers]

    async def remove_container(
        self,
        container_id: str,
        *,
        force: bool = True,
        volumes: bool = True,
    ) -> bool:
        """Stop and remove a container together with its anonymous volumes.

        Returns:
            True if the container was removed, False if it no longer existed.

        Raises:
            DockerException: If the engine failed to remove the container.
        """
        client = self._require_client()
        try:
            container = await asyncio.to_thread(client.containers.get, container_id)
            await asyncio.to_thread(container.remove, force=force, v=volumes)
        except NotFound:
            logger.warning(
                f"Cannot remove container - not found: {container_id}",
                extra={"container_id": container_id},
            )
            return False

        logger.info(
            f"Removed container {container_id[:12]}",
            extra={"container_id": container_id, "force": force},
        )
        return True

    async def close(self) -> None:
        """Close the engine connection. Safe to call multiple times."""
        if self._client is not None:
            try:
                await asyncio.to_thread(self._client.close)
                logger.debug("Docker client connection closed")
            except Exception as e:
                # Log but don't raise - we're cleaning up
                logger.debug(f"Error closing Docker client: {e}")
            finally:
                self._client = None
