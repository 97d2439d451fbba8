"""Docker platform implementation based on testcontainers."""

import asyncio
import io
import logging
import tarfile
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

from docker.errors import DockerException, NotFound
from testcontainers.core.container import DockerContainer
from testcontainers.core.docker_client import DockerClient

from agent_matrix.errors import PreconditionError
from agent_matrix.platforms.base import InstanceSpec, RuntimePlatform
from agent_matrix.platforms.docker.config import DockerPlatformConfig

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class DockerPlatform(RuntimePlatform[DockerContainer]):
    """Runs each runtime instance as a Docker container."""

    config: DockerPlatformConfig
    client: DockerClient = field(repr=False)
    pending: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: DockerPlatformConfig
    ) -> AsyncGenerator["DockerPlatform", None]:
        """Create platform with managed Docker client lifecycle."""
        try:
            client = await asyncio.to_thread(DockerClient)
        except DockerException as exc:
            raise PreconditionError(f"Docker is not available: {exc}") from exc
        platform = cls(config=config, client=client)
        try:
            yield platform
        finally:
            if platform.pending:
                await asyncio.gather(*platform.pending, return_exceptions=True)
            client.client.close()

    async def check_available(self) -> None:
        """Ping the Docker daemon."""
        try:
            await asyncio.to_thread(self.client.client.ping)
        except DockerException as exc:
            raise PreconditionError(f"Docker daemon unreachable: {exc}") from exc

    async def start_instance(self, spec: InstanceSpec) -> DockerContainer:
        """Create and start the container; does not wait for readiness."""
        container = DockerContainer(spec.image).with_exposed_ports(*spec.ports)
        container.with_name(f"{self.config.name_prefix}{spec.name}")
        for key, value in spec.environment.items():
            container.with_env(key, value)
        for mount in spec.mounts:
            container.with_volume_mapping(str(mount.source), mount.target, "ro")
        if self.config.network:
            container.with_kwargs(network=self.config.network)

        log.info(
            "Starting container: image=%s, name=%s, ports=%s, env=%s",
            spec.image,
            spec.name,
            list(spec.ports),
            sorted(spec.environment),
        )
        starting = asyncio.ensure_future(asyncio.to_thread(container.start))
        try:
            await asyncio.shield(starting)
        except asyncio.CancelledError:
            log.warning("Start of %s interrupted, removing it once created", spec.name)
            cleanup = asyncio.create_task(self._remove_after_start(starting, container))
            self.pending.add(cleanup)
            cleanup.add_done_callback(self.pending.discard)
            raise
        return container

    async def _remove_after_start(
        self, starting: asyncio.Future[DockerContainer], container: DockerContainer
    ) -> None:
        try:
            await starting
        except Exception as exc:
            log.debug("Interrupted container never started: %s", exc)
            return
        try:
            await self.stop_instance(container)
        except DockerException as exc:
            log.warning("Failed to remove interrupted container: %s", exc)

    async def stop_instance(self, instance: DockerContainer) -> None:
        """Remove the container, tolerating one that is already gone."""
        try:
            await asyncio.to_thread(instance.stop)
        except NotFound:
            log.debug("Container already removed")

    async def is_alive(self, instance: DockerContainer) -> bool:
        """Check the container state reported by the daemon."""
        wrapped = instance.get_wrapped_container()
        if wrapped is None:
            return False
        try:
            await asyncio.to_thread(wrapped.reload)
        except NotFound:
            return False
        return bool(wrapped.status == "running")

    async def address(self, instance: DockerContainer, port: int) -> tuple[str, int]:
        """Resolve the host and mapped port of a container port."""
        host = self.config.host_override or await asyncio.to_thread(
            instance.get_container_host_ip
        )
        mapped = await asyncio.to_thread(instance.get_exposed_port, port)
        return host, int(mapped)

    async def logs(self, instance: DockerContainer) -> str:
        """Return combined stdout and stderr of the container."""
        if instance.get_wrapped_container() is None:
            return ""
        stdout, stderr = await asyncio.to_thread(instance.get_logs)
        return (stdout + stderr).decode(errors="replace")

    async def copy_into(
        self, instance: DockerContainer, source: Path, directory: str
    ) -> None:
        """Stream the file into the container as a single-entry tar archive."""
        archive = await asyncio.to_thread(_tar_single_file, source)
        wrapped = instance.get_wrapped_container()
        if not await asyncio.to_thread(wrapped.put_archive, directory, archive):
            raise RuntimeError(f"Failed to copy {source.name} into {directory}")

    async def list_directory(
        self, instance: DockerContainer, directory: str
    ) -> Sequence[str]:
        """List a container directory with ls."""
        result = await asyncio.to_thread(instance.exec, ["ls", "-1", directory])
        if result.exit_code != 0:
            raise RuntimeError(
                f"Failed to list {directory}: {result.output.decode().strip()}"
            )
        return result.output.decode().splitlines()


def _tar_single_file(source: Path) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        tar.add(source, arcname=source.name)
    return buffer.getvalue()
