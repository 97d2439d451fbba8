"""Local process platform implementation."""

import asyncio
import contextlib
import logging
import os
import shlex
import shutil
import signal
import tempfile
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

from agent_matrix.errors import PreconditionError
from agent_matrix.platforms.base import InstanceSpec, RuntimePlatform
from agent_matrix.platforms.process.config import ProcessPlatformConfig

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class ProcessInstance:
    """A runtime started as a child process in its own working directory."""

    name: str
    workdir: Path
    process: asyncio.subprocess.Process = field(repr=False)
    output: bytearray = field(default_factory=bytearray, repr=False)
    reader: asyncio.Task[None] | None = field(default=None, repr=False)
    stopped: bool = False

    def resolve(self, path: str) -> Path:
        """Map an instance path onto the working directory."""
        return self.workdir / path.lstrip("/")


@dataclass(frozen=True, kw_only=True)
class ProcessPlatform(RuntimePlatform[ProcessInstance]):
    """Runs each runtime instance as a local subprocess.

    The variant image is the command line; ``{workdir}`` and ``{port}``
    placeholders are substituted before launch.
    """

    config: ProcessPlatformConfig

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: ProcessPlatformConfig
    ) -> AsyncGenerator["ProcessPlatform", None]:
        """Create platform; instances are stopped by their sessions."""
        yield cls(config=config)

    async def check_available(self) -> None:
        """Verify the base directory for working directories exists."""
        base_dir = self.config.base_dir
        if base_dir is not None and not base_dir.is_dir():
            raise PreconditionError(f"Base directory {base_dir} does not exist")

    async def start_instance(self, spec: InstanceSpec) -> ProcessInstance:
        """Prepare the working directory and launch the command."""
        workdir = Path(
            await asyncio.to_thread(
                tempfile.mkdtemp, prefix=f"{spec.name}-", dir=self.config.base_dir
            )
        )
        for mount in spec.mounts:
            target = workdir / mount.target.lstrip("/")
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, mount.source, target)

        command = [
            part.format(workdir=workdir, port=spec.ports[0])
            for part in shlex.split(spec.image)
        ]
        log.info("Starting process %s: %s", spec.name, shlex.join(command))
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=workdir,
            env={**os.environ, **spec.environment},
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        instance = ProcessInstance(name=spec.name, workdir=workdir, process=process)
        instance.reader = asyncio.create_task(self._drain(instance))
        return instance

    async def _drain(self, instance: ProcessInstance) -> None:
        stream = instance.process.stdout
        if stream is None:
            return
        while chunk := await stream.read(65536):
            instance.output.extend(chunk)
            overflow = len(instance.output) - self.config.max_log_bytes
            if overflow > 0:
                del instance.output[:overflow]

    async def stop_instance(self, instance: ProcessInstance) -> None:
        """Terminate the process group, killing it if it does not exit in time.

        Every process the command forked shares its group and is signalled
        with it; output still open after the stop timeout is abandoned.
        """
        if instance.stopped:
            return
        instance.stopped = True

        process = instance.process
        if process.returncode is None:
            _signal_group(process, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), self.config.stop_timeout)
            except TimeoutError:
                log.warning("Process %s did not terminate, killing", instance.name)
                _signal_group(process, signal.SIGKILL)
                await process.wait()
        _signal_group(process, signal.SIGKILL)

        if instance.reader is not None:
            done, _ = await asyncio.wait(
                {instance.reader}, timeout=self.config.stop_timeout
            )
            if not done:
                log.warning("Output of %s still open, abandoning it", instance.name)
                instance.reader.cancel()

        if not self.config.keep_workdirs:
            await asyncio.to_thread(
                shutil.rmtree, instance.workdir, ignore_errors=True
            )

    async def is_alive(self, instance: ProcessInstance) -> bool:
        """Check whether the process has not exited."""
        return not instance.stopped and instance.process.returncode is None

    async def address(self, instance: ProcessInstance, port: int) -> tuple[str, int]:
        """Processes listen directly on the configured host."""
        return self.config.host, port

    async def logs(self, instance: ProcessInstance) -> str:
        """Return the captured combined output.

        Once the process has exited, output still in the pipe is collected
        first.
        """
        if instance.process.returncode is not None and instance.reader is not None:
            await asyncio.wait({instance.reader}, timeout=1.0)
        return instance.output.decode(errors="replace")

    async def copy_into(
        self, instance: ProcessInstance, source: Path, directory: str
    ) -> None:
        """Copy the file into the directory under the working directory."""
        target_dir = instance.resolve(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copy2, source, target_dir / source.name)

    async def list_directory(
        self, instance: ProcessInstance, directory: str
    ) -> Sequence[str]:
        """List the directory under the working directory."""
        target_dir = instance.resolve(directory)
        if not target_dir.is_dir():
            return []
        return sorted(entry.name for entry in target_dir.iterdir())


def _signal_group(process: asyncio.subprocess.Process, signum: int) -> None:
    """Send a signal to the process group led by the process, if any is left."""
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signum)
