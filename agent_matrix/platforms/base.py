"""Abstract base class for runtime platforms hosting server instances."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True, kw_only=True)
class Mount:
    """A host file made visible read-only inside an instance."""

    source: Path
    target: str


@dataclass(frozen=True, kw_only=True)
class InstanceSpec:
    """Everything a platform needs to launch one runtime instance."""

    name: str
    image: str
    ports: Sequence[int]
    environment: Mapping[str, str] = field(default_factory=dict)
    mounts: Sequence[Mount] = ()


@dataclass(frozen=True, kw_only=True)
class RuntimePlatform[T](ABC):
    """Abstract base for platforms that run isolated server instances.

    Generic type T is the instance handle - whatever the platform needs to
    address a running instance later. Callers treat it as opaque.
    """

    @abstractmethod
    async def check_available(self) -> None:
        """Verify the platform can be used.

        Raises:
            PreconditionError: If the platform is unreachable

        """

    @abstractmethod
    async def start_instance(self, spec: InstanceSpec) -> T:
        """Launch an instance and return its handle without waiting for it."""

    @abstractmethod
    async def stop_instance(self, instance: T) -> None:
        """Stop and remove an instance. Stopping a dead instance is a no-op."""

    @abstractmethod
    async def is_alive(self, instance: T) -> bool:
        """Report whether the instance process is still running."""

    @abstractmethod
    async def address(self, instance: T, port: int) -> tuple[str, int]:
        """Return the host-reachable (host, port) for an instance port."""

    @abstractmethod
    async def logs(self, instance: T) -> str:
        """Return captured stdout/stderr of the instance."""

    @abstractmethod
    async def copy_into(self, instance: T, source: Path, directory: str) -> None:
        """Copy a host file into a directory of the instance."""

    @abstractmethod
    async def list_directory(self, instance: T, directory: str) -> Sequence[str]:
        """List the file names in a directory of the instance."""
