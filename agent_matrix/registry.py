"""Artifact registry supplying application packages and runtime images."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from agent_matrix.errors import PreconditionError
from agent_matrix.models.definition import ServerVariant, TestApplication

log = logging.getLogger(__name__)


class ArtifactNotFoundError(Exception):
    """Raised when an application artifact cannot be resolved."""


class ArtifactRegistry(ABC):
    """Source of deployable artifacts and runtime image references."""

    @abstractmethod
    async def check_available(self) -> None:
        """Verify the registry can be reached.

        Raises:
            PreconditionError: If the registry is unreachable

        """

    @abstractmethod
    def resolve_artifact(self, application_id: str) -> Path:
        """Return a local path to the application's deployable artifact.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist

        """

    @abstractmethod
    def resolve_image(self, variant: ServerVariant) -> str:
        """Return the image reference a variant is started from."""


@dataclass(frozen=True, kw_only=True)
class FileSystemArtifactRegistry(ArtifactRegistry):
    """Registry backed by a directory of built application artifacts."""

    root: Path
    applications: Mapping[str, TestApplication]
    image_prefix: str | None = None

    async def check_available(self) -> None:
        """Verify the artifact directory exists."""
        if not await asyncio.to_thread(self.root.is_dir):
            raise PreconditionError(f"Artifact directory {self.root} does not exist")
        log.info("Artifact registry at %s", self.root)

    def resolve_artifact(self, application_id: str) -> Path:
        """Locate the artifact declared for the application under the root."""
        try:
            application = self.applications[application_id]
        except KeyError:
            raise ArtifactNotFoundError(
                f"Unknown application '{application_id}'"
            ) from None

        path = self.root / application.artifact
        if not path.is_file():
            raise ArtifactNotFoundError(
                f"Artifact for '{application_id}' not found at {path}"
            )
        return path

    def resolve_image(self, variant: ServerVariant) -> str:
        """Prefix the variant image with the configured mirror, if any."""
        if self.image_prefix:
            return f"{self.image_prefix.rstrip('/')}/{variant.image}"
        return variant.image
