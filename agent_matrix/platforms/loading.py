"""Discovery of runtime platform plugins.

Platforms register a ``PlatformManifest`` under the ``agent_matrix.platforms``
entry point group; the ``--platform`` option selects one by name.
"""

from importlib.metadata import entry_points
from typing import Any

from agent_matrix.platforms.manifest import PlatformManifest

ENTRY_POINT_GROUP = "agent_matrix.platforms"


class PlatformNotFoundError(Exception):
    """Raised when no installed plugin provides the requested platform."""


def installed_platforms() -> list[str]:
    """Names of the installed platform plugins, sorted."""
    return sorted(entry.name for entry in entry_points(group=ENTRY_POINT_GROUP))


def load_platform_manifest(key: str) -> PlatformManifest[Any, Any]:
    """Import the plugin registered as ``key`` and return its manifest.

    Raises:
        PlatformNotFoundError: If no plugin is registered under ``key`` or the
            registered object is not a platform manifest

    """
    matches = entry_points(group=ENTRY_POINT_GROUP, name=key)
    if not matches:
        raise PlatformNotFoundError(
            f"Platform '{key}' not found. Available platforms: "
            f"{installed_platforms()}"
        )

    entry = matches[key]
    manifest = entry.load()
    if not isinstance(manifest, PlatformManifest):
        raise PlatformNotFoundError(
            f"Entry point '{key}' ({entry.value}) is not a platform manifest"
        )
    return manifest
