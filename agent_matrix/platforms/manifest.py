"""Platform manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from pydantic import BaseModel

from agent_matrix.platforms.base import RuntimePlatform


@dataclass(frozen=True, kw_only=True)
class PlatformManifest[ConfigT: BaseModel, InstanceT]:
    """Manifest describing a runtime platform plugin.

    Holds the configuration class and the platform factory so platforms are
    only imported once selected by their key.
    """

    config_cls: type[ConfigT]
    platform_factory: Callable[
        [ConfigT], AbstractAsyncContextManager[RuntimePlatform[InstanceT]]
    ]
