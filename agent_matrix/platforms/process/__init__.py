"""Local process platform module."""

from agent_matrix.platforms.process.config import ProcessPlatformConfig
from agent_matrix.platforms.process.manifest import process_manifest
from agent_matrix.platforms.process.platform import ProcessPlatform

__all__ = ["ProcessPlatform", "ProcessPlatformConfig", "process_manifest"]
