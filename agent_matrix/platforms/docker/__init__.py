"""Docker platform module."""

from agent_matrix.platforms.docker.config import DockerPlatformConfig
from agent_matrix.platforms.docker.manifest import docker_manifest
from agent_matrix.platforms.docker.platform import DockerPlatform

__all__ = ["DockerPlatform", "DockerPlatformConfig", "docker_manifest"]
