"""Docker platform manifest."""

from agent_matrix.platforms.docker.config import DockerPlatformConfig
from agent_matrix.platforms.docker.platform import DockerPlatform
from agent_matrix.platforms.manifest import PlatformManifest

docker_manifest = PlatformManifest(
    config_cls=DockerPlatformConfig,
    platform_factory=DockerPlatform.from_config,
)
