"""Local process platform manifest."""

from agent_matrix.platforms.manifest import PlatformManifest
from agent_matrix.platforms.process.config import ProcessPlatformConfig
from agent_matrix.platforms.process.platform import ProcessPlatform

process_manifest = PlatformManifest(
    config_cls=ProcessPlatformConfig,
    platform_factory=ProcessPlatform.from_config,
)
