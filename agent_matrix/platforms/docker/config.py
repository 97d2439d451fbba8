"""Configuration for the Docker platform."""

from pydantic import BaseModel


class DockerPlatformConfig(BaseModel):
    """Configuration for the Docker platform."""

    network: str | None = None
    name_prefix: str = "agent-matrix-"
    # Overrides the host tests connect to, e.g. when running inside a container
    host_override: str | None = None
