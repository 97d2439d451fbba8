"""Configuration for the local process platform."""

from pathlib import Path

from pydantic import BaseModel, Field


class ProcessPlatformConfig(BaseModel):
    """Configuration for the local process platform.

    Each instance runs in its own working directory. Mount targets and
    deployment paths are resolved relative to it, so the agent mount path
    should be relative (e.g. "agent/agent.jar").
    """

    base_dir: Path | None = None
    host: str = "127.0.0.1"
    stop_timeout: float = Field(default=10.0, gt=0)
    max_log_bytes: int = Field(default=1_000_000, gt=0)
    keep_workdirs: bool = False
