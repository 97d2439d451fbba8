"""Telemetry collectors returning what the agent reported for a case."""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import aiohttp
from pydantic import BaseModel, Field

from agent_matrix.models.telemetry import TelemetrySnapshot

log = logging.getLogger(__name__)


class TelemetryCollector(ABC):
    """Store of telemetry captured from the instrumentation agent."""

    @abstractmethod
    async def fetch_snapshot(
        self, session_id: str, correlation_id: str, timeout: float
    ) -> TelemetrySnapshot | None:
        """Fetch telemetry for the requests tagged with ``correlation_id``.

        Args:
            session_id: Runtime session the requests were sent to
            correlation_id: Trace id propagated with the requests
            timeout: Ceiling for this single fetch in seconds

        Returns:
            The snapshot, or None when nothing was captured yet

        """


class HttpTelemetryConfig(BaseModel):
    """Configuration for the HTTP telemetry collector."""

    base_url: str
    check_timeout: float = Field(default=10.0, gt=0)


@dataclass(frozen=True, kw_only=True)
class HttpTelemetryCollector(TelemetryCollector):
    """Collector querying a mock intake server over HTTP.

    ``GET /snapshots/{session_id}/{correlation_id}`` answers 200 with the
    snapshot document, or 404 while nothing has been captured.
    """

    config: HttpTelemetryConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: HttpTelemetryConfig
    ) -> AsyncGenerator["HttpTelemetryCollector", None]:
        """Create collector with managed session lifecycle."""
        async with aiohttp.ClientSession(base_url=config.base_url) as session:
            yield cls(config=config, session=session)

    async def check_available(self) -> None:
        """Probe the collector root; any HTTP answer means it is up."""
        async with self.session.get(
            "/", timeout=aiohttp.ClientTimeout(total=self.config.check_timeout)
        ) as response:
            log.info(
                "Telemetry collector at %s answered %d",
                self.config.base_url,
                response.status,
            )

    async def fetch_snapshot(
        self, session_id: str, correlation_id: str, timeout: float
    ) -> TelemetrySnapshot | None:
        """Fetch the snapshot document for the session and correlation id."""
        url = f"/snapshots/{session_id}/{correlation_id}"
        async with self.session.get(
            url, timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            if response.status == 404:
                return None
            if response.status != 200:
                text = await response.text()
                raise RuntimeError(
                    f"Failed to fetch telemetry snapshot: {response.status} {text}"
                )
            data = await response.json()

        return TelemetrySnapshot.model_validate(data)
