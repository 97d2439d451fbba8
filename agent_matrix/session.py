"""Runtime session lifecycle: launch with the agent attached, gate, tear down."""

import asyncio
import logging
import re
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Literal

import aiohttp

from agent_matrix.errors import StartupError
from agent_matrix.models.definition import AgentConfig, ServerVariant
from agent_matrix.platforms.base import InstanceSpec, Mount, RuntimePlatform
from agent_matrix.polling import BackoffPolicy, PollTimeoutError, poll_until
from agent_matrix.registry import ArtifactRegistry

log = logging.getLogger(__name__)

type SessionState = Literal["starting", "ready", "failed", "stopping", "stopped"]


@dataclass(kw_only=True)
class RuntimeSession:
    """A live instance of one server variant.

    Owned by the RuntimeSessionManager that created it; other components
    borrow it for the duration of one case.
    """

    id: str
    variant: ServerVariant
    instance: Any = field(default=None, repr=False)
    state: SessionState = "starting"
    host: str | None = None
    port: int | None = None
    teardown: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def address(self) -> tuple[str, int]:
        """Host and port the probed port is reachable on."""
        if self.host is None or self.port is None:
            raise RuntimeError(f"Session {self.id} has no address yet")
        return self.host, self.port

    @property
    def base_url(self) -> str:
        """Root URL of the probed port."""
        host, port = self.address
        return f"http://{host}:{port}"


@dataclass(frozen=True, kw_only=True)
class RuntimeSessionManager:
    """Starts and stops runtime sessions on a platform."""

    platform: RuntimePlatform[Any]
    registry: ArtifactRegistry
    agent: AgentConfig
    http: aiohttp.ClientSession = field(repr=False)
    startup: BackoffPolicy = field(default_factory=lambda: BackoffPolicy(timeout=180))
    probe_timeout: float = 5.0

    def new_session(self, variant: ServerVariant) -> RuntimeSession:
        """Create the handle for a session that is not started yet."""
        prefix = variant.container_name or variant.id
        raw_id = f"{prefix}-{uuid.uuid4().hex[:8]}"
        session_id = re.sub(r"[^a-zA-Z0-9_.-]", "-", raw_id)
        return RuntimeSession(id=session_id, variant=variant)

    def instance_spec(self, session: RuntimeSession) -> InstanceSpec:
        """Describe the instance, injecting the agent through the variant channel."""
        variant = session.variant
        channel = variant.injection
        arguments = self.agent.jvm_arguments(variant.extra_properties, session.id)
        value = " ".join([channel.prepend, *arguments]).strip()

        return InstanceSpec(
            name=session.id,
            image=self.registry.resolve_image(variant),
            ports=variant.ports,
            environment={channel.variable: value},
            mounts=[Mount(source=self.agent.jar, target=self.agent.mount_path)],
        )

    async def start(self, variant: ServerVariant) -> RuntimeSession:
        """Start a session and wait until it accepts requests.

        Raises:
            StartupError: If the instance cannot be launched, exits early or
                is not ready within the startup timeout. The instance is
                already torn down when this is raised.

        """
        session = self.new_session(variant)
        try:
            await self._launch(session)
        except BaseException:
            await self.stop(session)
            raise
        return session

    @asynccontextmanager
    async def session(
        self, variant: ServerVariant
    ) -> AsyncGenerator[RuntimeSession, None]:
        """Run a started session for the block, stopping it on every exit path."""
        session = self.new_session(variant)
        try:
            await self._launch(session)
            yield session
        finally:
            await self.stop(session)

    async def _launch(self, session: RuntimeSession) -> None:
        variant = session.variant
        log.info("Starting session %s for variant %s", session.id, variant.id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup.timeout

        try:
            async with asyncio.timeout_at(deadline):
                session.instance = await self.platform.start_instance(
                    self.instance_spec(session)
                )
                session.host, session.port = await self.platform.address(
                    session.instance, variant.port
                )
        except Exception as exc:
            session.state = "failed"
            if isinstance(exc, TimeoutError):
                message = f"{variant.id} not launched within {self.startup.timeout}s"
            else:
                message = f"Failed to launch {variant.id}: {exc}"
            raise StartupError(
                message,
                session=session,
                diagnostics=await self.diagnostics(session),
            ) from exc

        readiness = self.startup.model_copy(
            update={"timeout": max(deadline - loop.time(), 0.01)}
        )
        try:
            outcome = await poll_until(
                lambda: self._readiness_attempt(session),
                readiness,
                f"Readiness of {session.id}",
            )
        except PollTimeoutError as exc:
            session.state = "failed"
            raise StartupError(
                f"{variant.id} not ready on {session.base_url}: {exc}",
                session=session,
                diagnostics=await self.diagnostics(session),
            ) from exc

        if outcome == "exited":
            session.state = "failed"
            raise StartupError(
                f"{variant.id} exited before becoming ready",
                session=session,
                diagnostics=await self.diagnostics(session),
            )

        session.state = "ready"
        log.info("Session %s ready at %s", session.id, session.base_url)

    async def _readiness_attempt(
        self, session: RuntimeSession
    ) -> Literal["ready", "exited"] | None:
        if not await self.platform.is_alive(session.instance):
            return "exited"
        if await self.probe(session):
            return "ready"
        return None

    async def probe(self, session: RuntimeSession) -> bool:
        """Run the variant's readiness probe once."""
        readiness = session.variant.readiness
        host, port = session.address

        if readiness.kind == "tcp":
            try:
                _, writer = await asyncio.wait_for(
                    asyncio.open_connection(host, port),
                    self.probe_timeout,
                )
            except (OSError, TimeoutError):
                return False
            writer.close()
            await writer.wait_closed()
            return True

        try:
            async with self.http.get(
                f"{session.base_url}{readiness.path}",
                timeout=aiohttp.ClientTimeout(total=self.probe_timeout),
            ) as response:
                return response.status in readiness.accepted_statuses
        except (aiohttp.ClientError, TimeoutError):
            return False

    async def is_reachable(self, session: RuntimeSession) -> bool:
        """Check the session is alive and still answers its readiness probe."""
        if session.state != "ready":
            return False
        try:
            alive = await self.platform.is_alive(session.instance)
        except Exception as exc:
            log.warning("Liveness check of %s failed: %s", session.id, exc)
            return False
        return alive and await self.probe(session)

    async def diagnostics(self, session: RuntimeSession) -> str | None:
        """Return the captured runtime output, or None if unavailable."""
        if session.instance is None:
            return None
        try:
            return await self.platform.logs(session.instance)
        except Exception as exc:
            log.warning("Could not collect logs of %s: %s", session.id, exc)
            return None

    async def stop(self, session: RuntimeSession) -> None:
        """Tear the session down; repeated calls are no-ops and never raise.

        Teardown runs to completion even if the caller is cancelled meanwhile;
        the cancellation is re-raised once the instance is gone.
        """
        if session.teardown is None:
            if session.state == "stopped":
                log.debug("Session %s already stopped", session.id)
                return
            session.teardown = asyncio.create_task(self._teardown(session))

        try:
            await asyncio.shield(session.teardown)
        except asyncio.CancelledError:
            if not session.teardown.done():
                log.info("Finishing teardown of %s before cancelling", session.id)
                await asyncio.shield(session.teardown)
            raise

    async def _teardown(self, session: RuntimeSession) -> None:
        if session.instance is None:
            session.state = "stopped"
            return
        session.state = "stopping"

        try:
            await self.platform.stop_instance(session.instance)
        except Exception as exc:
            log.warning(
                "Failed to stop session %s: %s", session.id, exc, exc_info=exc
            )
        else:
            log.info("Stopped session %s", session.id)
        finally:
            session.state = "stopped"
