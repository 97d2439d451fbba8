"""Deployment of application artifacts into running sessions."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

import aiohttp

from agent_matrix.errors import DeploymentError, SessionLostError
from agent_matrix.models.definition import TestApplication
from agent_matrix.polling import BackoffPolicy, PollAbortedError, poll_until
from agent_matrix.registry import ArtifactNotFoundError, ArtifactRegistry
from agent_matrix.session import RuntimeSession, RuntimeSessionManager

log = logging.getLogger(__name__)

type DeploymentState = Literal["pending", "deployed", "failed"]


@dataclass(kw_only=True)
class DeploymentRecord:
    """One application deployed into one session."""

    session_id: str
    application_id: str
    state: DeploymentState = "pending"
    completed_at: datetime | None = None
    detail: str | None = None

    def complete(self, state: DeploymentState, detail: str | None = None) -> None:
        """Record the final deployment state."""
        self.state = state
        self.detail = detail
        self.completed_at = datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DeploymentDriver:
    """Copies artifacts into sessions and waits for the runtime to pick them up.

    Deployments into one session must be issued one at a time; the driver
    keeps no state between calls.
    """

    sessions: RuntimeSessionManager
    registry: ArtifactRegistry
    http: aiohttp.ClientSession = field(repr=False)
    policy: BackoffPolicy = field(default_factory=lambda: BackoffPolicy(timeout=120))
    probe_timeout: float = 5.0

    async def deploy(
        self, session: RuntimeSession, application: TestApplication
    ) -> DeploymentRecord:
        """Deploy the application and wait for the completion signal.

        Raises:
            DeploymentError: If the artifact is missing, the runtime reports a
                failed deployment or the signal does not arrive in time
            SessionLostError: If the session stopped answering meanwhile

        """
        record = DeploymentRecord(session_id=session.id, application_id=application.id)
        variant = session.variant

        try:
            artifact = self.registry.resolve_artifact(application.id)
        except ArtifactNotFoundError as exc:
            record.complete("failed", str(exc))
            raise DeploymentError(str(exc)) from exc

        log.info(
            "Deploying %s into %s:%s",
            artifact.name,
            session.id,
            variant.deployment_path,
        )
        try:
            await self.sessions.platform.copy_into(
                session.instance, artifact, variant.deployment_path
            )
            await poll_until(
                lambda: self._completion_attempt(session, application),
                self.policy,
                f"Deployment of {application.id} on {session.id}",
            )
        except Exception as exc:
            record.complete("failed", str(exc))
            raise await self._failure(session, application, exc) from exc

        record.complete("deployed")
        log.info("Deployed %s on %s", application.id, session.id)
        return record

    async def _failure(
        self,
        session: RuntimeSession,
        application: TestApplication,
        exc: Exception,
    ) -> DeploymentError | SessionLostError:
        diagnostics = await self.sessions.diagnostics(session)
        if not await self.sessions.is_reachable(session):
            return SessionLostError(
                f"Session {session.id} became unreachable while deploying "
                f"{application.id}: {exc}",
                diagnostics=diagnostics,
            )
        return DeploymentError(
            f"Failed to deploy {application.id}: {exc}", diagnostics=diagnostics
        )

    async def _completion_attempt(
        self, session: RuntimeSession, application: TestApplication
    ) -> bool | None:
        signal = session.variant.deployment_signal

        if signal.kind == "marker-file":
            entries = await self.sessions.platform.list_directory(
                session.instance, session.variant.deployment_path
            )
            name = application.artifact_name
            if f"{name}{signal.failure_suffix}" in entries:
                raise PollAbortedError(f"runtime created {name}{signal.failure_suffix}")
            return True if f"{name}{signal.success_suffix}" in entries else None

        path = signal.path.format(context_path=application.context_path)
        async with self.http.get(
            f"{session.base_url}/{path.lstrip('/')}",
            timeout=aiohttp.ClientTimeout(total=self.probe_timeout),
        ) as response:
            return True if response.status in signal.accepted_statuses else None
