"""Exceptions raised by the orchestration machinery."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agent_matrix.session import RuntimeSession


class InfraError(Exception):
    """Provisioning, deployment or telemetry retrieval failed.

    Carries captured diagnostics (runtime logs) for triage. Says nothing
    about the agent being broken.
    """

    def __init__(self, message: str, diagnostics: str | None = None):
        super().__init__(message)
        self.diagnostics = diagnostics


class StartupError(InfraError):
    """A runtime session did not become ready."""

    def __init__(
        self,
        message: str,
        session: "RuntimeSession",
        diagnostics: str | None = None,
    ):
        super().__init__(message, diagnostics)
        self.session = session


class DeploymentError(InfraError):
    """An artifact was not deployed within its timeout."""


class TelemetryUnavailableError(InfraError):
    """No telemetry snapshot arrived for an exercised case."""


class SessionLostError(InfraError):
    """A runtime session became unreachable mid-run.

    Invalidates every remaining case scheduled on the session.
    """


class PreconditionError(Exception):
    """A collaborator required by the whole run is unreachable."""
