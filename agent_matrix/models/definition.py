"""Models for the matrix definition loaded from matrix.yaml files."""

import re
from collections.abc import Mapping, Sequence
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator

from agent_matrix.models.base import Model
from agent_matrix.polling import BackoffPolicy


class InjectionChannel(Model):
    """How agent-attachment arguments reach the runtime process."""

    variable: str = Field(
        default="JAVA_TOOL_OPTIONS",
        description="Environment variable carrying the JVM arguments",
    )
    prepend: str = Field(
        default="",
        description="Arguments kept in front of the agent arguments",
    )


class ReadinessProbe(Model):
    """Network check confirming a runtime instance accepts requests."""

    kind: Literal["tcp", "http"] = "http"
    path: str = Field(default="/", description="Path probed by the http kind")
    accepted_statuses: Sequence[int] = Field(
        default=(200,), description="HTTP statuses meaning ready"
    )


class DeploymentSignal(Model):
    """How a runtime reports that a deployed artifact is live."""

    kind: Literal["marker-file", "http"] = "http"
    path: str = Field(
        default="/{context_path}/",
        description="Path polled by the http kind, {context_path} is substituted",
    )
    accepted_statuses: Sequence[int] = Field(default=(200,))
    success_suffix: str = Field(default=".deployed")
    failure_suffix: str = Field(default=".failed")


class ServerVariant(Model):
    """A specific versioned runtime configuration under test."""

    id: str = Field(..., description="Unique variant identity, e.g. 'wildfly-16'")
    name: str
    version: str | None = None
    image: str = Field(..., description="Image reference or command line")
    port: int = Field(..., gt=0, lt=65536, description="Port the probe targets")
    extra_ports: Sequence[int] = Field(default_factory=tuple)
    deployment_path: str = Field(..., description="Where artifacts are placed")
    injection: InjectionChannel = Field(default_factory=InjectionChannel)
    extra_properties: Mapping[str, str] = Field(default_factory=dict)
    readiness: ReadinessProbe = Field(default_factory=ReadinessProbe)
    deployment_signal: DeploymentSignal = Field(default_factory=DeploymentSignal)
    expected_service_name: str | None = None
    container_name: str | None = None

    @property
    def ports(self) -> Sequence[int]:
        """All ports exposed by the instance, probed port first."""
        return (self.port, *(p for p in self.extra_ports if p != self.port))


class ServerDefinition(Model):
    """A server family declared once and parameterized by version."""

    name: str = Field(..., description="Family name, e.g. 'wildfly'")
    image: str = Field(..., description="Image template, {version} is substituted")
    versions: Sequence[str] = Field(default_factory=list)
    port: int = Field(default=8080, gt=0, lt=65536)
    extra_ports: Sequence[int] = Field(default_factory=list)
    deployment_path: str
    injection: InjectionChannel = Field(default_factory=InjectionChannel)
    extra_properties: Mapping[str, str] = Field(default_factory=dict)
    readiness: ReadinessProbe = Field(default_factory=ReadinessProbe)
    deployment_signal: DeploymentSignal = Field(default_factory=DeploymentSignal)
    expected_service_name: str | None = None
    container_name: str | None = None

    def to_variants(self) -> Sequence[ServerVariant]:
        """Expand into one variant per version.

        Without versions the definition is a single variant named after
        the family and its image is used as-is.
        """
        versions: list[str | None] = list(self.versions) if self.versions else [None]
        variants: list[ServerVariant] = []
        for version in versions:
            variants.append(
                ServerVariant(
                    id=f"{self.name}-{version}" if version else self.name,
                    name=self.name,
                    version=version,
                    image=self.image.format(version=version or ""),
                    port=self.port,
                    extra_ports=tuple(self.extra_ports),
                    deployment_path=self.deployment_path,
                    injection=self.injection,
                    extra_properties=dict(self.extra_properties),
                    readiness=self.readiness,
                    deployment_signal=self.deployment_signal,
                    expected_service_name=self.expected_service_name,
                    container_name=self.container_name,
                )
            )
        return variants


class ExerciseRequest(Model):
    """One request sent to a deployed application."""

    method: str = "GET"
    path: str
    body: str | None = None
    headers: Mapping[str, str] = Field(default_factory=dict)
    expected_status: int = 200


class ExpectedTransaction(Model):
    """Descriptor of one transaction the agent must report."""

    name: str | None = Field(default=None, description="Exact transaction name")
    name_pattern: str | None = Field(
        default=None, description="Regular expression the whole name must match"
    )
    status_code: int = 200
    spans: Sequence[str] = Field(
        default_factory=list,
        description="Child span names, repeated names mean repeated spans",
    )

    @model_validator(mode="after")
    def _check_name(self) -> "ExpectedTransaction":
        if (self.name is None) == (self.name_pattern is None):
            raise ValueError("exactly one of name or name_pattern is required")
        if self.name_pattern is not None:
            try:
                re.compile(self.name_pattern)
            except re.error as exc:
                raise ValueError(f"invalid name_pattern: {exc}") from exc
        return self

    @property
    def label(self) -> str:
        """Human-readable name used in mismatch messages."""
        return self.name if self.name is not None else f"/{self.name_pattern}/"

    def matches(self, name: str) -> bool:
        """Check whether a captured transaction name fits this descriptor."""
        if self.name_pattern is not None:
            return re.fullmatch(self.name_pattern, name) is not None
        return name == self.name


class TestApplication(Model):
    """A deployable test application and the telemetry it must produce."""

    __test__ = False

    id: str
    artifact: str = Field(..., description="Artifact locator in the registry")
    context_path: str = Field(default="", description="Web context of the app")
    requests: Sequence[ExerciseRequest] = Field(default_factory=list)
    expected: Sequence[ExpectedTransaction] = Field(default_factory=list)
    ordered: bool = Field(
        default=False, description="Compare transactions in declaration order"
    )
    variants: Sequence[str] = Field(
        default_factory=list, description="Variant id patterns to run on"
    )
    exclude_variants: Sequence[str] = Field(
        default_factory=list, description="Variant id patterns to skip"
    )

    @property
    def artifact_name(self) -> str:
        """File name the artifact has once deployed."""
        return Path(self.artifact).name

    def applies_to(self, variant: ServerVariant) -> bool:
        """Check whether this application runs on the given variant."""
        if self.variants and not any(
            fnmatchcase(variant.id, pattern) for pattern in self.variants
        ):
            return False
        return not any(
            fnmatchcase(variant.id, pattern) for pattern in self.exclude_variants
        )


class AgentConfig(Model):
    """The instrumentation agent attached to every runtime."""

    jar: Path = Field(..., description="Agent jar on the host")
    mount_path: str = Field(
        default="/agent/agent.jar", description="Where the jar is visible inside"
    )
    properties: Mapping[str, str] = Field(
        default_factory=dict, description="Agent system properties"
    )
    session_property: str | None = Field(
        default="agent.session_id",
        description="Property carrying the session id the agent reports under",
    )

    def jvm_arguments(
        self, extra_properties: Mapping[str, str], session_id: str | None = None
    ) -> Sequence[str]:
        """Build the arguments attaching the agent, followed by extra properties.

        The session id, when given and ``session_property`` is set, follows the
        agent properties so the collector can group telemetry by session.
        """
        arguments = [f"-javaagent:{self.mount_path}"]
        arguments.extend(f"-D{key}={value}" for key, value in self.properties.items())
        if session_id is not None and self.session_property is not None:
            arguments.append(f"-D{self.session_property}={session_id}")
        arguments.extend(f"-D{key}={value}" for key, value in extra_properties.items())
        return arguments


class TimeoutsConfig(Model):
    """Ceilings for every wait in a case."""

    startup: BackoffPolicy = Field(default_factory=lambda: BackoffPolicy(timeout=180))
    deployment: BackoffPolicy = Field(
        default_factory=lambda: BackoffPolicy(timeout=120)
    )
    telemetry: BackoffPolicy = Field(
        default_factory=lambda: BackoffPolicy(
            timeout=30, initial_interval=0.25, max_interval=2
        )
    )
    request: float = Field(default=30.0, gt=0, description="Per request (s)")


class MatrixDefinition(Model):
    """Complete matrix definition loaded from matrix.yaml."""

    version: str = Field(..., description="Matrix definition schema version")
    agent: AgentConfig
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    servers: Sequence[ServerDefinition] = Field(default_factory=list)
    applications: Sequence[TestApplication] = Field(default_factory=list)

    def variants(self) -> Sequence[ServerVariant]:
        """All declared variants, in declaration order."""
        return [variant for server in self.servers for variant in server.to_variants()]
