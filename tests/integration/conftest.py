"""Fixtures for integration tests of the orchestration engine."""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiohttp
import pytest
from aioresponses import aioresponses as aioresponses_cls

from agent_matrix.deployment import DeploymentDriver
from agent_matrix.models.definition import AgentConfig, ServerVariant, TestApplication
from agent_matrix.orchestrator import MatrixOrchestrator
from agent_matrix.registry import FileSystemArtifactRegistry
from agent_matrix.session import RuntimeSessionManager
from agent_matrix.testing.platform import FakePlatform
from agent_matrix.testing.runtime import FAST_POLICY, make_application, make_variant
from agent_matrix.testing.telemetry import ScriptedTelemetryCollector
from agent_matrix.verification import ExerciseEngine


@pytest.fixture
def agent(tmp_path: Path) -> AgentConfig:
    """Agent jar on disk."""
    jar = tmp_path / "agent.jar"
    jar.write_bytes(b"PK")
    return AgentConfig(jar=jar, properties={"agent.log_level": "debug"})


@pytest.fixture
def variant() -> ServerVariant:
    """Single runtime variant."""
    return make_variant()


@pytest.fixture
def servlet_app() -> TestApplication:
    """Servlet application producing a transaction without spans."""
    return make_application("servlet-app")


@pytest.fixture
def soap_app() -> TestApplication:
    """SOAP application producing one dispatch span."""
    return make_application(
        "soap-app", spans=["soap.dispatch"], method="POST", path="/soap-app/endpoint"
    )


@pytest.fixture
def applications(
    servlet_app: TestApplication, soap_app: TestApplication
) -> list[TestApplication]:
    """The applications built into the artifact directory."""
    return [
        servlet_app,
        soap_app,
        *(make_application(f"app-{index}") for index in range(1, 6)),
    ]


@pytest.fixture
def artifacts_dir(tmp_path: Path, applications: list[TestApplication]) -> Path:
    """Directory holding one artifact per application."""
    root = tmp_path / "artifacts"
    root.mkdir()
    for application in applications:
        (root / application.artifact).write_bytes(b"PK")
    return root


@pytest.fixture
def registry(
    artifacts_dir: Path, applications: list[TestApplication]
) -> FileSystemArtifactRegistry:
    """Registry over the artifact directory."""
    return FileSystemArtifactRegistry(
        root=artifacts_dir, applications={app.id: app for app in applications}
    )


@pytest.fixture
def platform() -> FakePlatform:
    """In-memory platform."""
    return FakePlatform()


@pytest.fixture
def telemetry() -> ScriptedTelemetryCollector:
    """Collector without scripted responses."""
    return ScriptedTelemetryCollector()


@pytest.fixture
async def http(
    aioresponses: aioresponses_cls,
) -> AsyncGenerator[aiohttp.ClientSession, None]:
    """HTTP session whose requests are answered by aioresponses."""
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def sessions(
    platform: FakePlatform,
    registry: FileSystemArtifactRegistry,
    agent: AgentConfig,
    http: aiohttp.ClientSession,
) -> RuntimeSessionManager:
    """Session manager with short timeouts."""
    return RuntimeSessionManager(
        platform=platform,
        registry=registry,
        agent=agent,
        http=http,
        startup=FAST_POLICY,
        probe_timeout=0.2,
    )


@pytest.fixture
def deployer(
    sessions: RuntimeSessionManager,
    registry: FileSystemArtifactRegistry,
    http: aiohttp.ClientSession,
) -> DeploymentDriver:
    """Deployment driver with short timeouts."""
    return DeploymentDriver(
        sessions=sessions,
        registry=registry,
        http=http,
        policy=FAST_POLICY,
        probe_timeout=0.2,
    )


@pytest.fixture
def engine(
    sessions: RuntimeSessionManager,
    telemetry: ScriptedTelemetryCollector,
    http: aiohttp.ClientSession,
) -> ExerciseEngine:
    """Exercise engine with short timeouts."""
    return ExerciseEngine(
        sessions=sessions,
        telemetry=telemetry,
        http=http,
        policy=FAST_POLICY,
        request_timeout=1.0,
        fetch_timeout=0.2,
    )


@pytest.fixture
def orchestrator(
    sessions: RuntimeSessionManager,
    deployer: DeploymentDriver,
    engine: ExerciseEngine,
) -> MatrixOrchestrator:
    """Orchestrator running two variants at a time."""
    return MatrixOrchestrator(
        sessions=sessions, deployer=deployer, engine=engine, concurrency=2
    )
