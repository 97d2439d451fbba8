"""Variants, applications and HTTP stubs for the in-memory runtime."""

from collections.abc import Sequence

from aioresponses import aioresponses as aioresponses_cls

from agent_matrix.models.definition import (
    DeploymentSignal,
    ExerciseRequest,
    ExpectedTransaction,
    InjectionChannel,
    ServerVariant,
    TestApplication,
)
from agent_matrix.polling import BackoffPolicy

RUNTIME_URL = "http://runtime.test:8080"

FAST_POLICY = BackoffPolicy(timeout=0.3, initial_interval=0.01, max_interval=0.02)


def make_variant(id: str = "rt-14", image: str | None = None) -> ServerVariant:
    """Create a WildFly-like variant deploying through marker files."""
    return ServerVariant(
        id=id,
        name="rt",
        version=id.removeprefix("rt-"),
        image=image or f"runtime:{id}",
        port=8080,
        deployment_path="/deploy",
        injection=InjectionChannel(variable="JAVA_OPTS"),
        extra_properties={"java.net.preferIPv4Stack": "true"},
        deployment_signal=DeploymentSignal(kind="marker-file"),
    )


def make_application(
    id: str,
    spans: Sequence[str] = (),
    method: str = "GET",
    path: str | None = None,
) -> TestApplication:
    """Create an application answering one request with one transaction."""
    path = path or f"/{id}/ping"
    return TestApplication(
        id=id,
        artifact=f"{id}.war",
        context_path=id,
        requests=[ExerciseRequest(method=method, path=path)],
        expected=[ExpectedTransaction(name=f"{method} {path}", spans=list(spans))],
    )


def mock_runtime(
    aioresponses: aioresponses_cls, applications: Sequence[TestApplication] = ()
) -> None:
    """Answer readiness probes and application requests on the fake host."""
    aioresponses.get(f"{RUNTIME_URL}/", status=200, repeat=True)
    for application in applications:
        for request in application.requests:
            aioresponses.add(
                f"{RUNTIME_URL}{request.path}",
                method=request.method,
                status=request.expected_status,
                body="pong",
                repeat=True,
            )
