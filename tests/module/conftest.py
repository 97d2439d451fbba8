"""Fixtures for module tests using Docker and a WireMock telemetry collector."""

from collections.abc import Generator
from pathlib import Path

import pytest
from testcontainers.core import testcontainers_config
from wiremock.constants import Config
from wiremock.testing.testcontainer import WireMockContainer


@pytest.fixture(scope="session", autouse=True)
def _disable_ryuk() -> None:
    """Disable the extra cleanup instance, sessions remove their containers."""
    testcontainers_config.ryuk_disabled = True


@pytest.fixture(scope="session")
def wiremock_server() -> Generator[WireMockContainer, None, None]:
    """Start WireMock standing in for the telemetry collector."""
    with WireMockContainer(secure=False) as wm:
        Config.base_url = wm.get_url("__admin")
        yield wm
        print(wm.get_logs())


@pytest.fixture(scope="session")
def telemetry_url(wiremock_server: WireMockContainer) -> str:
    """URL of the collector as seen from the host."""
    return wiremock_server.get_base_url()


@pytest.fixture
def artifacts_dir(tmp_path: Path) -> Path:
    """Directory with a static page deployed as the test application."""
    root = tmp_path / "artifacts"
    root.mkdir()
    (root / "ping.html").write_text("<html><body>pong</body></html>\n")
    return root


@pytest.fixture
def matrix_path(tmp_path: Path) -> Path:
    """Matrix running the static page on two nginx versions."""
    (tmp_path / "agent.jar").write_bytes(b"PK")
    path = tmp_path / "matrix.yaml"
    path.write_text("""version: "1.0"
agent:
  jar: agent.jar
  properties:
    service_name: module-test
timeouts:
  startup:
    timeout: 120
  deployment:
    timeout: 30
  telemetry:
    timeout: 10
    initial_interval: 0.2
    max_interval: 1
servers:
  - name: nginx
    image: "nginx:{version}"
    versions: ["1.26-alpine", "1.27-alpine"]
    port: 80
    deployment_path: /usr/share/nginx/html
    readiness:
      kind: http
      path: /
    deployment_signal:
      kind: http
      path: "/{context_path}"
applications:
  - id: ping
    artifact: ping.html
    context_path: ping.html
    requests:
      - path: /ping.html
    expected:
      - name: GET /ping.html
        spans: ["StaticFile#serve"]
""")
    return path
