"""CLI entry point for the agent integration matrix."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiohttp

from agent_matrix.aggregator import MatrixReport
from agent_matrix.config_loader import load_matrix_definition
from agent_matrix.deployment import DeploymentDriver
from agent_matrix.errors import PreconditionError
from agent_matrix.matrix import VariantGroup, expand_matrix, select
from agent_matrix.models.definition import MatrixDefinition
from agent_matrix.orchestrator import MatrixOrchestrator
from agent_matrix.platforms.base import RuntimePlatform
from agent_matrix.platforms.loading import installed_platforms, load_platform_manifest
from agent_matrix.registry import FileSystemArtifactRegistry
from agent_matrix.session import RuntimeSessionManager
from agent_matrix.telemetry import HttpTelemetryCollector, HttpTelemetryConfig
from agent_matrix.verification import ExerciseEngine

EXIT_PRECONDITION = 2

STATUS_SYMBOLS = {
    "pass": "✓",
    "behavioral_failure": "✗",
    "infra_failure": "!",
    "skipped": "-",
}


def log_results_summary(log: logging.Logger, report: MatrixReport) -> None:
    """Log a per-variant summary keeping infra and behavioral failures apart."""
    log.info("=" * 80)
    log.info("Matrix Results Summary:")
    log.info("=" * 80)

    for variant_id, results in report.by_variant.items():
        log.info("%s", variant_id)
        for result in results:
            symbol = STATUS_SYMBOLS.get(result.status, "?")
            log.info(
                "  %s %s: %s (%.2fs)",
                symbol,
                result.application_id,
                result.status,
                result.duration,
            )
            if result.detail:
                log.info("    Detail: %s", result.detail)

    log.info(
        "Passed: %d, behavioral failures: %d, infra failures: %d, skipped: %d",
        report.count("pass"),
        report.count("behavioral_failure"),
        report.count("infra_failure"),
        report.count("skipped"),
    )
    if report.cancelled:
        log.warning("The run was cancelled before all cases completed")


def parse_patterns(patterns: str) -> Sequence[str]:
    """Parse comma-separated id patterns."""
    if not patterns.strip():
        return ()
    return tuple(p.strip() for p in patterns.split(",") if p.strip())


def build_groups(
    definition: MatrixDefinition,
    variant_patterns: Sequence[str] = (),
    application_patterns: Sequence[str] = (),
) -> Sequence[VariantGroup]:
    """Expand the definition, restricted to the selected variants and apps."""
    variants = definition.variants()
    applications = definition.applications
    selected_variants = select([v.id for v in variants], variant_patterns)
    selected_apps = select([a.id for a in applications], application_patterns)
    return expand_matrix(
        [v for v in variants if v.id in selected_variants],
        [a for a in applications if a.id in selected_apps],
    )


async def check_preconditions(
    platform: RuntimePlatform[Any],
    registry: FileSystemArtifactRegistry,
    collector: HttpTelemetryCollector,
) -> None:
    """Verify every collaborator of the run is reachable.

    Raises:
        PreconditionError: If any of them is not

    """
    await platform.check_available()
    await registry.check_available()
    try:
        await collector.check_available()
    except (aiohttp.ClientError, TimeoutError) as exc:
        raise PreconditionError(
            f"Telemetry collector unreachable: {str(exc) or type(exc).__name__}"
        ) from exc


async def run(
    platform_key: str,
    platform_config_json: str,
    matrix_path: Path,
    artifacts_dir: Path,
    telemetry_url: str,
    concurrency: int = 2,
    suite_timeout: float | None = None,
    variant_patterns: Sequence[str] = (),
    application_patterns: Sequence[str] = (),
    image_prefix: str | None = None,
) -> int:
    """Run the matrix and return exit code."""
    log = logging.getLogger("agent_matrix")

    log.info("Loading platform: %s", platform_key)
    manifest = load_platform_manifest(platform_key)

    config_dict = json.loads(platform_config_json)
    config = manifest.config_cls(**config_dict)

    log.info("Loading matrix definition from %s", matrix_path)
    definition = await load_matrix_definition(matrix_path)
    groups = build_groups(definition, variant_patterns, application_patterns)

    if not groups:
        log.info("No test cases selected")
        print(json.dumps(format_output(MatrixReport(results=[]))))
        return 0

    registry = FileSystemArtifactRegistry(
        root=artifacts_dir,
        applications={app.id: app for app in definition.applications},
        image_prefix=image_prefix,
    )
    timeouts = definition.timeouts

    try:
        async with (
            manifest.platform_factory(config) as platform,
            HttpTelemetryCollector.from_config(
                HttpTelemetryConfig(base_url=telemetry_url)
            ) as collector,
            aiohttp.ClientSession() as http,
        ):
            await check_preconditions(platform, registry, collector)

            sessions = RuntimeSessionManager(
                platform=platform,
                registry=registry,
                agent=definition.agent,
                http=http,
                startup=timeouts.startup,
            )
            orchestrator = MatrixOrchestrator(
                sessions=sessions,
                deployer=DeploymentDriver(
                    sessions=sessions,
                    registry=registry,
                    http=http,
                    policy=timeouts.deployment,
                ),
                engine=ExerciseEngine(
                    sessions=sessions,
                    telemetry=collector,
                    http=http,
                    policy=timeouts.telemetry,
                    request_timeout=timeouts.request,
                ),
                concurrency=concurrency,
            )
            report = await orchestrator.run(groups, suite_timeout=suite_timeout)
    except PreconditionError as exc:
        log.error("Precondition failed, matrix not attempted: %s", exc)
        return EXIT_PRECONDITION

    log_results_summary(log, report)

    output = format_output(report)
    print(json.dumps(output, indent=2))

    return 0 if report.succeeded else 1


def format_output(report: MatrixReport) -> dict[str, Any]:
    """Format the report for JSON output."""
    all_results: list[dict[str, Any]] = [
        {
            "case": result.case_id,
            "variant": result.variant_id,
            "application": result.application_id,
            "status": result.status,
            "duration": result.duration,
            "detail": result.detail,
            "diagnostics": result.diagnostics,
        }
        for result in report.results
    ]

    return {
        "total": len(all_results),
        "passed": report.count("pass"),
        "behavioral_failures": report.count("behavioral_failure"),
        "infra_failures": report.count("infra_failure"),
        "skipped": report.count("skipped"),
        "cancelled": report.cancelled,
        "results": all_results,
    }


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run agent integration tests across server variants"
    )
    parser.add_argument(
        "--platform",
        required=True,
        help=f"Runtime platform key (installed: {', '.join(installed_platforms())})",
    )
    parser.add_argument(
        "--platform-config",
        default="{}",
        help="JSON configuration for the platform",
    )
    parser.add_argument(
        "--matrix",
        type=Path,
        required=True,
        help="Path to the matrix definition (YAML)",
    )
    parser.add_argument(
        "--artifacts-dir",
        type=Path,
        required=True,
        help="Directory holding the built test application artifacts",
    )
    parser.add_argument(
        "--telemetry-url",
        required=True,
        help="Base URL of the telemetry collector",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=2,
        help="Maximum number of variants running at once",
    )
    parser.add_argument(
        "--suite-timeout",
        type=float,
        default=None,
        help="Overall timeout in seconds; remaining cases are skipped",
    )
    parser.add_argument(
        "--variant",
        default="",
        help="Comma-separated variant id patterns to run",
    )
    parser.add_argument(
        "--application",
        default="",
        help="Comma-separated application id patterns to run",
    )
    parser.add_argument(
        "--image-prefix",
        default=None,
        help="Registry mirror prefixed to every image reference",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run(
            platform_key=args.platform,
            platform_config_json=args.platform_config,
            matrix_path=args.matrix,
            artifacts_dir=args.artifacts_dir,
            telemetry_url=args.telemetry_url,
            concurrency=args.concurrency,
            suite_timeout=args.suite_timeout,
            variant_patterns=parse_patterns(args.variant),
            application_patterns=parse_patterns(args.application),
            image_prefix=args.image_prefix,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
