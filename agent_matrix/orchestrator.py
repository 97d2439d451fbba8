"""Matrix orchestrator coordinating sessions, deployments and verification."""

import asyncio
import contextlib
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from agent_matrix.aggregator import MatrixReport, ResultAggregator
from agent_matrix.deployment import DeploymentDriver
from agent_matrix.errors import InfraError, SessionLostError, StartupError
from agent_matrix.matrix import TestCase, VariantGroup
from agent_matrix.models.result import CaseResult, CaseStatus
from agent_matrix.session import RuntimeSession, RuntimeSessionManager
from agent_matrix.verification import ExerciseEngine

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class MatrixOrchestrator:
    """Runs variant groups concurrently and their cases one at a time."""

    sessions: RuntimeSessionManager
    deployer: DeploymentDriver
    engine: ExerciseEngine
    concurrency: int = 2

    async def run(
        self,
        groups: Sequence[VariantGroup],
        *,
        cancel_event: asyncio.Event | None = None,
        suite_timeout: float | None = None,
    ) -> MatrixReport:
        """Run every case of the matrix and report one result per case.

        Args:
            groups: Case groups as produced by expand_matrix
            cancel_event: Setting it cancels the run
            suite_timeout: Overall ceiling for the run in seconds

        Returns:
            The report; in-flight and pending cases are skipped on cancellation

        """
        cases = [case for group in groups for case in group.cases]
        aggregator = ResultAggregator(cases)
        if not cases:
            log.info("No test cases to run")
            return aggregator.finalize()

        log.info(
            "Running %d case(s) on %d variant(s) (concurrency=%d)...",
            len(cases),
            len(groups),
            self.concurrency,
        )
        semaphore = asyncio.Semaphore(self.concurrency)
        run_task = asyncio.create_task(self._run_groups(groups, aggregator, semaphore))
        waiters: set[asyncio.Future[object]] = {run_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.create_task(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=suite_timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            await self._cancel(run_task)
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        cancelled = run_task not in done
        if cancelled:
            log.warning("Matrix run cancelled, tearing down live sessions")
            await self._cancel(run_task)

        log.info("Matrix run completed")
        return aggregator.finalize(cancelled=cancelled)

    @staticmethod
    async def _cancel(task: asyncio.Task[None]) -> None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run_groups(
        self,
        groups: Sequence[VariantGroup],
        aggregator: ResultAggregator,
        semaphore: asyncio.Semaphore,
    ) -> None:
        results = await asyncio.gather(
            *(self._run_group(group, aggregator, semaphore) for group in groups),
            return_exceptions=True,
        )
        for group, result in zip(groups, results, strict=True):
            if isinstance(result, Exception):
                log.error(
                    "Variant %s failed unexpectedly: %s",
                    group.variant.id,
                    result,
                    exc_info=result,
                )

    async def _run_group(
        self,
        group: VariantGroup,
        aggregator: ResultAggregator,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Run the cases of one variant on a single shared session."""
        remaining = list(group.cases)
        try:
            async with semaphore:
                log.info(
                    "Starting variant %s (%d case(s))",
                    group.variant.id,
                    len(remaining),
                )
                async with self.sessions.session(group.variant) as session:
                    while remaining:
                        result = await self._run_case(session, remaining[0])
                        aggregator.record(result)
                        remaining.pop(0)
        except StartupError as exc:
            log.error("Variant %s did not start: %s", group.variant.id, exc)
            for case in remaining:
                aggregator.record(_result(case, "infra_failure", exc, exc.diagnostics))
        except SessionLostError as exc:
            log.error("Session for %s lost: %s", group.variant.id, exc)
            current, *rest = remaining
            aggregator.record(_result(current, "infra_failure", exc, exc.diagnostics))
            for case in rest:
                aggregator.skip(case, f"session lost: {exc}")
        except asyncio.CancelledError:
            for case in remaining:
                aggregator.skip(case, "run cancelled")
            raise
        except Exception as exc:
            log.exception("Unexpected error on variant %s", group.variant.id)
            for case in remaining:
                if not aggregator.has_result(case):
                    aggregator.record(_result(case, "infra_failure", exc))

    async def _run_case(self, session: RuntimeSession, case: TestCase) -> CaseResult:
        """Deploy and exercise one application; only session loss escapes."""
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        log.info("Running case %s", case.case_id)

        try:
            await self.deployer.deploy(session, case.application)
            result = await self.engine.exercise(session, case.application)
        except SessionLostError:
            raise
        except InfraError as exc:
            return _result(case, "infra_failure", exc, exc.diagnostics, started_at)
        except Exception as exc:
            log.exception("Unexpected error in case %s", case.case_id)
            return _result(case, "infra_failure", exc, None, started_at)

        return replace(
            result, duration=time.monotonic() - started, started_at=started_at
        )


def _result(
    case: TestCase,
    status: CaseStatus,
    exc: BaseException,
    diagnostics: str | None = None,
    started_at: datetime | None = None,
) -> CaseResult:
    finished_at = datetime.now(timezone.utc)
    started_at = started_at or finished_at
    return CaseResult(
        case_id=case.case_id,
        variant_id=case.variant.id,
        application_id=case.application.id,
        status=status,
        duration=(finished_at - started_at).total_seconds(),
        detail=str(exc),
        diagnostics=diagnostics,
        started_at=started_at,
        finished_at=finished_at,
    )
