"""Exercising deployed applications and verifying the captured telemetry."""

import logging
import secrets
import time
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

import aiohttp

from agent_matrix.errors import SessionLostError, TelemetryUnavailableError
from agent_matrix.matrix import TestCase
from agent_matrix.models.definition import (
    ExerciseRequest,
    ExpectedTransaction,
    TestApplication,
)
from agent_matrix.models.result import CaseResult, CaseStatus
from agent_matrix.models.telemetry import CapturedTransaction, TelemetrySnapshot
from agent_matrix.polling import BackoffPolicy, PollTimeoutError, poll_until
from agent_matrix.session import RuntimeSession, RuntimeSessionManager
from agent_matrix.telemetry import TelemetryCollector

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class Correlation:
    """W3C trace context propagated with every request of a case."""

    trace_id: str
    parent_id: str

    @classmethod
    def new(cls) -> "Correlation":
        """Generate a fresh sampled trace context."""
        return cls(trace_id=secrets.token_hex(16), parent_id=secrets.token_hex(8))

    @property
    def traceparent(self) -> str:
        """Value of the traceparent header."""
        return f"00-{self.trace_id}-{self.parent_id}-01"


def compare_snapshot(
    expected: Sequence[ExpectedTransaction],
    snapshot: TelemetrySnapshot,
    *,
    ordered: bool = False,
    service_name: str | None = None,
) -> Sequence[str]:
    """Compare captured telemetry with the expected shape.

    Transactions must match in count, name and status code. Child spans are
    compared per transaction as a multiset of names, so their order does not
    matter but missing and unexpected spans are both reported.

    Returns:
        Human-readable mismatches, empty when the shape matches

    """
    mismatches: list[str] = []
    captured = list(snapshot.transactions)

    if len(captured) != len(expected):
        names = ", ".join(repr(t.name) for t in captured) or "none"
        mismatches.append(
            f"expected {len(expected)} transaction(s), captured {len(captured)}: "
            f"{names}"
        )

    if ordered:
        pairs = list(zip(expected, captured, strict=False))
        for descriptor, transaction in pairs:
            if not descriptor.matches(transaction.name):
                mismatches.append(
                    f"expected transaction {descriptor.label}, "
                    f"captured {transaction.name!r}"
                )
        missing = list(expected[len(pairs) :])
        unmatched = captured[len(pairs) :]
    else:
        pairs, missing, unmatched = _pair_unordered(expected, captured, snapshot)

    for descriptor in missing:
        mismatches.append(f"missing transaction {descriptor.label}")
    for transaction in unmatched:
        mismatches.append(f"unexpected transaction {transaction.name!r}")

    for descriptor, transaction in pairs:
        mismatches.extend(_compare_transaction(descriptor, transaction, snapshot))

    if service_name is not None:
        for transaction in captured:
            if transaction.service_name != service_name:
                mismatches.append(
                    f"{transaction.name}: service name "
                    f"{transaction.service_name!r}, expected {service_name!r}"
                )

    return mismatches


def _pair_unordered(
    expected: Sequence[ExpectedTransaction],
    captured: Sequence[CapturedTransaction],
    snapshot: TelemetrySnapshot,
) -> tuple[
    list[tuple[ExpectedTransaction, CapturedTransaction]],
    list[ExpectedTransaction],
    list[CapturedTransaction],
]:
    pairs: list[tuple[ExpectedTransaction, CapturedTransaction]] = []
    missing: list[ExpectedTransaction] = []
    unmatched = list(captured)

    for descriptor in expected:
        candidates = [t for t in unmatched if descriptor.matches(t.name)]
        if not candidates:
            missing.append(descriptor)
            continue
        best = min(
            candidates,
            key=lambda t: len(_compare_transaction(descriptor, t, snapshot)),
        )
        unmatched.remove(best)
        pairs.append((descriptor, best))

    return pairs, missing, unmatched


def _compare_transaction(
    descriptor: ExpectedTransaction,
    transaction: CapturedTransaction,
    snapshot: TelemetrySnapshot,
) -> list[str]:
    mismatches: list[str] = []
    if transaction.status_code != descriptor.status_code:
        mismatches.append(
            f"{transaction.name}: status {transaction.status_code}, "
            f"expected {descriptor.status_code}"
        )

    expected_spans = Counter(descriptor.spans)
    captured_spans = Counter(span.name for span in snapshot.spans_of(transaction.id))
    for name, count in sorted((expected_spans - captured_spans).items()):
        mismatches.append(f"{transaction.name}: missing {name}{_times(count)}")
    for name, count in sorted((captured_spans - expected_spans).items()):
        mismatches.append(f"{transaction.name}: unexpected {name}{_times(count)}")
    return mismatches


def _times(count: int) -> str:
    return f" (x{count})" if count > 1 else ""


@dataclass(frozen=True, kw_only=True)
class ExerciseEngine:
    """Sends an application's requests and verifies the agent's telemetry."""

    sessions: RuntimeSessionManager
    telemetry: TelemetryCollector
    http: aiohttp.ClientSession = field(repr=False)
    policy: BackoffPolicy = field(
        default_factory=lambda: BackoffPolicy(timeout=30, max_interval=2)
    )
    request_timeout: float = 30.0
    fetch_timeout: float = 5.0

    async def exercise(
        self, session: RuntimeSession, application: TestApplication
    ) -> CaseResult:
        """Exercise the deployed application and classify the outcome.

        Raises:
            SessionLostError: If the session stopped answering requests
            TelemetryUnavailableError: If no snapshot arrived in time

        """
        case_id = TestCase(variant=session.variant, application=application).case_id
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        correlation = Correlation.new()

        def result(
            status: CaseStatus,
            detail: str | None = None,
            diagnostics: str | None = None,
        ) -> CaseResult:
            return CaseResult(
                case_id=case_id,
                variant_id=session.variant.id,
                application_id=application.id,
                status=status,
                duration=time.monotonic() - started,
                detail=detail,
                diagnostics=diagnostics,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )

        response_mismatches: list[str] = []
        for request in application.requests:
            try:
                status = await self._send(session, request, correlation)
            except (aiohttp.ClientError, TimeoutError) as exc:
                diagnostics = await self.sessions.diagnostics(session)
                if not await self.sessions.is_reachable(session):
                    raise SessionLostError(
                        f"Session {session.id} became unreachable: {exc}",
                        diagnostics=diagnostics,
                    ) from exc
                return result(
                    "infra_failure",
                    f"{request.method} {request.path} failed: {exc!r}",
                    diagnostics,
                )
            if status != request.expected_status:
                response_mismatches.append(
                    f"{request.method} {request.path}: HTTP {status}, "
                    f"expected {request.expected_status}"
                )

        if response_mismatches:
            return result("behavioral_failure", "; ".join(response_mismatches))

        latest: list[TelemetrySnapshot] = []

        async def snapshot_attempt() -> TelemetrySnapshot | None:
            snapshot = await self.telemetry.fetch_snapshot(
                session.id, correlation.trace_id, self.fetch_timeout
            )
            if snapshot is None:
                return None
            latest[:] = [snapshot]
            if len(snapshot.transactions) < len(application.expected):
                return None
            return snapshot

        try:
            snapshot = await poll_until(
                snapshot_attempt,
                self.policy,
                f"Telemetry of {case_id} (trace {correlation.trace_id})",
            )
        except PollTimeoutError as exc:
            if not latest:
                raise TelemetryUnavailableError(
                    f"No telemetry captured for trace {correlation.trace_id}: {exc}",
                    diagnostics=await self.sessions.diagnostics(session),
                ) from exc
            snapshot = latest[0]

        mismatches = compare_snapshot(
            application.expected,
            snapshot,
            ordered=application.ordered,
            service_name=session.variant.expected_service_name,
        )
        if mismatches:
            log.info("Case %s: %d mismatch(es)", case_id, len(mismatches))
            return result("behavioral_failure", "; ".join(mismatches))
        return result("pass")

    async def _send(
        self,
        session: RuntimeSession,
        request: ExerciseRequest,
        correlation: Correlation,
    ) -> int:
        headers = {**request.headers, "traceparent": correlation.traceparent}
        async with self.http.request(
            request.method,
            f"{session.base_url}/{request.path.lstrip('/')}",
            data=request.body,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        ) as response:
            await response.read()
            log.debug(
                "%s %s -> %d on %s",
                request.method,
                request.path,
                response.status,
                session.id,
            )
            return response.status
