"""Collection of per-case results into a matrix-level report."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from agent_matrix.matrix import TestCase
from agent_matrix.models.result import CaseResult, CaseStatus

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class MatrixReport:
    """Outcome of every case of a run, in matrix order."""

    results: Sequence[CaseResult]
    cancelled: bool = False

    def count(self, status: CaseStatus) -> int:
        """Number of cases with the given status."""
        return sum(1 for result in self.results if result.status == status)

    @property
    def by_variant(self) -> Mapping[str, Sequence[CaseResult]]:
        """Results grouped by variant, preserving matrix order."""
        grouped: dict[str, list[CaseResult]] = {}
        for result in self.results:
            grouped.setdefault(result.variant_id, []).append(result)
        return grouped

    @property
    def succeeded(self) -> bool:
        """Whether every case passed."""
        return not self.cancelled and all(not r.failed for r in self.results)


class ResultAggregator:
    """Accepts exactly one result per known case; never aborts the run.

    Writes happen from the variant workers of a single event loop, one per
    completed case, so no locking is needed.
    """

    def __init__(self, cases: Sequence[TestCase]):
        self._order = [case.case_id for case in cases]
        self._cases = {case.case_id: case for case in cases}
        self._results: dict[str, CaseResult] = {}

    def record(self, result: CaseResult) -> None:
        """Record the result of one case.

        Raises:
            ValueError: If the case is unknown or already has a result

        """
        if result.case_id not in self._cases:
            raise ValueError(f"Unknown case '{result.case_id}'")
        if result.case_id in self._results:
            raise ValueError(f"Case '{result.case_id}' already has a result")

        self._results[result.case_id] = result
        log.info(
            "Case completed: case=%s status=%s duration=%.1fs",
            result.case_id,
            result.status,
            result.duration,
        )

    def has_result(self, case: TestCase) -> bool:
        """Whether the case already has a recorded result."""
        return case.case_id in self._results

    def skip(self, case: TestCase, reason: str) -> None:
        """Record the case as skipped unless it already has a result."""
        if self.has_result(case):
            return
        now = datetime.now(timezone.utc)
        self.record(
            CaseResult(
                case_id=case.case_id,
                variant_id=case.variant.id,
                application_id=case.application.id,
                status="skipped",
                duration=0.0,
                detail=reason,
                started_at=now,
                finished_at=now,
            )
        )

    def finalize(self, cancelled: bool = False) -> MatrixReport:
        """Build the report, marking cases never attempted as skipped."""
        for case_id in self._order:
            if case_id not in self._results:
                reason = "run cancelled" if cancelled else "not attempted"
                self.skip(self._cases[case_id], reason)

        return MatrixReport(
            results=[self._results[case_id] for case_id in self._order],
            cancelled=cancelled,
        )
