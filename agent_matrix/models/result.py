"""Models for case execution results."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

type CaseStatus = Literal["pass", "behavioral_failure", "infra_failure", "skipped"]


@dataclass(frozen=True, kw_only=True)
class CaseResult:
    """Outcome of a single (variant, application) case.

    Behavioral failures mean the telemetry did not have the expected shape;
    infra failures mean the machinery around the agent broke.
    """

    case_id: str
    variant_id: str
    application_id: str
    status: CaseStatus
    duration: float
    detail: str | None = None
    diagnostics: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def failed(self) -> bool:
        """Whether the case counts against the run."""
        return self.status != "pass"
