"""Pydantic models for telemetry captured from the instrumentation agent."""

from collections.abc import Sequence

from pydantic import BaseModel, Field


class CapturedSpan(BaseModel):
    """A span reported by the agent."""

    id: str
    transaction_id: str
    parent_id: str | None = None
    name: str
    type: str | None = None


class CapturedTransaction(BaseModel):
    """A transaction reported by the agent."""

    id: str
    trace_id: str
    name: str
    status_code: int | None = None
    result: str | None = None
    service_name: str | None = None


class TelemetrySnapshot(BaseModel):
    """Telemetry attributed to the requests of one exercised case."""

    transactions: Sequence[CapturedTransaction] = Field(default_factory=list)
    spans: Sequence[CapturedSpan] = Field(default_factory=list)

    def spans_of(self, transaction_id: str) -> Sequence[CapturedSpan]:
        """Spans belonging to the given transaction."""
        return [span for span in self.spans if span.transaction_id == transaction_id]
