"""Tests for comparing captured telemetry with expectations."""

from agent_matrix.models.definition import ExpectedTransaction
from agent_matrix.testing.payloads import snapshot
from agent_matrix.verification import Correlation, compare_snapshot


def test_matching_shape_has_no_mismatches() -> None:
    """Accepts a snapshot with the expected transactions and spans."""
    expected = [ExpectedTransaction(name="GET /app/ping", spans=["A", "B"])]

    captured = snapshot(("GET /app/ping", 200, ["A", "B"]))

    assert compare_snapshot(expected, captured) == []


def test_span_order_does_not_matter() -> None:
    """Compares spans as a multiset of names."""
    expected = [ExpectedTransaction(name="GET /app/ping", spans=["A", "B"])]

    captured = snapshot(("GET /app/ping", 200, ["B", "A"]))

    assert compare_snapshot(expected, captured) == []


def test_reports_missing_span() -> None:
    """Names the span the agent did not report."""
    expected = [ExpectedTransaction(name="GET /app/ping", spans=["A", "B"])]

    mismatches = compare_snapshot(expected, snapshot(("GET /app/ping", 200, ["A"])))

    assert mismatches == ["GET /app/ping: missing B"]


def test_reports_unexpected_and_repeated_spans() -> None:
    """Names extra spans with their repeat count."""
    expected = [ExpectedTransaction(name="GET /app/ping", spans=["A"])]

    mismatches = compare_snapshot(
        expected, snapshot(("GET /app/ping", 200, ["A", "C", "C"]))
    )

    assert mismatches == ["GET /app/ping: unexpected C (x2)"]


def test_repeated_expected_span_must_repeat() -> None:
    """Requires repeated span names to be reported as often as expected."""
    expected = [ExpectedTransaction(name="GET /app/ping", spans=["A", "A"])]

    mismatches = compare_snapshot(expected, snapshot(("GET /app/ping", 200, ["A"])))

    assert mismatches == ["GET /app/ping: missing A"]


def test_reports_status_mismatch() -> None:
    """Reports a transaction with a different status code."""
    expected = [ExpectedTransaction(name="GET /app/error", status_code=500)]

    mismatches = compare_snapshot(expected, snapshot(("GET /app/error", 200, [])))

    assert mismatches == ["GET /app/error: status 200, expected 500"]


def test_reports_count_and_missing_transaction() -> None:
    """Reports fewer transactions than expected."""
    expected = [
        ExpectedTransaction(name="GET /app/a"),
        ExpectedTransaction(name="GET /app/b"),
    ]

    mismatches = compare_snapshot(expected, snapshot(("GET /app/a", 200, [])))

    assert mismatches == [
        "expected 2 transaction(s), captured 1: 'GET /app/a'",
        "missing transaction GET /app/b",
    ]


def test_reports_unexpected_transaction() -> None:
    """Reports transactions nobody expected."""
    expected = [ExpectedTransaction(name="GET /app/a")]

    mismatches = compare_snapshot(
        expected, snapshot(("GET /app/a", 200, []), ("GET /favicon.ico", 404, []))
    )

    assert "unexpected transaction 'GET /favicon.ico'" in mismatches


def test_empty_snapshot() -> None:
    """Reports every expected transaction as missing."""
    expected = [ExpectedTransaction(name="GET /app/a")]

    mismatches = compare_snapshot(expected, snapshot())

    assert mismatches == [
        "expected 1 transaction(s), captured 0: none",
        "missing transaction GET /app/a",
    ]


def test_unordered_pairs_best_candidate() -> None:
    """Pairs duplicate names with the capture that fits best."""
    expected = [
        ExpectedTransaction(name="POST /app/soap", spans=["Service#echo"]),
        ExpectedTransaction(name="POST /app/soap", spans=["Service#sum"]),
    ]
    captured = snapshot(
        ("POST /app/soap", 200, ["Service#sum"]),
        ("POST /app/soap", 200, ["Service#echo"]),
    )

    assert compare_snapshot(expected, captured) == []


def test_ordered_comparison_reports_swapped_transactions() -> None:
    """Requires declaration order when ordered."""
    expected = [
        ExpectedTransaction(name="GET /app/a"),
        ExpectedTransaction(name="GET /app/b"),
    ]
    captured = snapshot(("GET /app/b", 200, []), ("GET /app/a", 200, []))

    assert compare_snapshot(expected, captured) == []
    assert compare_snapshot(expected, captured, ordered=True) == [
        "expected transaction GET /app/a, captured 'GET /app/b'",
        "expected transaction GET /app/b, captured 'GET /app/a'",
    ]


def test_pattern_descriptor() -> None:
    """Matches transactions by pattern."""
    expected = [ExpectedTransaction(name_pattern=r"GET /app/\d+")]

    assert compare_snapshot(expected, snapshot(("GET /app/42", 200, []))) == []


def test_reports_service_name_mismatch() -> None:
    """Checks the reported service name when one is expected."""
    expected = [ExpectedTransaction(name="GET /app/a")]
    captured = snapshot(("GET /app/a", 200, []), service_name="my-service")

    assert compare_snapshot(expected, captured, service_name="my-service") == []
    assert compare_snapshot(expected, captured, service_name="jboss-application") == [
        "GET /app/a: service name 'my-service', expected 'jboss-application'"
    ]


def test_correlation_traceparent() -> None:
    """Builds a sampled W3C traceparent from fresh ids."""
    correlation = Correlation.new()

    assert len(correlation.trace_id) == 32
    assert len(correlation.parent_id) == 16
    assert correlation.traceparent == (
        f"00-{correlation.trace_id}-{correlation.parent_id}-01"
    )
    assert Correlation.new().trace_id != correlation.trace_id
