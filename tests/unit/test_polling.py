"""Tests for bounded polling."""

import asyncio
import itertools

import pytest
from pydantic import ValidationError

from agent_matrix.polling import (
    BackoffPolicy,
    PollAbortedError,
    PollTimeoutError,
    poll_until,
)


def _fast(timeout: float = 0.2) -> BackoffPolicy:
    return BackoffPolicy(timeout=timeout, initial_interval=0.01, max_interval=0.02)


class TestBackoffPolicy:
    """Tests for BackoffPolicy."""

    def test_intervals_grow_up_to_max(self) -> None:
        """Doubles the interval until it reaches max_interval."""
        policy = BackoffPolicy(initial_interval=0.5, multiplier=2, max_interval=3)

        assert list(itertools.islice(policy.intervals(), 5)) == [0.5, 1, 2, 3, 3]

    def test_rejects_initial_above_max(self) -> None:
        """Rejects an initial interval larger than the maximum."""
        with pytest.raises(ValidationError, match="initial_interval"):
            BackoffPolicy(initial_interval=10, max_interval=1)

    def test_rejects_non_positive_timeout(self) -> None:
        """Rejects a zero timeout."""
        with pytest.raises(ValidationError):
            BackoffPolicy(timeout=0)


class TestPollUntil:
    """Tests for poll_until."""

    async def test_returns_first_value(self) -> None:
        """Returns as soon as the probe produces a value."""
        answers = iter([None, None, "ready"])

        async def probe() -> str | None:
            return next(answers)

        assert await poll_until(probe, _fast(), "server") == "ready"

    async def test_retries_probe_errors(self) -> None:
        """Treats probe exceptions as not ready yet."""
        calls = 0

        async def probe() -> bool | None:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionRefusedError("not listening")
            return True

        assert await poll_until(probe, _fast(), "server") is True
        assert calls == 3

    async def test_raises_timeout_with_last_error(self) -> None:
        """Raises PollTimeoutError carrying the last probe error."""

        async def probe() -> None:
            raise ConnectionRefusedError("not listening")

        with pytest.raises(PollTimeoutError, match="did not complete within") as info:
            await poll_until(probe, _fast(0.05), "server")

        assert info.value.attempts >= 1
        assert isinstance(info.value.last_error, ConnectionRefusedError)

    async def test_timeout_is_a_timeout_error(self) -> None:
        """Can be handled as a plain TimeoutError."""

        async def probe() -> None:
            return None

        with pytest.raises(TimeoutError):
            await poll_until(probe, _fast(0.05), "server")

    async def test_bounds_hanging_probe(self) -> None:
        """Gives up on a probe that never returns."""

        async def probe() -> None:
            await asyncio.sleep(10)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(PollTimeoutError):
            await poll_until(probe, _fast(0.1), "server")

        assert loop.time() - started < 1

    async def test_attempt_timeout_allows_retries(self) -> None:
        """Retries after a single attempt exceeds attempt_timeout."""
        calls = 0

        async def probe() -> bool | None:
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(10)
            return True

        policy = BackoffPolicy(
            timeout=1, initial_interval=0.01, max_interval=0.01, attempt_timeout=0.05
        )

        assert await poll_until(probe, policy, "server") is True
        assert calls == 2

    async def test_abort_stops_polling(self) -> None:
        """Propagates PollAbortedError without retrying."""
        calls = 0

        async def probe() -> None:
            nonlocal calls
            calls += 1
            raise PollAbortedError("app.war.failed")

        with pytest.raises(PollAbortedError, match="app.war.failed"):
            await poll_until(probe, _fast(), "deployment")

        assert calls == 1
