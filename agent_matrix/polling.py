"""Bounded polling with exponential backoff for readiness-style signals."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator

from pydantic import Field, model_validator

from agent_matrix.models.base import Model

log = logging.getLogger(__name__)


class BackoffPolicy(Model):
    """How often and for how long an external signal is polled."""

    timeout: float = Field(default=120.0, gt=0, description="Overall ceiling (s)")
    initial_interval: float = Field(default=0.5, gt=0, description="First wait (s)")
    multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor")
    max_interval: float = Field(default=5.0, gt=0, description="Largest wait (s)")
    attempt_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Ceiling for a single probe (defaults to the time remaining)",
    )

    @model_validator(mode="after")
    def _check_intervals(self) -> "BackoffPolicy":
        if self.initial_interval > self.max_interval:
            raise ValueError("initial_interval must not exceed max_interval")
        return self

    def intervals(self) -> Iterator[float]:
        """Yield successive wait intervals, growing up to max_interval."""
        interval = self.initial_interval
        while True:
            yield interval
            interval = min(interval * self.multiplier, self.max_interval)


class PollAbortedError(Exception):
    """Raised by a probe when the polled condition can never be met."""


class PollTimeoutError(TimeoutError):
    """Raised when a polled condition is not met before the deadline."""

    def __init__(
        self, message: str, attempts: int, last_error: BaseException | None
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


async def poll_until[R](
    probe: Callable[[], Awaitable[R | None]],
    policy: BackoffPolicy,
    description: str,
) -> R:
    """Call ``probe`` until it returns a value other than None.

    Exceptions raised by the probe count as "not yet" and are retried; the
    last one is kept on the resulting PollTimeoutError. Each attempt is
    bounded by the time left, so the whole call returns no later than
    ``policy.timeout`` plus one interval.

    Raises:
        PollTimeoutError: If the probe never produced a value in time
        PollAbortedError: If the probe reported the condition unreachable

    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + policy.timeout
    attempts = 0
    last_error: BaseException | None = None

    for interval in policy.intervals():
        attempts += 1
        remaining = max(deadline - loop.time(), 0.01)
        attempt_timeout = min(policy.attempt_timeout or remaining, remaining)
        try:
            async with asyncio.timeout(attempt_timeout):
                result = await probe()
        except PollAbortedError:
            raise
        except TimeoutError as exc:
            last_error = exc
            result = None
        except Exception as exc:
            log.debug("Probe for %s failed: %s", description, exc)
            last_error = exc
            result = None

        if result is not None:
            log.debug("%s satisfied after %d attempt(s)", description, attempts)
            return result

        now = loop.time()
        if now >= deadline:
            break
        await asyncio.sleep(min(interval, deadline - now))

    raise PollTimeoutError(
        f"{description} did not complete within {policy.timeout} seconds",
        attempts=attempts,
        last_error=last_error,
    )
