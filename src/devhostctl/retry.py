"""Bounded retry policy shared by certificate issuance and package installs."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")

_LOG = logging.getLogger(__name__)


class RetryExhaustedError(RuntimeError):
    """Raised when every attempt allowed by a policy has failed."""

    def __init__(self, message: str, *, attempts: int, last_error: BaseException) -> None:
        """Record the attempt count and the final underlying error."""
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def fixed_delay(seconds: float) -> Callable[[int], float]:
    """Return a delay function that always waits *seconds*."""
    return lambda _attempt: seconds


def exponential_delay(base: float, *, factor: float = 2.0, cap: float = 300.0) -> Callable[[int], float]:
    """Return a delay function growing by *factor* per attempt, capped at *cap*."""
    return lambda attempt: min(cap, base * factor ** max(0, attempt - 1))


@dataclass(slots=True)
class RetryPolicy:
    """Run a callable up to ``max_attempts`` times.

    ``delay`` maps the 1-based number of the failed attempt to the pause before
    the next one. ``sleep`` is injectable so tests run without real delays.
    """

    max_attempts: int
    delay: Callable[[int], float] = field(default_factory=lambda: fixed_delay(0.0))
    sleep: Callable[[float], None] = time.sleep
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        """Reject policies that would never run."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")

    def run(
        self,
        operation: Callable[[int], T],
        *,
        label: str = "operation",
        on_failure: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Call ``operation(attempt)`` until it succeeds or attempts run out."""
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation(attempt)
            except self.retry_on as exc:
                last_error = exc
                _LOG.warning("%s attempt %d/%d failed: %s", label, attempt, self.max_attempts, exc)
                if on_failure is not None:
                    on_failure(attempt, exc)
                if attempt < self.max_attempts:
                    self.sleep(self.delay(attempt))
        assert last_error is not None
        raise RetryExhaustedError(
            f"{label} failed after {self.max_attempts} attempt(s): {last_error}",
            attempts=self.max_attempts,
            last_error=last_error,
        ) from last_error


__all__ = ["RetryExhaustedError", "RetryPolicy", "exponential_delay", "fixed_delay"]
