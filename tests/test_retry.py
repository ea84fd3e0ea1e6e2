"""Tests for the bounded retry policy."""
from __future__ import annotations

import pytest

from devhostctl.retry import RetryExhaustedError, RetryPolicy, exponential_delay, fixed_delay


def test_retry_succeeds_after_failures() -> None:
    """The policy returns the first successful result."""
    sleeps: list[float] = []
    calls: list[int] = []

    def operation(attempt: int) -> str:
        calls.append(attempt)
        if attempt < 3:
            raise ValueError("not yet")
        return "ok"

    policy = RetryPolicy(max_attempts=3, delay=fixed_delay(5.0), sleep=sleeps.append)

    assert policy.run(operation) == "ok"
    assert calls == [1, 2, 3]
    assert sleeps == [5.0, 5.0]


def test_retry_exhausted_reports_attempts() -> None:
    """Exhaustion carries the attempt count and last error; no trailing sleep."""
    sleeps: list[float] = []
    failures: list[int] = []

    def operation(attempt: int) -> None:
        raise ValueError(f"fail {attempt}")

    policy = RetryPolicy(max_attempts=3, sleep=sleeps.append)

    with pytest.raises(RetryExhaustedError) as excinfo:
        policy.run(operation, label="certbot", on_failure=lambda attempt, _exc: failures.append(attempt))

    assert excinfo.value.attempts == 3
    assert str(excinfo.value.last_error) == "fail 3"
    assert failures == [1, 2, 3]
    assert len(sleeps) == 2


def test_retry_does_not_catch_unlisted_errors() -> None:
    """Errors outside ``retry_on`` propagate immediately."""
    calls: list[int] = []

    def operation(attempt: int) -> None:
        calls.append(attempt)
        raise KeyError("fatal")

    policy = RetryPolicy(max_attempts=3, sleep=lambda _s: None, retry_on=(ValueError,))

    with pytest.raises(KeyError):
        policy.run(operation)

    assert calls == [1]


def test_policy_requires_an_attempt() -> None:
    """Zero attempts is rejected."""
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_exponential_delay_is_capped() -> None:
    """Delays grow geometrically up to the cap."""
    delay = exponential_delay(2.0, cap=10.0)

    assert [delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 10.0]
