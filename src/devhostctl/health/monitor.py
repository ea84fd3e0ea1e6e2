"""Check execution harness and the append-only health log."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .models import CheckDefinition, CheckResult, HealthContext, HealthReport, HealthStatus

_LOG = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_CHECK_NAME = "health-log"


class HealthLogError(RuntimeError):
    """Raised when the health log cannot be written."""


def _unexpected_failure(check: CheckDefinition | str, exc: Exception) -> CheckResult:
    name = check if isinstance(check, str) else check.name
    _LOG.exception("Health check %s raised", name)
    return CheckResult(
        name=name,
        status=HealthStatus.ERROR,
        detail=f"check raised an unexpected error: {exc}",
        data={"exception": repr(exc)},
    )


def run_check(check: CheckDefinition, context: HealthContext) -> list[CheckResult]:
    """Run *check* and, when it fails and may remediate, its one-shot remediation."""
    try:
        result = check.run(context)
    except Exception as exc:  # noqa: BLE001 - one check must never stop the others
        return [_unexpected_failure(check, exc)]
    results = [result]
    if (
        check.remediate is not None
        and context.allow_restart
        and result.status in {HealthStatus.ERROR, HealthStatus.CRITICAL}
    ):
        try:
            results.append(check.remediate(context))
        except Exception as exc:  # noqa: BLE001
            results.append(_unexpected_failure(f"{check.name}-restart", exc))
    return results


@dataclass(slots=True)
class HealthLog:
    """Append-only, line-oriented log of check results."""

    path: Path

    def format_line(self, moment: datetime, status: str, text: str) -> str:
        """Return one log line."""
        return f"[{moment.strftime(TIMESTAMP_FORMAT)}] {status.upper()} {text}\n"

    def record(self, moment: datetime, result: CheckResult) -> str:
        """Append *result*; return the written line."""
        line = self.format_line(moment, result.status.value, f"{result.name}: {result.detail}")
        self._append(line)
        return line

    def summary(self, moment: datetime, report: HealthReport) -> str:
        """Append the run's summary line."""
        line = self.format_line(moment, report.status.value, report.summary_line())
        self._append(line)
        return line

    def tail(self, lines: int = 20) -> list[str]:
        """Return the last *lines* entries (empty when no log exists)."""
        try:
            content = self.path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        return content[-lines:]

    def _append(self, line: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError as exc:
            raise HealthLogError(f"Unable to write health log {self.path}: {exc}") from exc


@dataclass(slots=True)
class HealthMonitor:
    """Run every check once, log each result, and finish with a summary line."""

    context: HealthContext
    log: HealthLog | None = None
    clock: Callable[[], datetime] = datetime.now

    def run(self, checks: Sequence[CheckDefinition]) -> HealthReport:
        """Execute *checks* in order and return the immutable report.

        A health log that cannot be written never stops the run: every check
        still executes and the failure is reported as a ``health-log`` error.
        """
        started = self.clock()
        results: list[CheckResult] = []
        log_failure: HealthLogError | None = None
        for check in checks:
            for result in run_check(check, self.context):
                results.append(result)
                if self.log is not None and log_failure is None:
                    try:
                        self.log.record(self.clock(), result)
                    except HealthLogError as exc:
                        _LOG.error("%s", exc)
                        log_failure = exc
        report = HealthReport(started_at=started, results=tuple(results))
        if self.log is not None and log_failure is None:
            try:
                self.log.summary(self.clock(), report)
            except HealthLogError as exc:
                _LOG.error("%s", exc)
                log_failure = exc
        if log_failure is not None:
            report = HealthReport(
                started_at=started,
                results=(
                    *results,
                    CheckResult(name=LOG_CHECK_NAME, status=HealthStatus.ERROR, detail=str(log_failure)),
                ),
            )
        return report


__all__ = [
    "HealthLog",
    "HealthLogError",
    "HealthMonitor",
    "LOG_CHECK_NAME",
    "TIMESTAMP_FORMAT",
    "run_check",
]
