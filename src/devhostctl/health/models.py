"""Data models for health checks."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..exit_codes import ExitCode

if TYPE_CHECKING:
    from ..config import CertificateConfig, HealthConfig
    from ..installation import InstallationConfig
    from ..providers.certbot import CertbotProvider
    from ..providers.host import HostProvider
    from ..providers.network import NetworkProvider
    from ..providers.packages import PackageStrategy
    from ..supervisor import ServiceSupervisor
    from ..tls import CertificateInspector


class HealthStatus(str, Enum):
    """Severity of a single check result."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    ERROR = "error"

    @property
    def is_issue(self) -> bool:
        """Return ``True`` for anything other than ``ok``."""
        return self is not HealthStatus.OK


STATUS_ORDER: Mapping[HealthStatus, int] = {
    HealthStatus.OK: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
    HealthStatus.ERROR: 3,
}

STATUS_EXIT_CODES: Mapping[HealthStatus, ExitCode] = {
    HealthStatus.OK: ExitCode.OK,
    HealthStatus.WARNING: ExitCode.OK,
    HealthStatus.CRITICAL: ExitCode.ENVIRONMENT,
    HealthStatus.ERROR: ExitCode.PROVIDER,
}


@dataclass(slots=True, frozen=True)
class HealthContext:
    """Everything a check may consult; built once per run."""

    installation: InstallationConfig
    config: HealthConfig
    certificates: CertificateConfig
    app_port: int
    disk_path: Path
    host: HostProvider
    network: NetworkProvider
    supervisor: ServiceSupervisor
    certbot: CertbotProvider
    inspector: CertificateInspector
    allow_restart: bool = True
    firewall: PackageStrategy | None = None
    state_path: Path | None = None


@dataclass(slots=True, frozen=True)
class CheckResult:
    """Outcome of running a check."""

    name: str
    status: HealthStatus
    detail: str
    data: Mapping[str, Any] | None = None

    @property
    def is_issue(self) -> bool:
        """Return ``True`` when the result needs operator attention."""
        return self.status.is_issue


@dataclass(slots=True, frozen=True)
class CheckDefinition:
    """Name + callable for a check, with an optional one-shot remediation."""

    name: str
    run: Callable[[HealthContext], CheckResult]
    remediate: Callable[[HealthContext], CheckResult] | None = None


@dataclass(slots=True, frozen=True)
class HealthReport:
    """Immutable record of one monitor run."""

    started_at: datetime
    results: Sequence[CheckResult] = field(default_factory=tuple)

    @property
    def issues(self) -> int:
        """Return the number of results that are not ``ok``."""
        return sum(1 for result in self.results if result.is_issue)

    @property
    def status(self) -> HealthStatus:
        """Return the worst status across all results."""
        return worst_status(result.status for result in self.results)

    @property
    def exit_code(self) -> int:
        """Return the process exit code for this report."""
        return int(STATUS_EXIT_CODES[self.status])

    def summary_line(self) -> str:
        """Return the text of the trailing summary entry."""
        return f"summary: {self.issues} issue(s)"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation of the report."""
        return {
            "started_at": self.started_at.isoformat(),
            "status": self.status.value,
            "issues": self.issues,
            "results": [
                {
                    "name": result.name,
                    "status": result.status.value,
                    "detail": result.detail,
                }
                for result in self.results
            ],
        }


def worst_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Return the most severe of *statuses* (``ok`` when empty)."""
    worst = HealthStatus.OK
    for status in statuses:
        if STATUS_ORDER[status] > STATUS_ORDER[worst]:
            worst = status
    return worst
