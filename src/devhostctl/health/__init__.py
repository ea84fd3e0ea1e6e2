"""Health monitor infrastructure."""

from __future__ import annotations

from .checks import collect_checks, security_checks, status_checks
from .models import (
    CheckDefinition,
    CheckResult,
    HealthContext,
    HealthReport,
    HealthStatus,
    worst_status,
)
from .monitor import HealthLog, HealthLogError, HealthMonitor, run_check

__all__ = [
    "CheckDefinition",
    "CheckResult",
    "HealthContext",
    "HealthLog",
    "HealthLogError",
    "HealthMonitor",
    "HealthReport",
    "HealthStatus",
    "collect_checks",
    "run_check",
    "security_checks",
    "status_checks",
    "worst_status",
]
