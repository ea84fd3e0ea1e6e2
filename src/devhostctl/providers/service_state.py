"""Derived service state shared by the systemd and container providers."""
from __future__ import annotations

from enum import Enum


class ServiceState(str, Enum):
    """State of a managed service as reported by its manager."""

    UNKNOWN = "unknown"
    RUNNING = "running"
    STOPPED = "stopped"

    @property
    def is_running(self) -> bool:
        """Return ``True`` when the service is confirmed running."""
        return self is ServiceState.RUNNING


__all__ = ["ServiceState"]
