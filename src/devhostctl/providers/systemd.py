"""Systemd provider for the application, proxy and monitor units."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import write_if_changed
from .process import run_command
from .service_state import ServiceState

_RUNNING_STATES = {"active", "reloading"}
_STOPPED_STATES = {"inactive", "failed", "deactivating", "activating"}


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Install and control systemd units."""

    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    @staticmethod
    def app_unit(service_user: str) -> str:
        """Return the templated application unit instance for *service_user*."""
        return f"code-server@{service_user}.service"

    def unit_path(self, unit_file: str) -> Path:
        """Return the full path for *unit_file*."""
        return self.systemd_dir / unit_file

    def write_unit(self, unit_file: str, content: str) -> bool:
        """Write pre-rendered *content* into *unit_file*."""
        changed = write_if_changed(self.unit_path(unit_file), content, mode=0o644)
        if changed:
            self.daemon_reload()
        return changed

    def enable(self, unit: str, *, now: bool = False) -> subprocess.CompletedProcess[str]:
        """Enable *unit*, optionally starting it immediately."""
        extra = ["--now"] if now else []
        return self._systemctl("enable", *extra, unit)

    def disable(self, unit: str, *, now: bool = False) -> subprocess.CompletedProcess[str]:
        """Disable *unit*, optionally stopping it immediately."""
        extra = ["--now"] if now else []
        return self._systemctl("disable", *extra, unit)

    def start(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Start *unit*."""
        return self._systemctl("start", unit)

    def stop(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Stop *unit*."""
        return self._systemctl("stop", unit)

    def restart(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Restart *unit*."""
        return self._systemctl("restart", unit)

    def reload(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Reload *unit* configuration."""
        return self._systemctl("reload", unit)

    def state(self, unit: str) -> ServiceState:
        """Return the :class:`ServiceState` reported by ``systemctl is-active``."""
        try:
            result = self._systemctl("is-active", unit, check=False)
        except SystemdError:
            return ServiceState.UNKNOWN
        value = (result.stdout or "").strip().splitlines()
        status = value[0].strip() if value else ""
        if status in _RUNNING_STATES:
            return ServiceState.RUNNING
        if status in _STOPPED_STATES:
            return ServiceState.STOPPED
        return ServiceState.UNKNOWN

    def logs(self, unit: str, *, lines: int = 20) -> str:
        """Return the last *lines* journal entries for *unit*."""
        result = self._journalctl(["--unit", unit, "--no-pager", "--lines", str(lines)])
        return result.stdout or ""

    def remove(self, unit_file: str) -> bool:
        """Remove *unit_file*; return True when a file was deleted."""
        path = self.unit_path(unit_file)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self.daemon_reload()
        return True

    def daemon_reload(self) -> None:
        """Ask systemd to re-read unit files."""
        self._systemctl("daemon-reload")

    # ------------------------------------------------------------------
    def _systemctl(self, command: str, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        return self._run_command(
            [self.systemctl_bin, command, *args],
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
        )

    def _journalctl(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        joined = " ".join(args)
        return self._run_command(
            [self.journalctl_bin, *args],
            check=True,
            error_prefix=f"{self.journalctl_bin} {joined}".rstrip(),
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(args, error=SystemdError, error_prefix=error_prefix, check=check)


__all__ = ["SystemdError", "SystemdProvider"]
