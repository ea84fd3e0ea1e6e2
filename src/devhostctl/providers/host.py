"""Host capability interface: OS identity, memory, disk, swap and processes."""
from __future__ import annotations

import os
import platform
import pwd
import shlex
import shutil
import subprocess
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import psutil

from .process import run_command

_GIB = 1024**3


class HostError(RuntimeError):
    """Raised when host information cannot be read or changed."""


@dataclass(frozen=True, slots=True)
class OSRelease:
    """Identity parsed from ``/etc/os-release``."""

    id: str
    version_id: str
    pretty_name: str
    id_like: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SwapDevice:
    """An active swap area from /proc/swaps."""

    path: str
    size_kb: int


@dataclass(frozen=True, slots=True)
class DiskUsage:
    """Capacity figures for a mount point."""

    total_gb: float
    free_gb: float
    percent_used: float


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines of an os-release file."""
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


@dataclass(slots=True)
class HostProvider:
    """Read host facts from procfs/psutil and apply small host changes."""

    timedatectl_bin: str = "timedatectl"
    useradd_bin: str = "useradd"

    def os_release(self, path: Path) -> OSRelease:
        """Return the OS identity from *path*."""
        try:
            values = parse_os_release(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise HostError(f"Cannot read {path}: {exc}") from exc
        os_id = values.get("ID", "").strip().lower()
        if not os_id:
            raise HostError(f"{path} does not define an ID field.")
        like = tuple(item.lower() for item in values.get("ID_LIKE", "").split() if item)
        return OSRelease(
            id=os_id,
            version_id=values.get("VERSION_ID", ""),
            pretty_name=values.get("PRETTY_NAME", os_id),
            id_like=like,
        )

    def memory_total_mb(self, meminfo: Path) -> int:
        """Return total physical memory in MiB."""
        try:
            for line in meminfo.read_text(encoding="utf-8").splitlines():
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) // 1024
        except OSError:
            # procfs unavailable; psutil reads the same figure another way.
            pass
        return int(psutil.virtual_memory().total // (1024 * 1024))

    def memory_percent(self) -> float:
        """Return the share of physical memory in use."""
        return float(psutil.virtual_memory().percent)

    def disk_usage(self, path: Path) -> DiskUsage:
        """Return capacity figures for the filesystem holding *path*."""
        usage = shutil.disk_usage(path)
        percent = (usage.used / usage.total * 100.0) if usage.total else 0.0
        return DiskUsage(
            total_gb=usage.total / _GIB,
            free_gb=usage.free / _GIB,
            percent_used=round(percent, 1),
        )

    def active_swaps(self, swaps_file: Path) -> list[SwapDevice]:
        """Return the active swap devices listed in *swaps_file*."""
        try:
            lines = swaps_file.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        devices: list[SwapDevice] = []
        for line in lines[1:]:
            fields = line.split()
            if len(fields) >= 3 and fields[2].isdigit():
                devices.append(SwapDevice(path=fields[0], size_kb=int(fields[2])))
        return devices

    def process_running(self, name: str) -> bool:
        """Return True when a process named (or launched as) *name* exists."""
        for proc in psutil.process_iter(["name", "cmdline"]):
            info = proc.info
            if info.get("name") == name:
                return True
            cmdline = info.get("cmdline") or []
            if any(Path(part).name == name for part in cmdline[:2]):
                return True
        return False

    def set_timezone(self, timezone: str) -> subprocess.CompletedProcess[str]:
        """Apply *timezone* with timedatectl."""
        return run_command(
            [self.timedatectl_bin, "set-timezone", timezone],
            error=HostError,
        )

    def user_exists(self, name: str) -> bool:
        """Return True when the account *name* exists."""
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def create_user(self, name: str) -> subprocess.CompletedProcess[str]:
        """Create a login account *name* with a home directory."""
        return run_command(
            [self.useradd_bin, "--create-home", "--shell", "/bin/bash", name],
            error=HostError,
        )

    def is_root(self) -> bool:
        """Return True when running with root privileges."""
        return os.geteuid() == 0

    def system_info(self) -> Mapping[str, object]:
        """Return the facts shown by the console's system information view."""
        uname = platform.uname()
        memory = psutil.virtual_memory()
        uptime_seconds = int(time.time() - psutil.boot_time())
        load = os.getloadavg()
        return {
            "hostname": uname.node,
            "kernel": uname.release,
            "architecture": uname.machine,
            "uptime": _format_duration(uptime_seconds),
            "load_average": " ".join(f"{value:.2f}" for value in load),
            "memory_total_mb": memory.total // (1024 * 1024),
            "memory_used_percent": memory.percent,
            "cpu_count": psutil.cpu_count() or 0,
        }


def _format_duration(seconds: int) -> str:
    days, remainder = divmod(max(seconds, 0), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    return f"{hours}h {minutes}m"


__all__ = [
    "DiskUsage",
    "HostError",
    "HostProvider",
    "OSRelease",
    "SwapDevice",
    "parse_os_release",
]
