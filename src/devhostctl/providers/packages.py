"""OS package and firewall strategies, one per supported distribution family."""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .process import run_command

_INSTALL_TIMEOUT = 1800.0


class PackageInstallError(RuntimeError):
    """Raised when OS package installation fails."""


class UnsupportedOSError(RuntimeError):
    """Raised when no strategy exists for a distribution family."""


@dataclass(frozen=True, slots=True)
class FirewallResult:
    """Outcome of a firewall configuration attempt."""

    configured: bool
    tool: str | None
    detail: str


class PackageStrategy(Protocol):
    """Narrow interface for distribution specific system management."""

    family: str
    firewall_tool: str

    def base_packages(self, install_method: str) -> tuple[str, ...]:
        """Return the packages required for *install_method*."""

    def install_packages(self, packages: Sequence[str]) -> None:
        """Install *packages*, raising :class:`PackageInstallError` on failure."""

    def configure_firewall(self) -> FirewallResult:
        """Open SSH, HTTP and HTTPS; best effort."""

    def firewall_active(self) -> bool | None:
        """Return whether the firewall is enforcing; None when it is not installed."""


_COMMON_PACKAGES = ("curl", "wget", "nginx", "certbot", "git", "jq", "logrotate")


@dataclass(slots=True)
class AptStrategy:
    """Debian/Ubuntu strategy using apt-get and ufw."""

    family: str = "debian"
    firewall_tool: str = "ufw"
    apt_bin: str = "apt-get"

    def base_packages(self, install_method: str) -> tuple[str, ...]:
        """Return the apt packages required for *install_method*."""
        packages = [*_COMMON_PACKAGES, "python3-certbot-nginx", "dnsutils", "ufw", "fail2ban"]
        if install_method == "container":
            packages.extend(["docker.io", "docker-compose-plugin"])
        return tuple(packages)

    def install_packages(self, packages: Sequence[str]) -> None:
        """Refresh the index and install *packages* non-interactively."""
        env = {**os.environ, "DEBIAN_FRONTEND": "noninteractive"}
        self._run([self.apt_bin, "update", "-y"], env=env)
        self._run([self.apt_bin, "install", "-y", *packages], env=env)

    def configure_firewall(self) -> FirewallResult:
        """Allow OpenSSH and nginx through ufw, rate-limiting ssh."""
        if shutil.which("ufw") is None:
            return FirewallResult(False, None, "ufw not installed; firewall left unchanged.")
        commands = (
            ["ufw", "allow", "OpenSSH"],
            ["ufw", "allow", "Nginx Full"],
            ["ufw", "limit", "ssh"],
            ["ufw", "--force", "enable"],
        )
        for command in commands:
            self._run(command)
        return FirewallResult(True, "ufw", "Allowed OpenSSH and Nginx Full; ssh rate limited.")

    def firewall_active(self) -> bool | None:
        """Return True when ``ufw status`` reports the firewall active."""
        if shutil.which("ufw") is None:
            return None
        result = run_command(["ufw", "status"], error=PackageInstallError, check=False)
        return "Status: active" in (result.stdout or "")

    def _run(
        self,
        args: Sequence[str],
        *,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(args, error=PackageInstallError, env=env, timeout=_INSTALL_TIMEOUT)


@dataclass(slots=True)
class DnfStrategy:
    """RHEL/CentOS/Fedora strategy using dnf (or yum) and firewalld."""

    family: str = "rhel"
    firewall_tool: str = "firewalld"
    package_bin: str = "dnf"

    def base_packages(self, install_method: str) -> tuple[str, ...]:
        """Return the rpm packages required for *install_method*."""
        packages = [*_COMMON_PACKAGES, "python3-certbot-nginx", "bind-utils", "firewalld", "fail2ban"]
        if install_method == "container":
            packages.extend(["docker", "docker-compose-plugin"])
        return tuple(packages)

    def install_packages(self, packages: Sequence[str]) -> None:
        """Install EPEL (for certbot) and then *packages*."""
        self._run([self.package_bin, "install", "-y", "epel-release"], check=False)
        self._run([self.package_bin, "install", "-y", *packages])

    def configure_firewall(self) -> FirewallResult:
        """Open http, https and ssh in firewalld."""
        if shutil.which("firewall-cmd") is None:
            return FirewallResult(False, None, "firewalld not installed; firewall left unchanged.")
        self._run(["systemctl", "enable", "--now", "firewalld"])
        for service in ("http", "https", "ssh"):
            self._run(["firewall-cmd", "--permanent", f"--add-service={service}"])
        self._run(["firewall-cmd", "--reload"])
        return FirewallResult(True, "firewalld", "Opened http, https and ssh.")

    def firewall_active(self) -> bool | None:
        """Return True when ``firewall-cmd --state`` reports running."""
        if shutil.which("firewall-cmd") is None:
            return None
        result = run_command(["firewall-cmd", "--state"], error=PackageInstallError, check=False)
        return (result.stdout or "").strip() == "running"

    def _run(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        return run_command(args, error=PackageInstallError, check=check, timeout=_INSTALL_TIMEOUT)


_DEBIAN_FAMILY = {"debian", "ubuntu"}
_RHEL_FAMILY = {"rhel", "centos", "fedora", "rocky", "almalinux"}


def select_strategy(os_family: str, *, like: Sequence[str] = ()) -> PackageStrategy:
    """Return the strategy for *os_family* (or the first matching ``ID_LIKE``)."""
    for candidate in (os_family, *like):
        if candidate in _DEBIAN_FAMILY:
            return AptStrategy()
        if candidate in _RHEL_FAMILY:
            binary = "dnf" if shutil.which("dnf") or shutil.which("yum") is None else "yum"
            return DnfStrategy(family="rhel", package_bin=binary)
    raise UnsupportedOSError(f"No package strategy for OS family '{os_family}'.")


__all__ = [
    "AptStrategy",
    "DnfStrategy",
    "FirewallResult",
    "PackageInstallError",
    "PackageStrategy",
    "UnsupportedOSError",
    "select_strategy",
]
