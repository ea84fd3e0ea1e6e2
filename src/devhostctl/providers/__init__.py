"""Provider interfaces for devhostctl.

Each provider isolates one family of external tools behind typed results so
the components above them can be exercised with fakes.
"""
from __future__ import annotations

from .application import AppVersion, ApplicationError, ApplicationProvider
from .certbot import CertbotError, CertbotProvider
from .compose import ComposeError, ComposeProvider
from .host import DiskUsage, HostError, HostProvider, OSRelease
from .network import HttpStatus, NetworkError, NetworkProvider
from .nginx import NginxActivationResult, NginxError, NginxProvider
from .packages import (
    AptStrategy,
    DnfStrategy,
    FirewallResult,
    PackageInstallError,
    PackageStrategy,
    UnsupportedOSError,
    select_strategy,
)
from .service_state import ServiceState
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "AppVersion",
    "ApplicationError",
    "ApplicationProvider",
    "AptStrategy",
    "CertbotError",
    "CertbotProvider",
    "ComposeError",
    "ComposeProvider",
    "DiskUsage",
    "DnfStrategy",
    "FirewallResult",
    "HostError",
    "HostProvider",
    "HttpStatus",
    "NetworkError",
    "NetworkProvider",
    "NginxActivationResult",
    "NginxError",
    "NginxProvider",
    "OSRelease",
    "PackageInstallError",
    "PackageStrategy",
    "ServiceState",
    "SystemdError",
    "SystemdProvider",
    "UnsupportedOSError",
    "select_strategy",
]
