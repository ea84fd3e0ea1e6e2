"""Resource prober: classify the host before anything is changed."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .config import ProberConfig
from .providers.host import HostError, HostProvider
from .providers.network import NetworkProvider
from .providers.packages import PackageStrategy, UnsupportedOSError, select_strategy

_LOG = logging.getLogger(__name__)

SUPPORTED_FAMILIES = ("ubuntu", "debian", "centos", "rhel", "fedora")


class PreconditionError(RuntimeError):
    """Raised when the host cannot run the installation at all."""


@dataclass(frozen=True, slots=True)
class HostResources:
    """Facts gathered by :class:`ResourceProber`."""

    os_family: str
    os_version: str
    os_name: str
    memory_mb: int
    disk_free_gb: float
    connectivity: bool
    reachable_endpoint: str | None = None
    supported: bool = True
    id_like: tuple[str, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def is_low_memory(self, threshold_mb: int) -> bool:
        """Return True when total memory is below *threshold_mb*."""
        return self.memory_mb < threshold_mb


@dataclass(slots=True)
class ResourceProber:
    """Inspect OS identity, memory, free disk and outbound connectivity."""

    config: ProberConfig
    host: HostProvider
    network: NetworkProvider

    def probe(self) -> HostResources:
        """Return :class:`HostResources` or raise :class:`PreconditionError`."""
        try:
            release = self.host.os_release(self.config.os_release)
        except HostError as exc:
            raise PreconditionError(f"Unable to detect the operating system: {exc}") from exc

        warnings: list[str] = []
        supported = _family_supported(release.id, release.id_like)
        if not supported:
            message = (
                f"Operating system '{release.pretty_name}' is not explicitly supported; "
                "continuing on a best-effort basis."
            )
            _LOG.warning(message)
            warnings.append(message)

        memory_mb = self.host.memory_total_mb(self.config.meminfo)
        disk = self.host.disk_usage(self.config.disk_path)
        if disk.free_gb < self.config.min_disk_gb:
            raise PreconditionError(
                f"Insufficient disk space: {disk.free_gb:.1f} GB free on "
                f"{self.config.disk_path}, {self.config.min_disk_gb:g} GB required."
            )

        reachable = self.network.any_reachable(self.config.connectivity_endpoints)
        if reachable is None:
            joined = ", ".join(self.config.connectivity_endpoints)
            raise PreconditionError(f"No network connectivity; none of {joined} responded.")

        return HostResources(
            os_family=release.id,
            os_version=release.version_id,
            os_name=release.pretty_name,
            memory_mb=memory_mb,
            disk_free_gb=round(disk.free_gb, 1),
            connectivity=True,
            reachable_endpoint=reachable,
            supported=supported,
            id_like=release.id_like,
            warnings=tuple(warnings),
        )

    def select_strategy(self, resources: HostResources) -> PackageStrategy | None:
        """Pick the package/firewall strategy once for the probed host.

        Returns ``None`` for best-effort hosts without a matching strategy; the
        caller then skips package and firewall management.
        """
        try:
            return select_strategy(resources.os_family, like=resources.id_like)
        except UnsupportedOSError as exc:
            _LOG.warning("%s Prerequisites must be installed manually.", exc)
            return None


def _family_supported(os_id: str, id_like: tuple[str, ...]) -> bool:
    if os_id in SUPPORTED_FAMILIES:
        return True
    return any(like in SUPPORTED_FAMILIES for like in id_like)


__all__ = ["HostResources", "PreconditionError", "ResourceProber", "SUPPORTED_FAMILIES"]
