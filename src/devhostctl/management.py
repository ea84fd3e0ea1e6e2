"""Day-two operations shared by the console and the CLI commands."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from .backups import BackupArtifact, BackupResult, BackupsRegistry
from .certificates import CertificateError, CertificateManager
from .config import AppConfig
from .health import (
    HealthContext,
    HealthLog,
    HealthMonitor,
    HealthReport,
    collect_checks,
    security_checks,
    status_checks,
)
from .installation import InstallationConfig, InstallationStore
from .providers.application import ApplicationError, ApplicationProvider, AppVersion
from .providers.compose import ComposeError, ComposeProvider
from .providers.host import HostError, HostProvider
from .providers.network import NetworkProvider
from .providers.nginx import NginxError, NginxProvider
from .providers.packages import PackageStrategy, UnsupportedOSError, select_strategy
from .providers.systemd import SystemdError, SystemdProvider
from .renderer import MONITOR_SERVICE_FILE, MONITOR_TIMER_FILE, UNIT_FILE
from .supervisor import ServiceSupervisor, TransitionResult
from .tls import CertificateInspector

_LOG = logging.getLogger(__name__)

LOGROTATE_PATH = Path("/etc/logrotate.d/devhostctl")
PANEL_BINARY = "devhost-panel"
MONITOR_BINARY = "devhost-monitor"

REMOVAL_STEPS = (
    "service",
    "descriptor",
    "proxy",
    "certificate",
    "monitor",
    "state",
    "binaries",
)


class UpdateError(RuntimeError):
    """Raised when the application cannot be updated."""


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of one best-effort teardown step."""

    name: str
    ok: bool
    detail: str = ""


@dataclass(frozen=True, slots=True)
class UpdateOutcome:
    """Versions observed around an update."""

    before: AppVersion
    updated: bool
    after: AppVersion | None = None
    restart: TransitionResult | None = None


@dataclass(slots=True)
class Management:
    """Operate an installed deployment described by *installation*."""

    config: AppConfig
    installation: InstallationConfig
    store: InstallationStore
    supervisor: ServiceSupervisor
    certificates: CertificateManager
    nginx: NginxProvider
    systemd: SystemdProvider
    compose: ComposeProvider
    application: ApplicationProvider
    host: HostProvider
    network: NetworkProvider
    backups: BackupsRegistry
    inspector: CertificateInspector = field(default_factory=CertificateInspector)
    logrotate_path: Path = LOGROTATE_PATH
    packages: PackageStrategy | None = None

    # Services ---------------------------------------------------------
    def start(self) -> list[TransitionResult]:
        """Start the application then the proxy."""
        return [self.supervisor.start("app"), self.supervisor.start("proxy")]

    def stop(self) -> list[TransitionResult]:
        """Stop the application (the proxy keeps serving its error page)."""
        return [self.supervisor.stop("app")]

    def restart(self) -> list[TransitionResult]:
        """Restart the application then the proxy."""
        return [self.supervisor.restart("app"), self.supervisor.restart("proxy")]

    def logs(self, lines: int | None = None) -> str:
        """Return the application log tail."""
        return self.supervisor.logs("app", lines=lines)

    # Health -----------------------------------------------------------
    def health_context(self, *, allow_restart: bool) -> HealthContext:
        """Build the context consumed by health checks."""
        return HealthContext(
            installation=self.installation,
            config=self.config.health,
            certificates=self.config.certificates,
            app_port=self.config.app_port,
            disk_path=self.config.prober.disk_path,
            host=self.host,
            network=self.network,
            supervisor=self.supervisor,
            certbot=self.certificates.certbot,
            inspector=self.inspector,
            allow_restart=allow_restart,
            state_path=self.store.path,
        )

    def status(self) -> HealthReport:
        """Run the quick status subset without logging or restarting."""
        monitor = HealthMonitor(self.health_context(allow_restart=False))
        return monitor.run(status_checks())

    def health_check(self) -> HealthReport:
        """Run the full monitor, appending to the health log."""
        monitor = HealthMonitor(
            self.health_context(allow_restart=True),
            log=HealthLog(self.config.health_log),
        )
        return monitor.run(collect_checks())

    def security_check(self) -> HealthReport:
        """Report firewall, fail2ban, installation record mode and certificate expiry."""
        context = replace(self.health_context(allow_restart=False), firewall=self.firewall_strategy())
        return HealthMonitor(context).run(security_checks())

    def firewall_strategy(self) -> PackageStrategy | None:
        """Return the distribution strategy, detected from os-release when not given."""
        if self.packages is not None:
            return self.packages
        try:
            release = self.host.os_release(self.config.prober.os_release)
            return select_strategy(release.id, like=release.id_like)
        except (HostError, UnsupportedOSError) as exc:
            _LOG.warning("Firewall status unavailable: %s", exc)
            return None

    def system_info(self) -> Mapping[str, object]:
        """Return host facts together with the deployment summary."""
        facts: dict[str, object] = dict(self.host.system_info())
        facts["domain"] = self.installation.domain
        facts["install_method"] = self.installation.install_method
        facts["installed_at"] = self.installation.created_at
        return facts

    # Update -----------------------------------------------------------
    def update(self, *, confirm: Callable[[AppVersion], bool] | None = None) -> UpdateOutcome:
        """Upgrade code-server when a newer release exists.

        Container deployments pull the image and recreate the stack; native
        ones rerun the upstream installer and restart the unit.
        """
        before = self.application.versions()
        if not self.installation.is_container and not before.update_available:
            return UpdateOutcome(before=before, updated=False)
        if confirm is not None and not confirm(before):
            return UpdateOutcome(before=before, updated=False)
        try:
            if self.installation.is_container:
                self.compose.pull()
                self.compose.up()
            else:
                self.application.install()
        except (ApplicationError, ComposeError) as exc:
            raise UpdateError(f"Update failed: {exc}") from exc
        restart = self.supervisor.restart("app")
        after = self.application.versions() if not self.installation.is_container else None
        return UpdateOutcome(before=before, updated=True, after=after, restart=restart)

    # Backup -----------------------------------------------------------
    def backup_artifacts(self) -> list[BackupArtifact]:
        """Return the files and directories worth preserving."""
        user = self.installation.service_user
        artifacts = [
            BackupArtifact("installation.json", self.store.path),
            BackupArtifact("nginx-site", self.nginx.site_path),
        ]
        if self.installation.is_container:
            artifacts.append(BackupArtifact("compose", self.compose.compose_dir))
        else:
            artifacts.append(
                BackupArtifact("code-server-config", self.application.config_path(user).parent)
            )
            artifacts.append(BackupArtifact(UNIT_FILE, self.systemd.unit_path(UNIT_FILE)))
            artifacts.append(
                BackupArtifact(
                    "unit-overrides",
                    self.systemd.unit_path(f"{self.systemd.app_unit(user)}.d"),
                )
            )
        return artifacts

    def backup(self) -> BackupResult:
        """Copy configuration and state into a timestamped backup directory."""
        return self.backups.create(self.backup_artifacts())

    # Removal ----------------------------------------------------------
    def remove(self, *, bin_dir: Path | None = None) -> list[StepOutcome]:
        """Tear the deployment down, continuing past individual failures."""
        target_bin = bin_dir or self.config.bin_dir
        steps: list[Callable[[], str]] = [
            self._remove_service,
            self._remove_descriptor,
            self._remove_proxy,
            self._remove_certificate,
            self._remove_monitor,
            self._remove_state,
            lambda: self._remove_binaries(target_bin),
        ]
        outcomes: list[StepOutcome] = []
        for name, step in zip(REMOVAL_STEPS, steps, strict=True):
            try:
                detail = step()
            except (
                SystemdError,
                ComposeError,
                NginxError,
                CertificateError,
                OSError,
            ) as exc:
                _LOG.warning("Removal step %s failed: %s", name, exc)
                outcomes.append(StepOutcome(name, ok=False, detail=str(exc)))
                continue
            outcomes.append(StepOutcome(name, ok=True, detail=detail))
        return outcomes

    def _remove_service(self) -> str:
        if self.installation.is_container:
            self.compose.down()
            return "container stack stopped"
        unit = self.systemd.app_unit(self.installation.service_user)
        self.systemd.disable(unit, now=True)
        return f"{unit} stopped and disabled"

    def _remove_descriptor(self) -> str:
        if self.installation.is_container:
            removed = self.compose.remove_descriptor()
            return "compose descriptor removed" if removed else "no compose descriptor"
        removed = self.systemd.remove(UNIT_FILE)
        return f"{UNIT_FILE} removed" if removed else f"no {UNIT_FILE}"

    def _remove_proxy(self) -> str:
        removed = self.nginx.remove()
        self.nginx.reload()
        return "nginx site removed" if removed else "no nginx site"

    def _remove_certificate(self) -> str:
        self.certificates.delete(self.installation.domain)
        return f"certificate for {self.installation.domain} deleted"

    def _remove_monitor(self) -> str:
        try:
            self.systemd.disable(MONITOR_TIMER_FILE, now=True)
        except SystemdError as exc:
            _LOG.info("Monitor timer was not enabled: %s", exc)
        self.systemd.remove(MONITOR_TIMER_FILE)
        self.systemd.remove(MONITOR_SERVICE_FILE)
        self.logrotate_path.unlink(missing_ok=True)
        return "health monitor timer removed"

    def _remove_state(self) -> str:
        removed = self.store.remove()
        return "installation record removed" if removed else "no installation record"

    def _remove_binaries(self, bin_dir: Path) -> str:
        removed = []
        for name in (PANEL_BINARY, MONITOR_BINARY):
            path = bin_dir / name
            if path.exists() or path.is_symlink():
                path.unlink()
                removed.append(name)
        return f"removed {', '.join(removed)}" if removed else "no console binaries found"


__all__ = [
    "Management",
    "REMOVAL_STEPS",
    "StepOutcome",
    "UpdateError",
    "UpdateOutcome",
]
