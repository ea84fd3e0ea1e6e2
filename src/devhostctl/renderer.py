"""Config renderer for the reverse proxy, service descriptor and support files."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import CertificateConfig, ContainerConfig, ServiceConfig
from .installation import INSTALL_METHODS, InstallationConfig
from .templates import TemplateEngine

PROXY_TEMPLATE = "nginx/site.conf.j2"
UNIT_TEMPLATE = "systemd/code-server@.service.j2"
COMPOSE_TEMPLATE = "compose/docker-compose.yml.j2"
MONITOR_SERVICE_TEMPLATE = "systemd/devhost-monitor.service.j2"
MONITOR_TIMER_TEMPLATE = "systemd/devhost-monitor.timer.j2"
LOGROTATE_TEMPLATE = "logrotate/devhostctl.j2"

UNIT_FILE = "code-server@.service"
MONITOR_SERVICE_FILE = "devhost-monitor.service"
MONITOR_TIMER_FILE = "devhost-monitor.timer"

RATE_LIMIT_ZONE = "code_server"
RATE_LIMIT = "10r/s"
RATE_LIMIT_BURST = 20
CLIENT_MAX_BODY_SIZE = "100M"
NODE_MAX_OLD_SPACE_MB = 1024


@dataclass(frozen=True, slots=True)
class RenderedConfig:
    """Proxy configuration and service descriptor rendered together."""

    proxy_config: str
    service_descriptor: str
    descriptor_kind: str
    tls_enabled: bool

    @property
    def descriptor_name(self) -> str:
        """Return the file name the descriptor is installed under."""
        return UNIT_FILE if self.descriptor_kind == "systemd" else "docker-compose.yml"


@dataclass(frozen=True, slots=True)
class MonitorUnits:
    """Rendered timer/oneshot pair that schedules health checks."""

    service: str
    timer: str


@dataclass(slots=True)
class ConfigRenderer:
    """Render configuration from a small parameter set.

    Rendering never touches the filesystem; activation is left to the
    providers so validation can gate every write.
    """

    templates: TemplateEngine
    app_port: int
    certificates: CertificateConfig
    service: ServiceConfig
    container: ContainerConfig
    binary: str = "/usr/bin/code-server"

    def render(
        self,
        domain: str,
        install_method: str,
        tls_enabled: bool,
        *,
        credential: str | None = None,
        credential_scheme: str = "plain",
        timezone: str = "UTC",
    ) -> RenderedConfig:
        """Return the proxy config and the descriptor for *install_method*."""
        if install_method not in INSTALL_METHODS:
            raise ValueError(f"Unknown install method '{install_method}'.")
        proxy = self.render_proxy(domain, tls_enabled)
        if install_method == "container":
            descriptor = self.render_compose(
                credential or "",
                credential_scheme=credential_scheme,
                timezone=timezone,
            )
            kind = "compose"
        else:
            descriptor = self.render_unit()
            kind = "systemd"
        return RenderedConfig(
            proxy_config=proxy,
            service_descriptor=descriptor,
            descriptor_kind=kind,
            tls_enabled=tls_enabled,
        )

    def render_for(self, installation: InstallationConfig, *, tls_enabled: bool) -> RenderedConfig:
        """Render using the values recorded in *installation*."""
        return self.render(
            installation.domain,
            installation.install_method,
            tls_enabled,
            credential=installation.credential,
            credential_scheme=installation.credential_scheme,
            timezone=installation.timezone,
        )

    def render_proxy(self, domain: str, tls_enabled: bool) -> str:
        """Render the nginx site in HTTP-only or HTTPS mode."""
        live = self.certificates.live_dir / domain
        context = {
            "domain": domain,
            "tls_enabled": tls_enabled,
            "app_port": self.app_port,
            "certificate_path": str(live / "fullchain.pem"),
            "certificate_key_path": str(live / "privkey.pem"),
            "rate_limit_zone": RATE_LIMIT_ZONE,
            "rate_limit": RATE_LIMIT,
            "rate_limit_burst": RATE_LIMIT_BURST,
            "client_max_body_size": CLIENT_MAX_BODY_SIZE,
        }
        return self.templates.render_to_string(PROXY_TEMPLATE, context)

    def render_unit(self) -> str:
        """Render the templated ``code-server@.service`` unit."""
        context = {
            "binary": self.binary,
            "app_port": self.app_port,
            "node_max_old_space_mb": NODE_MAX_OLD_SPACE_MB,
            "nofile_limit": self.service.nofile_limit,
            "memory_max": self.service.memory_max,
        }
        return self.templates.render_to_string(UNIT_TEMPLATE, context)

    def render_compose(
        self,
        credential: str,
        *,
        credential_scheme: str = "plain",
        timezone: str = "UTC",
    ) -> str:
        """Render the compose descriptor for container mode."""
        context = {
            "image": self.container.image,
            "container_name": self.container.container_name,
            "app_port": self.app_port,
            "credential_env": "HASHED_PASSWORD" if credential_scheme == "sha256" else "PASSWORD",
            "credential": credential,
            "timezone": timezone,
            "nofile_limit": self.service.nofile_limit,
        }
        return self.templates.render_to_string(COMPOSE_TEMPLATE, context)

    def render_monitor_units(self, command: str, *, interval_minutes: int) -> MonitorUnits:
        """Render the oneshot service and timer that run the health monitor."""
        return MonitorUnits(
            service=self.templates.render_to_string(
                MONITOR_SERVICE_TEMPLATE, {"monitor_command": command}
            ),
            timer=self.templates.render_to_string(
                MONITOR_TIMER_TEMPLATE, {"interval_minutes": interval_minutes}
            ),
        )

    def render_logrotate(self, logs_dir: Path) -> str:
        """Render the logrotate policy for *logs_dir*."""
        return self.templates.render_to_string(LOGROTATE_TEMPLATE, {"logs_dir": str(logs_dir)})


__all__ = [
    "ConfigRenderer",
    "MONITOR_SERVICE_FILE",
    "MONITOR_TIMER_FILE",
    "MonitorUnits",
    "RenderedConfig",
    "UNIT_FILE",
]
