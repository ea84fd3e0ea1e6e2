"""Configuration loader for devhostctl.

Values are resolved from several layers, later layers winning:

1. Built-in defaults.
2. ``/etc/devhostctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``DEVHOSTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export DEVHOSTCTL_SWAP__LOW_MEMORY_THRESHOLD_MB=1500
    export DEVHOSTCTL_CERTIFICATES__DNS_MISMATCH=wait

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load devhostctl configuration. Install with "
        "`pip install devhostctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "DEVHOSTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ProberConfig:
    """Host resource probing thresholds and sources."""

    min_disk_gb: float = 5.0
    connectivity_endpoints: tuple[str, ...] = (
        "google.com:443",
        "1.1.1.1:443",
        "cloudflare.com:443",
    )
    connect_timeout: float = 5.0
    os_release: Path = Path("/etc/os-release")
    meminfo: Path = Path("/proc/meminfo")
    disk_path: Path = Path("/")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "min_disk_gb": self.min_disk_gb,
            "connectivity_endpoints": list(self.connectivity_endpoints),
            "connect_timeout": self.connect_timeout,
            "os_release": str(self.os_release),
            "meminfo": str(self.meminfo),
            "disk_path": str(self.disk_path),
        }


@dataclass(frozen=True)
class SwapConfig:
    """Swap remediation settings."""

    low_memory_threshold_mb: int = 1024
    backing_path: Path = Path("/swapfile")
    margin_gb: int = 2
    min_size_gb: int = 1
    max_size_gb: int = 8
    swaps_file: Path = Path("/proc/swaps")
    fstab: Path = Path("/etc/fstab")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "low_memory_threshold_mb": self.low_memory_threshold_mb,
            "backing_path": str(self.backing_path),
            "margin_gb": self.margin_gb,
            "min_size_gb": self.min_size_gb,
            "max_size_gb": self.max_size_gb,
            "swaps_file": str(self.swaps_file),
            "fstab": str(self.fstab),
        }


@dataclass(frozen=True)
class CertificateConfig:
    """ACME issuance, DNS alignment and expiry thresholds."""

    max_attempts: int = 3
    retry_delay: float = 5.0
    dns_mismatch: str = "confirm"
    propagation_interval: float = 30.0
    propagation_timeout: float = 600.0
    resolvers: tuple[str, ...] = ("8.8.8.8", "1.1.1.1")
    ip_echo_urls: tuple[str, ...] = (
        "https://ifconfig.me/ip",
        "https://icanhazip.com",
        "https://api.ipify.org",
    )
    live_dir: Path = Path("/etc/letsencrypt/live")
    certbot_bin: str = "certbot"
    log_path: Path = Path("/var/log/letsencrypt/letsencrypt.log")
    warn_days: int = 30
    urgent_days: int = 7

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "max_attempts": self.max_attempts,
            "retry_delay": self.retry_delay,
            "dns_mismatch": self.dns_mismatch,
            "propagation_interval": self.propagation_interval,
            "propagation_timeout": self.propagation_timeout,
            "resolvers": list(self.resolvers),
            "ip_echo_urls": list(self.ip_echo_urls),
            "live_dir": str(self.live_dir),
            "certbot_bin": self.certbot_bin,
            "log_path": str(self.log_path),
            "warn_days": self.warn_days,
            "urgent_days": self.urgent_days,
        }


@dataclass(frozen=True)
class NginxConfig:
    """Reverse proxy layout."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    site_name: str = "code-server"
    nginx_bin: str = "nginx"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "site_name": self.site_name,
            "nginx_bin": self.nginx_bin,
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "systemctl_bin": self.systemctl_bin,
            "journalctl_bin": self.journalctl_bin,
        }


@dataclass(frozen=True)
class ContainerConfig:
    """Container-mode stack settings."""

    compose_dir: Path = Path("/opt/devhostctl/compose")
    image: str = "codercom/code-server:latest"
    container_name: str = "code-server-enhanced"
    docker_bin: str = "docker"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "compose_dir": str(self.compose_dir),
            "image": self.image,
            "container_name": self.container_name,
            "docker_bin": self.docker_bin,
        }


@dataclass(frozen=True)
class ServiceConfig:
    """Service supervision tunables."""

    settle_delay: float = 5.0
    log_tail_lines: int = 20
    memory_max: str = "1G"
    nofile_limit: int = 65536

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "settle_delay": self.settle_delay,
            "log_tail_lines": self.log_tail_lines,
            "memory_max": self.memory_max,
            "nofile_limit": self.nofile_limit,
        }


@dataclass(frozen=True)
class HealthConfig:
    """Health monitor thresholds."""

    disk_warning_percent: float = 80.0
    disk_critical_percent: float = 90.0
    memory_warning_percent: float = 85.0
    request_timeout: float = 10.0
    restart_wait: float = 5.0
    interval_minutes: int = 5
    log_file: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "disk_warning_percent": self.disk_warning_percent,
            "disk_critical_percent": self.disk_critical_percent,
            "memory_warning_percent": self.memory_warning_percent,
            "request_timeout": self.request_timeout,
            "restart_wait": self.restart_wait,
            "interval_minutes": self.interval_minutes,
            "log_file": str(self.log_file) if self.log_file is not None else None,
        }


@dataclass(frozen=True)
class BackupConfig:
    """Backup storage defaults."""

    root: Path
    index: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"root": str(self.root), "index": str(self.index)}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for devhostctl."""

    config_file: Path
    state_file: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    bin_dir: Path
    lock_timeout: float
    app_port: int
    prober: ProberConfig
    swap: SwapConfig
    certificates: CertificateConfig
    nginx: NginxConfig
    systemd: SystemdConfig
    container: ContainerConfig
    service: ServiceConfig
    health: HealthConfig
    backups: BackupConfig

    @property
    def health_log(self) -> Path:
        """Return the append-only health log location."""
        return self.health.log_file or self.logs_dir / "health.log"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_file": str(self.state_file),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "bin_dir": str(self.bin_dir),
            "lock_timeout": self.lock_timeout,
            "app_port": self.app_port,
            "prober": self.prober.to_dict(),
            "swap": self.swap.to_dict(),
            "certificates": self.certificates.to_dict(),
            "nginx": self.nginx.to_dict(),
            "systemd": self.systemd.to_dict(),
            "container": self.container.to_dict(),
            "service": self.service.to_dict(),
            "health": self.health.to_dict(),
            "backups": self.backups.to_dict(),
        }


_SECTION_TYPES: dict[str, type] = {
    "prober": ProberConfig,
    "swap": SwapConfig,
    "certificates": CertificateConfig,
    "nginx": NginxConfig,
    "systemd": SystemdConfig,
    "container": ContainerConfig,
    "service": ServiceConfig,
    "health": HealthConfig,
}

DEFAULTS: dict[str, object] = {
    "config_file": "/etc/devhostctl/config.yml",
    "state_file": "/etc/devhostctl/installation.json",
    "logs_dir": "/var/log/devhostctl",
    "runtime_dir": "/run/devhostctl",
    "templates_dir": "/etc/devhostctl/templates",
    "bin_dir": "/usr/local/bin",
    "lock_timeout": 30.0,
    "app_port": 8080,
    "prober": ProberConfig().to_dict(),
    "swap": SwapConfig().to_dict(),
    "certificates": CertificateConfig().to_dict(),
    "nginx": NginxConfig().to_dict(),
    "systemd": SystemdConfig().to_dict(),
    "container": ContainerConfig().to_dict(),
    "service": ServiceConfig().to_dict(),
    "health": HealthConfig().to_dict(),
    "backups": {
        "root": "/var/backups/devhostctl",
        "index": None,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_DNS_MISMATCH_POLICIES = {"abort", "confirm", "wait"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    for section, section_type in _SECTION_TYPES.items():
        mapping = _as_dict(raw.get(section), section)
        allowed = set(section_type.__dataclass_fields__.keys())
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    backups_map = _as_dict(raw.get("backups"), "backups")
    unknown_backups = set(backups_map.keys()) - {"root", "index"}
    if unknown_backups:
        joined = ", ".join(sorted(unknown_backups))
        raise ConfigError(f"Unknown backups configuration keys: {joined}.")

    certificates = _as_dict(raw.get("certificates"), "certificates")
    policy = certificates.get("dns_mismatch")
    if policy is not None and str(policy) not in ALLOWED_DNS_MISMATCH_POLICIES:
        allowed_policies = ", ".join(sorted(ALLOWED_DNS_MISMATCH_POLICIES))
        raise ConfigError(
            f"Unsupported DNS mismatch policy '{policy}'. Allowed: {allowed_policies}."
        )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    logs_dir = _to_path(raw.get("logs_dir"))
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)
    app_port = _expect_int(raw.get("app_port"), "app_port", default=8080)
    if not 1 <= app_port <= 65535:
        raise ConfigError(f"app_port must be between 1 and 65535. Got {app_port}.")

    prober_map = _as_dict(raw.get("prober"), "prober")
    prober = ProberConfig(
        min_disk_gb=_expect_positive_float(
            prober_map.get("min_disk_gb"), "prober.min_disk_gb", default=5.0
        ),
        connectivity_endpoints=_as_str_tuple(
            prober_map.get("connectivity_endpoints"),
            "prober.connectivity_endpoints",
            default=ProberConfig().connectivity_endpoints,
        ),
        connect_timeout=_expect_positive_float(
            prober_map.get("connect_timeout"), "prober.connect_timeout", default=5.0
        ),
        os_release=_to_path(prober_map.get("os_release", "/etc/os-release")),
        meminfo=_to_path(prober_map.get("meminfo", "/proc/meminfo")),
        disk_path=_to_path(prober_map.get("disk_path", "/")),
    )
    if len(prober.connectivity_endpoints) < 2:
        raise ConfigError("prober.connectivity_endpoints must list at least two endpoints.")

    swap_map = _as_dict(raw.get("swap"), "swap")
    swap = SwapConfig(
        low_memory_threshold_mb=_expect_int(
            swap_map.get("low_memory_threshold_mb"),
            "swap.low_memory_threshold_mb",
            default=1024,
        ),
        backing_path=_to_path(swap_map.get("backing_path", "/swapfile")),
        margin_gb=_expect_int(swap_map.get("margin_gb"), "swap.margin_gb", default=2),
        min_size_gb=_expect_int(swap_map.get("min_size_gb"), "swap.min_size_gb", default=1),
        max_size_gb=_expect_int(swap_map.get("max_size_gb"), "swap.max_size_gb", default=8),
        swaps_file=_to_path(swap_map.get("swaps_file", "/proc/swaps")),
        fstab=_to_path(swap_map.get("fstab", "/etc/fstab")),
    )
    if swap.min_size_gb < 1 or swap.max_size_gb < swap.min_size_gb:
        raise ConfigError("swap.min_size_gb/max_size_gb must describe a non-empty range >= 1.")

    cert_map = _as_dict(raw.get("certificates"), "certificates")
    defaults = CertificateConfig()
    certificates = CertificateConfig(
        max_attempts=_expect_int(
            cert_map.get("max_attempts"), "certificates.max_attempts", default=3
        ),
        retry_delay=_expect_non_negative_float(
            cert_map.get("retry_delay"), "certificates.retry_delay", default=5.0
        ),
        dns_mismatch=str(cert_map.get("dns_mismatch", "confirm")),
        propagation_interval=_expect_positive_float(
            cert_map.get("propagation_interval"),
            "certificates.propagation_interval",
            default=30.0,
        ),
        propagation_timeout=_expect_non_negative_float(
            cert_map.get("propagation_timeout"),
            "certificates.propagation_timeout",
            default=600.0,
        ),
        resolvers=_as_str_tuple(
            cert_map.get("resolvers"), "certificates.resolvers", default=defaults.resolvers
        ),
        ip_echo_urls=_as_str_tuple(
            cert_map.get("ip_echo_urls"),
            "certificates.ip_echo_urls",
            default=defaults.ip_echo_urls,
        ),
        live_dir=_to_path(cert_map.get("live_dir", "/etc/letsencrypt/live")),
        certbot_bin=str(cert_map.get("certbot_bin", "certbot")),
        log_path=_to_path(cert_map.get("log_path", defaults.log_path)),
        warn_days=_expect_int(cert_map.get("warn_days"), "certificates.warn_days", default=30),
        urgent_days=_expect_int(
            cert_map.get("urgent_days"), "certificates.urgent_days", default=7
        ),
    )
    if certificates.max_attempts < 1:
        raise ConfigError("certificates.max_attempts must be at least 1.")
    if certificates.urgent_days > certificates.warn_days:
        raise ConfigError("certificates.urgent_days cannot exceed certificates.warn_days.")

    nginx_map = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        sites_available=_to_path(
            nginx_map.get("sites_available", "/etc/nginx/sites-available")
        ),
        sites_enabled=_to_path(nginx_map.get("sites_enabled", "/etc/nginx/sites-enabled")),
        site_name=str(nginx_map.get("site_name", "code-server")),
        nginx_bin=str(nginx_map.get("nginx_bin", "nginx")),
    )

    systemd_map = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_map.get("unit_dir", "/etc/systemd/system")),
        systemctl_bin=str(systemd_map.get("systemctl_bin", "systemctl")),
        journalctl_bin=str(systemd_map.get("journalctl_bin", "journalctl")),
    )

    container_map = _as_dict(raw.get("container"), "container")
    container_defaults = ContainerConfig()
    container = ContainerConfig(
        compose_dir=_to_path(container_map.get("compose_dir", container_defaults.compose_dir)),
        image=str(container_map.get("image", container_defaults.image)),
        container_name=str(
            container_map.get("container_name", container_defaults.container_name)
        ),
        docker_bin=str(container_map.get("docker_bin", "docker")),
    )

    service_map = _as_dict(raw.get("service"), "service")
    service = ServiceConfig(
        settle_delay=_expect_non_negative_float(
            service_map.get("settle_delay"), "service.settle_delay", default=5.0
        ),
        log_tail_lines=_expect_int(
            service_map.get("log_tail_lines"), "service.log_tail_lines", default=20
        ),
        memory_max=str(service_map.get("memory_max", "1G")),
        nofile_limit=_expect_int(
            service_map.get("nofile_limit"), "service.nofile_limit", default=65536
        ),
    )

    health_map = _as_dict(raw.get("health"), "health")
    log_file_value = health_map.get("log_file")
    health = HealthConfig(
        disk_warning_percent=_expect_percent(
            health_map.get("disk_warning_percent"), "health.disk_warning_percent", 80.0
        ),
        disk_critical_percent=_expect_percent(
            health_map.get("disk_critical_percent"), "health.disk_critical_percent", 90.0
        ),
        memory_warning_percent=_expect_percent(
            health_map.get("memory_warning_percent"), "health.memory_warning_percent", 85.0
        ),
        request_timeout=_expect_positive_float(
            health_map.get("request_timeout"), "health.request_timeout", default=10.0
        ),
        restart_wait=_expect_non_negative_float(
            health_map.get("restart_wait"), "health.restart_wait", default=5.0
        ),
        interval_minutes=_expect_int(
            health_map.get("interval_minutes"), "health.interval_minutes", default=5
        ),
        log_file=_to_path(log_file_value) if log_file_value else None,
    )
    if health.disk_warning_percent > health.disk_critical_percent:
        raise ConfigError(
            "health.disk_warning_percent cannot exceed health.disk_critical_percent."
        )
    if health.interval_minutes < 1:
        raise ConfigError("health.interval_minutes must be at least 1.")

    backups_map = _as_dict(raw.get("backups"), "backups")
    backups_root = _to_path(backups_map.get("root", "/var/backups/devhostctl"))
    backups_index_value = backups_map.get("index")
    backups = BackupConfig(
        root=backups_root,
        index=_to_path(backups_index_value) if backups_index_value else backups_root / "backups.json",
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        state_file=_to_path(raw.get("state_file")),
        logs_dir=logs_dir,
        runtime_dir=_to_path(raw.get("runtime_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        bin_dir=_to_path(raw.get("bin_dir")),
        lock_timeout=lock_timeout,
        app_port=app_port,
        prober=prober,
        swap=swap,
        certificates=certificates,
        nginx=nginx,
        systemd=systemd,
        container=container,
        service=service,
        health=health,
        backups=backups,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _as_str_tuple(value: object | None, label: str, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    items = [str(item).strip() for item in _as_sequence(value, label)]
    cleaned = tuple(item for item in items if item)
    if not cleaned:
        raise ConfigError(f"{label} must contain at least one entry.")
    return cleaned


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _expect_percent(value: object | None, label: str, default: float) -> float:
    numeric = _expect_positive_float(value, label, default=default)
    if numeric > 100:
        raise ConfigError(f"{label} must be a percentage between 0 and 100. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackupConfig",
    "CertificateConfig",
    "ConfigError",
    "ContainerConfig",
    "HealthConfig",
    "NginxConfig",
    "ProberConfig",
    "ServiceConfig",
    "SwapConfig",
    "SystemdConfig",
    "load_config",
]
