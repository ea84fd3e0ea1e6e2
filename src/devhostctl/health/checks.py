"""Check registration for the health monitor."""

from __future__ import annotations

import stat
from collections.abc import Sequence

from ..providers.service_state import ServiceState
from ..supervisor import SupervisorError
from ..tls import ExpiryStatus, TLSInspectionError
from .models import CheckDefinition, CheckResult, HealthContext, HealthStatus

APP_PROCESS_NAME = "code-server"

STATUS_CHECK_NAMES = ("app-process", "proxy-service", "app-port", "disk-usage", "memory-usage")

FAIL2BAN_UNIT = "fail2ban.service"
SECURE_STATE_MODE = 0o600


def collect_checks() -> Sequence[CheckDefinition]:
    """Return every check a monitor run performs."""
    return (
        CheckDefinition("app-process", _check_app_process, remediate=_restart_app),
        CheckDefinition("proxy-service", _check_proxy_service),
        CheckDefinition("app-port", _check_app_port),
        CheckDefinition("disk-usage", _check_disk_usage),
        CheckDefinition("memory-usage", _check_memory_usage),
        CheckDefinition("domain-https", _check_domain_https),
        CheckDefinition("certificate-expiry", _check_certificate_expiry),
    )


def status_checks() -> Sequence[CheckDefinition]:
    """Return the quick subset used by status views (never restarts)."""
    return tuple(
        CheckDefinition(check.name, check.run)
        for check in collect_checks()
        if check.name in STATUS_CHECK_NAMES
    )


def security_checks() -> Sequence[CheckDefinition]:
    """Return the security posture checks shown by the management console."""
    return (
        CheckDefinition("firewall", _check_firewall),
        CheckDefinition("fail2ban", _check_fail2ban),
        CheckDefinition("state-file-mode", _check_state_file_mode),
        CheckDefinition("certificate-expiry", _check_certificate_expiry),
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def _app_state(context: HealthContext) -> ServiceState:
    if context.installation.is_container:
        return context.supervisor.state("app")
    if context.host.process_running(APP_PROCESS_NAME):
        return ServiceState.RUNNING
    return ServiceState.STOPPED


def _check_app_process(context: HealthContext) -> CheckResult:
    state = _app_state(context)
    label = "container stack" if context.installation.is_container else "code-server process"
    if state is ServiceState.RUNNING:
        return CheckResult("app-process", HealthStatus.OK, f"{label} is running")
    if state is ServiceState.UNKNOWN:
        return CheckResult(
            "app-process",
            HealthStatus.WARNING,
            f"{label} state could not be determined",
        )
    return CheckResult("app-process", HealthStatus.ERROR, f"{label} is not running")


def _restart_app(context: HealthContext) -> CheckResult:
    try:
        transition = context.supervisor.restart("app")
    except SupervisorError as exc:
        return CheckResult("app-restart", HealthStatus.ERROR, f"restart failed: {exc}")
    if _app_state(context) is ServiceState.RUNNING:
        return CheckResult("app-restart", HealthStatus.OK, "restarted successfully")
    detail = "still not running after restart"
    if transition.detail:
        detail = f"{detail}: {transition.detail}"
    return CheckResult("app-restart", HealthStatus.ERROR, detail)


def _check_proxy_service(context: HealthContext) -> CheckResult:
    state = context.supervisor.state("proxy")
    if state is ServiceState.RUNNING:
        return CheckResult("proxy-service", HealthStatus.OK, "nginx is active")
    if state is ServiceState.UNKNOWN:
        return CheckResult("proxy-service", HealthStatus.WARNING, "nginx state unknown")
    return CheckResult("proxy-service", HealthStatus.ERROR, "nginx is not active")


def _check_app_port(context: HealthContext) -> CheckResult:
    port = context.app_port
    if context.network.tcp_reachable("127.0.0.1", port):
        return CheckResult("app-port", HealthStatus.OK, f"127.0.0.1:{port} accepts connections")
    return CheckResult("app-port", HealthStatus.ERROR, f"127.0.0.1:{port} is not accepting connections")


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


def _check_disk_usage(context: HealthContext) -> CheckResult:
    usage = context.host.disk_usage(context.disk_path)
    percent = usage.percent_used
    data = {"path": str(context.disk_path), "percent_used": percent, "free_gb": round(usage.free_gb, 1)}
    if percent > context.config.disk_critical_percent:
        status = HealthStatus.CRITICAL
    elif percent > context.config.disk_warning_percent:
        status = HealthStatus.WARNING
    else:
        status = HealthStatus.OK
    return CheckResult("disk-usage", status, f"{percent:.0f}% used on {context.disk_path}", data)


def _check_memory_usage(context: HealthContext) -> CheckResult:
    percent = context.host.memory_percent()
    status = (
        HealthStatus.WARNING
        if percent > context.config.memory_warning_percent
        else HealthStatus.OK
    )
    return CheckResult("memory-usage", status, f"{percent:.0f}% of memory in use")


# ---------------------------------------------------------------------------
# Public endpoint + TLS
# ---------------------------------------------------------------------------


def _check_domain_https(context: HealthContext) -> CheckResult:
    url = f"https://{context.installation.domain}"
    response = context.network.https_status(url)
    if response.ok:
        return CheckResult("domain-https", HealthStatus.OK, f"{url} answered {response.status}")
    if response.status is None:
        return CheckResult("domain-https", HealthStatus.ERROR, f"{url} unreachable: {response.detail}")
    return CheckResult(
        "domain-https",
        HealthStatus.WARNING,
        f"{url} answered {response.status} {response.detail}".rstrip(),
    )


def _check_certificate_expiry(context: HealthContext) -> CheckResult:
    domain = context.installation.domain
    path = context.certbot.certificate_path(domain)
    try:
        record = context.inspector.inspect(domain, path)
    except TLSInspectionError as exc:
        return CheckResult("certificate-expiry", HealthStatus.ERROR, str(exc))
    if record is None:
        return CheckResult("certificate-expiry", HealthStatus.WARNING, f"no certificate at {path}")

    urgency = record.classify(
        warn_days=context.certificates.warn_days,
        urgent_days=context.certificates.urgent_days,
    )
    data = record.to_dict()
    days = record.days_remaining
    if urgency is ExpiryStatus.EXPIRED:
        return CheckResult("certificate-expiry", HealthStatus.CRITICAL, "certificate has expired", data)
    if urgency is ExpiryStatus.URGENT:
        return CheckResult(
            "certificate-expiry",
            HealthStatus.CRITICAL,
            f"certificate expires in {days} day(s); renew urgently",
            data,
        )
    if urgency is ExpiryStatus.RENEW_SOON:
        return CheckResult(
            "certificate-expiry",
            HealthStatus.WARNING,
            f"certificate expires in {days} day(s); renewal due",
            data,
        )
    return CheckResult("certificate-expiry", HealthStatus.OK, f"{days} day(s) remaining", data)


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


def _check_firewall(context: HealthContext) -> CheckResult:
    strategy = context.firewall
    if strategy is None:
        return CheckResult("firewall", HealthStatus.WARNING, "no firewall support for this distribution")
    active = strategy.firewall_active()
    tool = strategy.firewall_tool
    if active is None:
        return CheckResult("firewall", HealthStatus.WARNING, f"{tool} is not installed")
    if active:
        return CheckResult("firewall", HealthStatus.OK, f"{tool} is active")
    return CheckResult("firewall", HealthStatus.WARNING, f"{tool} is inactive")


def _check_fail2ban(context: HealthContext) -> CheckResult:
    state = context.supervisor.systemd.state(FAIL2BAN_UNIT)
    if state is ServiceState.RUNNING:
        return CheckResult("fail2ban", HealthStatus.OK, "fail2ban is active")
    return CheckResult("fail2ban", HealthStatus.WARNING, f"fail2ban is {state.value}")


def _check_state_file_mode(context: HealthContext) -> CheckResult:
    path = context.state_path
    if path is None:
        return CheckResult("state-file-mode", HealthStatus.WARNING, "installation record location unknown")
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return CheckResult("state-file-mode", HealthStatus.ERROR, f"{path} is missing")
    if mode == SECURE_STATE_MODE:
        return CheckResult("state-file-mode", HealthStatus.OK, f"{path} is {mode:o}")
    return CheckResult(
        "state-file-mode",
        HealthStatus.WARNING,
        f"{path} is {mode:o}; should be {SECURE_STATE_MODE:o}",
    )
