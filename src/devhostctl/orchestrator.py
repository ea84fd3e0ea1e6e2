"""Installation orchestrator: the ordered first-run pipeline."""
from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .certificates import CertificateManager, CertificateOutcome
from .config import AppConfig
from .health.checks import FAIL2BAN_UNIT
from .installation import (
    EXTENSION_MODES,
    InstallationConfig,
    InstallationStore,
    ValidationError,
    validate_credential,
    validate_domain,
    validate_email,
    validate_service_user,
)
from .management import LOGROTATE_PATH, MONITOR_BINARY
from .prober import HostResources, PreconditionError, ResourceProber
from .prompts import OperatorAborted, Prompter, ask_until_valid, choose
from .providers.application import ApplicationProvider
from .providers.compose import ComposeProvider
from .providers.host import HostError, HostProvider
from .providers.nginx import NginxProvider
from .providers.packages import PackageInstallError, PackageStrategy
from .providers.systemd import SystemdError, SystemdProvider
from .renderer import MONITOR_SERVICE_FILE, MONITOR_TIMER_FILE, ConfigRenderer
from .retry import RetryExhaustedError, RetryPolicy, fixed_delay
from .supervisor import PROXY_UNIT, ServiceSupervisor, TransitionResult
from .swap import SwapPlan, SwapProvisioner
from .templates import write_if_changed

_LOG = logging.getLogger(__name__)

PACKAGE_ATTEMPTS = 3
PACKAGE_RETRY_DELAY = 10.0

StepHook = Callable[[str, str, object], None]


@dataclass(frozen=True, slots=True)
class InstallSummary:
    """What a completed orchestration run produced."""

    installation: InstallationConfig
    resources: HostResources
    swap: SwapPlan | None
    certificate: CertificateOutcome
    first_start: TransitionResult
    warnings: tuple[str, ...] = ()

    @property
    def url(self) -> str:
        """Return the public URL of the deployment."""
        return f"https://{self.installation.domain}"


@dataclass(slots=True)
class Orchestrator:
    """Run the installation pipeline strictly in order.

    Each step blocks until its external call completes; any fatal error
    propagates and aborts the remaining steps.
    """

    config: AppConfig
    store: InstallationStore
    prompter: Prompter
    host: HostProvider
    prober: ResourceProber
    swap: SwapProvisioner
    renderer: ConfigRenderer
    nginx: NginxProvider
    systemd: SystemdProvider
    compose: ComposeProvider
    application: ApplicationProvider
    certificates: CertificateManager
    sleep: Callable[[float], None] = time.sleep
    on_step: StepHook | None = None
    logrotate_path: Path = LOGROTATE_PATH
    warnings: list[str] = field(default_factory=list)

    def run(self, installation: InstallationConfig | None = None) -> InstallSummary:
        """Install end to end; prompt for answers unless *installation* is given."""
        self.check_privileges()
        if installation is None:
            installation = self.collect_answers()
        self.store.save(installation)
        self._step("state", "success", str(self.store.path))

        resources = self.prober.probe()
        self.warnings.extend(resources.warnings)
        self._step("probe", "success", f"{resources.os_name}, {resources.memory_mb} MB")

        swap_plan = self.remediate_memory(resources)
        strategy = self.prober.select_strategy(resources)
        self.install_packages(strategy, installation)
        self.apply_timezone(installation.timezone)
        self.install_application(installation)
        self.activate_http(installation)
        first_start = self.first_start(installation)
        certificate = self.certificates.provision(installation)
        self.warnings.extend(certificate.warnings)
        self._step("certificate", "success", f"issued after {certificate.attempts} attempt(s)")
        self.reload_proxy(installation)
        self.configure_firewall(strategy)
        self.enable_fail2ban(strategy)
        self.install_monitor()
        self.install_logrotate()

        return InstallSummary(
            installation=installation,
            resources=resources,
            swap=swap_plan,
            certificate=certificate,
            first_start=first_start,
            warnings=tuple(self.warnings),
        )

    # Steps ------------------------------------------------------------
    def check_privileges(self) -> None:
        """Require root privileges; installation writes system paths."""
        if not self.host.is_root():
            raise PreconditionError("Installation must run with root privileges (try sudo).")

    def collect_answers(self) -> InstallationConfig:
        """Prompt for domain, email, credential, method, timezone and extras."""
        if self.store.exists() and not self.prompter.confirm(
            f"An installation record exists at {self.store.path}. Reinstall and replace it?",
            default=False,
        ):
            raise OperatorAborted("Installation cancelled; existing record kept.")

        domain = ask_until_valid(self.prompter, "Domain name (e.g. code.example.com)", validate_domain)
        email = ask_until_valid(self.prompter, "Administrator email (for Let's Encrypt)", validate_email)
        password = self._ask_password()
        hash_password = self.prompter.confirm("Store the password as a SHA-256 hash?", default=False)
        method = choose(
            self.prompter,
            "Installation method",
            (("native", "Native (systemd service)"), ("container", "Container (docker compose)")),
            default="native",
        )
        timezone = ask_until_valid(self.prompter, "Timezone", _validate_timezone, default="UTC")
        extension_mode = choose(
            self.prompter,
            "Extensions",
            tuple((mode, mode.capitalize()) for mode in EXTENSION_MODES),
            default="none",
        )
        service_user = "coder"
        if method == "native":
            service_user = ask_until_valid(
                self.prompter,
                "Service account that runs code-server",
                validate_service_user,
                default=os.environ.get("SUDO_USER") or "coder",
            )
        return InstallationConfig.create(
            domain=domain,
            admin_email=email,
            password=password,
            install_method=method,
            hash_password=hash_password,
            timezone=timezone,
            extension_mode=extension_mode,
            service_user=service_user,
        )

    def remediate_memory(self, resources: HostResources) -> SwapPlan | None:
        """Enter swap remediation once when memory is below the threshold."""
        threshold = self.config.swap.low_memory_threshold_mb
        if not resources.is_low_memory(threshold):
            return None
        self.prompter.say(
            f"Only {resources.memory_mb} MB of memory (threshold {threshold} MB).",
            style="yellow",
        )
        plan = self.swap.provision()
        if plan is None:
            self.warnings.append("Continuing without swap on a low-memory host.")
            self._step("swap", "skipped", None)
        else:
            self._step("swap", "success", f"{plan.size_gb} GB at {plan.backing_path}")
        return plan

    def install_packages(self, strategy: PackageStrategy | None, installation: InstallationConfig) -> None:
        """Install OS prerequisites with bounded retries."""
        if strategy is None:
            self.warnings.append("No package strategy for this OS; install prerequisites manually.")
            self._step("packages", "skipped", None)
            return
        packages = strategy.base_packages(installation.install_method)
        policy = RetryPolicy(
            max_attempts=PACKAGE_ATTEMPTS,
            delay=fixed_delay(PACKAGE_RETRY_DELAY),
            sleep=self.sleep,
            retry_on=(PackageInstallError,),
        )
        try:
            policy.run(lambda _attempt: strategy.install_packages(packages), label="Package installation")
        except RetryExhaustedError as exc:
            raise PackageInstallError(
                f"{exc}. Check network access and the package manager's lock "
                "(another upgrade may be running)."
            ) from exc
        self._step("packages", "success", list(packages))

    def apply_timezone(self, timezone: str) -> None:
        """Set the host timezone; failure is only a warning."""
        try:
            self.host.set_timezone(timezone)
        except HostError as exc:
            self.warnings.append(f"Timezone not applied: {exc}")
            self._step("timezone", "warning", str(exc))
            return
        self._step("timezone", "success", timezone)

    def install_application(self, installation: InstallationConfig) -> None:
        """Install code-server natively and write its config (container: no-op)."""
        if installation.is_container:
            self._step("application", "skipped", "container image pulled on first start")
            return
        self.application.install()
        user = installation.service_user
        if not self.host.user_exists(user):
            self.host.create_user(user)
        self.application.write_config(
            self.application.config_path(user),
            port=self.config.app_port,
            credential=installation.credential,
            credential_scheme=installation.credential_scheme,
            owner=user,
        )
        self._step("application", "success", user)

    def activate_http(self, installation: InstallationConfig) -> None:
        """Render and activate the HTTP-only proxy site."""
        self.systemd.enable(PROXY_UNIT, now=True)
        if self.nginx.disable_default_site(backup_dir=self.config.backups.root / "nginx-default"):
            self._step("nginx-default-site", "success", "disabled")
        rendered = self.renderer.render_for(installation, tls_enabled=False)
        self.nginx.activate(rendered.proxy_config)
        self._step("proxy-http", "success", str(self.nginx.site_path))

    def first_start(self, installation: InstallationConfig) -> TransitionResult:
        """Install the service descriptor and start the application."""
        rendered = self.renderer.render_for(installation, tls_enabled=False)
        supervisor = self._supervisor(installation)
        if installation.is_container:
            self.compose.write_descriptor(rendered.service_descriptor)
        else:
            self.systemd.write_unit(rendered.descriptor_name, rendered.service_descriptor)
            self.systemd.enable(self.systemd.app_unit(installation.service_user))
        result = supervisor.start("app", first_install=True)
        self._step("first-start", "success", result.state.value)
        return result

    def reload_proxy(self, installation: InstallationConfig) -> None:
        """Confirm the proxy is serving after the HTTPS switch-over."""
        result = self._supervisor(installation).restart("proxy")
        if not result.live:
            self.warnings.append(f"nginx is {result.state.value} after reload.")
        self._step("proxy-reload", "success" if result.live else "warning", result.state.value)

    def configure_firewall(self, strategy: PackageStrategy | None) -> None:
        """Open SSH/HTTP/HTTPS; every failure here is only a warning."""
        if strategy is None:
            self._step("firewall", "skipped", None)
            return
        try:
            outcome = strategy.configure_firewall()
        except PackageInstallError as exc:
            self.warnings.append(f"Firewall not configured: {exc}")
            self._step("firewall", "warning", str(exc))
            return
        if not outcome.configured:
            self.warnings.append(outcome.detail)
        self._step("firewall", "success" if outcome.configured else "warning", outcome.detail)

    def enable_fail2ban(self, strategy: PackageStrategy | None) -> None:
        """Enable the fail2ban service installed with the prerequisites."""
        if strategy is None:
            self._step("fail2ban", "skipped", None)
            return
        try:
            self.systemd.enable(FAIL2BAN_UNIT, now=True)
        except SystemdError as exc:
            self.warnings.append(f"fail2ban not enabled: {exc}")
            self._step("fail2ban", "warning", str(exc))
            return
        self._step("fail2ban", "success", FAIL2BAN_UNIT)

    def install_monitor(self) -> None:
        """Install and enable the timer that runs the health monitor."""
        command = str(self.config.bin_dir / MONITOR_BINARY)
        units = self.renderer.render_monitor_units(
            command, interval_minutes=self.config.health.interval_minutes
        )
        try:
            self.systemd.write_unit(MONITOR_SERVICE_FILE, units.service)
            self.systemd.write_unit(MONITOR_TIMER_FILE, units.timer)
            self.systemd.enable(MONITOR_TIMER_FILE, now=True)
        except SystemdError as exc:
            self.warnings.append(f"Health monitor timer not enabled: {exc}")
            self._step("monitor", "warning", str(exc))
            return
        self._step("monitor", "success", MONITOR_TIMER_FILE)

    def install_logrotate(self) -> None:
        """Write the logrotate policy for devhostctl's logs."""
        content = self.renderer.render_logrotate(self.config.logs_dir)
        try:
            write_if_changed(self.logrotate_path, content, mode=0o644)
        except OSError as exc:
            self.warnings.append(f"Log rotation not configured: {exc}")
            self._step("logrotate", "warning", str(exc))
            return
        self._step("logrotate", "success", str(self.logrotate_path))

    # ------------------------------------------------------------------
    def _ask_password(self) -> str:
        while True:
            password = self.prompter.ask("Password for code-server", secret=True)
            try:
                advisories = validate_credential(password)
            except ValidationError as exc:
                self.prompter.say(str(exc), style="red")
                continue
            for advisory in advisories:
                self.prompter.say(advisory, style="yellow")
            confirmation = self.prompter.ask("Confirm password", secret=True)
            if confirmation == password:
                return password
            self.prompter.say("Passwords do not match.", style="red")

    def _supervisor(self, installation: InstallationConfig) -> ServiceSupervisor:
        return ServiceSupervisor(
            installation=installation,
            systemd=self.systemd,
            compose=self.compose,
            config=self.config.service,
            sleep=self.sleep,
        )

    def _step(self, name: str, status: str, detail: object) -> None:
        _LOG.info("install step %s: %s", name, status)
        if self.on_step is not None:
            self.on_step(name, status, detail)


def _validate_timezone(value: str) -> str:
    text = value.strip()
    if not text or " " in text:
        raise ValidationError(f"'{value}' is not a valid timezone name (e.g. Europe/Berlin).")
    return text


__all__ = ["InstallSummary", "Orchestrator", "PACKAGE_ATTEMPTS"]
