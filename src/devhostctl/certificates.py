"""Certificate lifecycle manager: DNS alignment, issuance and HTTPS switch-over."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import CertificateConfig
from .installation import InstallationConfig
from .prompts import OperatorAborted, Prompter
from .providers.certbot import CertbotError, CertbotProvider
from .providers.network import NetworkError, NetworkProvider
from .providers.nginx import NginxProvider
from .providers.systemd import SystemdError, SystemdProvider
from .renderer import ConfigRenderer
from .retry import RetryExhaustedError, RetryPolicy, fixed_delay
from .tls import CertificateInspector, CertificateRecord

_LOG = logging.getLogger(__name__)

RENEWAL_TIMER = "certbot.timer"

_FAILURE_HINTS = (
    "the domain's A record does not point at this host",
    "port 80 is blocked by a firewall or cloud security group",
    "Let's Encrypt rate limits were reached for this domain",
)


class CertificateError(RuntimeError):
    """Raised when a certificate cannot be issued or managed."""


@dataclass(frozen=True, slots=True)
class DnsCheck:
    """Comparison of the domain's A records with this host's public IP."""

    domain: str
    public_ip: str | None
    resolved: tuple[str, ...]

    @property
    def aligned(self) -> bool:
        """Return True when the domain resolves to the public IP."""
        return self.public_ip is not None and self.public_ip in self.resolved

    def describe(self) -> str:
        """Return a one-line human summary."""
        resolved = ", ".join(self.resolved) or "nothing"
        public = self.public_ip or "unknown"
        return f"{self.domain} resolves to {resolved}; this host is {public}"


@dataclass(frozen=True, slots=True)
class CertificateOutcome:
    """Result of a successful provisioning run."""

    domain: str
    attempts: int
    dns: DnsCheck
    waited_seconds: float = 0.0
    renewal_enabled: bool = True
    record: CertificateRecord | None = None
    warnings: tuple[str, ...] = ()


@dataclass(slots=True)
class CertificateManager:
    """Drive ``start -> dns_check -> [wait_for_propagation] -> request -> issued|failed``.

    ``clock`` and ``sleep`` are injectable so propagation polling and retry
    delays can be exercised without real waiting.
    """

    config: CertificateConfig
    certbot: CertbotProvider
    network: NetworkProvider
    nginx: NginxProvider
    systemd: SystemdProvider
    renderer: ConfigRenderer
    prompter: Prompter
    inspector: CertificateInspector = field(default_factory=CertificateInspector)
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    history: list[str] = field(default_factory=lambda: ["start"])

    @property
    def state(self) -> str:
        """Return the current lifecycle state."""
        return self.history[-1]

    def provision(self, installation: InstallationConfig) -> CertificateOutcome:
        """Issue a certificate for *installation* and switch the proxy to HTTPS."""
        domain = installation.domain
        warnings: list[str] = []

        self._enter("dns_check")
        dns = self.check_dns(domain)
        waited = 0.0
        if not dns.aligned:
            dns, waited = self._handle_mismatch(dns)
            if not dns.aligned:
                warnings.append(f"DNS not aligned when requesting the certificate: {dns.describe()}")

        self._enter("request")
        try:
            attempts = self.request(domain, installation.admin_email)
        except CertificateError:
            self._enter("failed")
            raise
        self._enter("issued")

        renewal = self.enable_auto_renewal()
        if not renewal:
            warnings.append(f"Automatic renewal could not be enabled via {RENEWAL_TIMER}.")
        self.activate_https(domain)
        return CertificateOutcome(
            domain=domain,
            attempts=attempts,
            dns=dns,
            waited_seconds=waited,
            renewal_enabled=renewal,
            record=self.status(domain),
            warnings=tuple(warnings),
        )

    def check_dns(self, domain: str) -> DnsCheck:
        """Resolve *domain* externally and compare it with the public IP."""
        try:
            public_ip: str | None = self.network.public_ip(self.config.ip_echo_urls)
        except NetworkError as exc:
            _LOG.warning("Unable to determine public IP: %s", exc)
            public_ip = None
        try:
            resolved = self.network.resolve_a(domain, self.config.resolvers)
        except NetworkError as exc:
            _LOG.warning("Unable to resolve %s: %s", domain, exc)
            resolved = ()
        return DnsCheck(domain=domain, public_ip=public_ip, resolved=tuple(resolved))

    def wait_for_propagation(self, domain: str) -> tuple[DnsCheck, float]:
        """Poll DNS until aligned or ``propagation_timeout`` elapses.

        Returns the last check and the seconds spent waiting. Never sleeps
        past the deadline.
        """
        started = self.clock()
        deadline = started + self.config.propagation_timeout
        check = self.check_dns(domain)
        while not check.aligned:
            remaining = deadline - self.clock()
            if remaining <= 0:
                _LOG.warning(
                    "DNS propagation wait for %s timed out after %.0f s; proceeding.",
                    domain,
                    self.config.propagation_timeout,
                )
                break
            self.prompter.say(
                f"Waiting for DNS propagation ({check.describe()}); "
                f"{int(remaining)} s left.",
                style="yellow",
            )
            self.sleep(min(self.config.propagation_interval, remaining))
            check = self.check_dns(domain)
        return check, self.clock() - started

    def request(self, domain: str, email: str) -> int:
        """Request the certificate with bounded retries; return attempts used."""
        policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            delay=fixed_delay(self.config.retry_delay),
            sleep=self.sleep,
            retry_on=(CertbotError,),
        )
        used = 0

        def _attempt(attempt: int) -> None:
            nonlocal used
            used = attempt
            self.certbot.request(domain, email)

        def _report(attempt: int, exc: BaseException) -> None:
            self.prompter.say(
                f"Certificate attempt {attempt}/{self.config.max_attempts} failed: {exc}",
                style="yellow",
            )

        try:
            policy.run(_attempt, label=f"Certificate request for {domain}", on_failure=_report)
        except RetryExhaustedError as exc:
            hints = "; ".join(_FAILURE_HINTS)
            raise CertificateError(
                f"Certificate issuance for {domain} failed after {exc.attempts} attempt(s): "
                f"{exc.last_error}. See {self.config.log_path} for details. "
                f"Common causes: {hints}."
            ) from exc
        return used

    def enable_auto_renewal(self) -> bool:
        """Enable the certbot renewal timer; return False when unavailable."""
        try:
            self.systemd.enable(RENEWAL_TIMER, now=True)
        except SystemdError as exc:
            _LOG.warning("Unable to enable %s: %s", RENEWAL_TIMER, exc)
            return False
        return True

    def activate_https(self, domain: str) -> None:
        """Render the HTTPS proxy configuration and activate it after validation."""
        self.nginx.activate(self.renderer.render_proxy(domain, tls_enabled=True))

    def status(self, domain: str) -> CertificateRecord | None:
        """Return expiry facts for *domain*, or None when no certificate exists."""
        return self.inspector.inspect(domain, self.certbot.certificate_path(domain))

    def renew(self, domain: str) -> CertificateRecord | None:
        """Renew now, reload nginx and return the refreshed record."""
        try:
            self.certbot.renew(domain)
        except CertbotError as exc:
            raise CertificateError(
                f"Certificate renewal for {domain} failed: {exc}. "
                f"See {self.config.log_path} for details."
            ) from exc
        self.nginx.reload()
        return self.status(domain)

    def delete(self, domain: str) -> None:
        """Delete the certificate lineage for *domain*."""
        try:
            self.certbot.delete(domain)
        except CertbotError as exc:
            raise CertificateError(f"Certificate removal for {domain} failed: {exc}") from exc

    # ------------------------------------------------------------------
    def _enter(self, state: str) -> None:
        _LOG.debug("Certificate lifecycle: %s -> %s", self.state, state)
        self.history.append(state)

    def _handle_mismatch(self, dns: DnsCheck) -> tuple[DnsCheck, float]:
        policy = self.config.dns_mismatch
        self.prompter.say(f"DNS mismatch: {dns.describe()}.", style="yellow")
        if policy == "abort":
            self._enter("failed")
            raise CertificateError(
                f"DNS mismatch: {dns.describe()}. Point the A record at this host and retry."
            )
        if policy == "wait":
            self._enter("wait_for_propagation")
            return self.wait_for_propagation(dns.domain)
        if not self.prompter.confirm("Request the certificate anyway?", default=False):
            self._enter("failed")
            raise OperatorAborted("Certificate request cancelled: DNS does not point at this host.")
        return dns, 0.0


__all__ = [
    "CertificateError",
    "CertificateManager",
    "CertificateOutcome",
    "DnsCheck",
    "RENEWAL_TIMER",
]
