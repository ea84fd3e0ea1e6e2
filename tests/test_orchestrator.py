"""Tests for the installation orchestrator."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from devhostctl.certificates import CertificateError, CertificateOutcome, DnsCheck
from devhostctl.config import AppConfig, load_config
from devhostctl.installation import InstallationConfig, InstallationStore
from devhostctl.orchestrator import Orchestrator
from devhostctl.prober import HostResources, PreconditionError
from devhostctl.prompts import OperatorAborted
from devhostctl.providers import FirewallResult, HostError, PackageInstallError, ServiceState
from devhostctl.renderer import MONITOR_TIMER_FILE, ConfigRenderer
from devhostctl.supervisor import SupervisorError
from devhostctl.swap import SwapPlan
from devhostctl.templates import TemplateEngine
from conftest import FakeCompose, FakeSystemd, ScriptedPrompter

APP_UNIT = "code-server@coder.service"


@dataclass
class FakeHost:
    """Host facts and account management."""

    root: bool = True
    timezone_fails: bool = False
    timezones: list[str] = field(default_factory=list)
    created_users: list[str] = field(default_factory=list)

    def is_root(self) -> bool:
        return self.root

    def set_timezone(self, timezone: str) -> None:
        if self.timezone_fails:
            raise HostError("timedatectl failed (exit 1): no such zone")
        self.timezones.append(timezone)

    def user_exists(self, user: str) -> bool:
        return user in self.created_users

    def create_user(self, user: str) -> None:
        self.created_users.append(user)


@dataclass
class FakeStrategy:
    """Package manager failing a configurable number of times."""

    failures: int = 0
    installs: int = 0

    def base_packages(self, method: str) -> tuple[str, ...]:
        return ("nginx", "certbot")

    def install_packages(self, packages: Sequence[str]) -> None:
        self.installs += 1
        if self.installs <= self.failures:
            raise PackageInstallError("apt-get install failed (exit 100): Could not get lock")

    def configure_firewall(self) -> FirewallResult:
        return FirewallResult(configured=True, tool="ufw", detail="ufw allows 22, 80 and 443")


@dataclass
class FakeProber:
    """Returns fixed resources and strategy."""

    memory_mb: int = 4096
    strategy: FakeStrategy = field(default_factory=FakeStrategy)

    def probe(self) -> HostResources:
        return HostResources(
            os_family="debian",
            os_version="12",
            os_name="Debian GNU/Linux 12",
            memory_mb=self.memory_mb,
            disk_free_gb=40.0,
            connectivity=True,
        )

    def select_strategy(self, resources: HostResources) -> FakeStrategy:
        return self.strategy


@dataclass
class FakeSwap:
    """Counts remediation entries."""

    plan: SwapPlan | None = None
    calls: int = 0

    def provision(self) -> SwapPlan | None:
        self.calls += 1
        return self.plan


@dataclass
class FakeNginx:
    """Records activated site content."""

    site_path: Path = Path("/nonexistent/sites-available/code-server")
    activations: list[str] = field(default_factory=list)

    def disable_default_site(self, backup_dir: Path) -> bool:
        return True

    def activate(self, content: str, *, reload: bool = True) -> None:
        self.activations.append(content)


@dataclass
class FakeApplication:
    """Records installation and config writes."""

    installs: int = 0
    configs: list[dict[str, object]] = field(default_factory=list)

    def install(self) -> None:
        self.installs += 1

    def config_path(self, user: str) -> Path:
        return Path("/home") / user / ".config" / "code-server" / "config.yaml"

    def write_config(self, path: Path, **values: object) -> None:
        self.configs.append(dict(values, path=path))


@dataclass
class FakeCertificates:
    """Issues immediately or fails every attempt."""

    fail: bool = False
    provisioned: list[str] = field(default_factory=list)

    def provision(self, installation: InstallationConfig) -> CertificateOutcome:
        self.provisioned.append(installation.domain)
        if self.fail:
            raise CertificateError("Certificate request failed after 3 attempt(s). The HTTP-only site stays active.")
        return CertificateOutcome(
            domain=installation.domain,
            attempts=1,
            dns=DnsCheck(installation.domain, "203.0.113.7", ("203.0.113.7",)),
        )


@dataclass
class Rig:
    """The orchestrator plus handles on its collaborators."""

    orchestrator: Orchestrator
    config: AppConfig
    prompter: ScriptedPrompter
    host: FakeHost
    prober: FakeProber
    swap: FakeSwap
    nginx: FakeNginx
    systemd: FakeSystemd
    compose: FakeCompose
    application: FakeApplication
    certificates: FakeCertificates
    steps: list[tuple[str, str]]
    sleeps: list[float]


def _rig(
    tmp_path: Path,
    *,
    answers: Sequence[str] = (),
    confirms: Sequence[bool] = (),
    host: FakeHost | None = None,
    prober: FakeProber | None = None,
    swap: FakeSwap | None = None,
    certificates: FakeCertificates | None = None,
) -> Rig:
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={
            "state_file": str(tmp_path / "etc" / "installation.json"),
            "logs_dir": str(tmp_path / "logs"),
            "bin_dir": str(tmp_path / "bin"),
            "backups": {"root": str(tmp_path / "backups")},
        },
    )
    prompter = ScriptedPrompter(answers=answers, confirms=confirms)
    host = host or FakeHost()
    prober = prober or FakeProber()
    swap = swap or FakeSwap()
    nginx = FakeNginx()
    systemd = FakeSystemd(systemd_dir=tmp_path / "units")
    compose = FakeCompose(compose_dir=tmp_path / "compose")
    application = FakeApplication()
    certificates = certificates or FakeCertificates()
    steps: list[tuple[str, str]] = []
    sleeps: list[float] = []
    orchestrator = Orchestrator(
        config=config,
        store=InstallationStore(config.state_file),
        prompter=prompter,
        host=host,  # type: ignore[arg-type]
        prober=prober,  # type: ignore[arg-type]
        swap=swap,  # type: ignore[arg-type]
        renderer=ConfigRenderer(
            templates=TemplateEngine.with_overrides(None),
            app_port=config.app_port,
            certificates=config.certificates,
            service=config.service,
            container=config.container,
        ),
        nginx=nginx,  # type: ignore[arg-type]
        systemd=systemd,  # type: ignore[arg-type]
        compose=compose,  # type: ignore[arg-type]
        application=application,  # type: ignore[arg-type]
        certificates=certificates,  # type: ignore[arg-type]
        sleep=sleeps.append,
        on_step=lambda name, status, detail: steps.append((name, status)),
        logrotate_path=tmp_path / "logrotate" / "devhostctl",
    )
    return Rig(
        orchestrator,
        config,
        prompter,
        host,
        prober,
        swap,
        nginx,
        systemd,
        compose,
        application,
        certificates,
        steps,
        sleeps,
    )


INTERACTIVE_ANSWERS = [
    "bad_domain",
    "code.example.com",
    "ops@example.com",
    "Sup3rSecret",
    "Sup3rSecret",
    "1",
    "UTC",
    "1",
    "coder",
]


def test_collect_answers_reprompts_invalid_domain(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """An invalid domain is rejected and asked again."""
    monkeypatch.delenv("SUDO_USER", raising=False)
    rig = _rig(tmp_path, answers=INTERACTIVE_ANSWERS)

    installation = rig.orchestrator.collect_answers()

    assert installation.domain == "code.example.com"
    assert installation.install_method == "native"
    assert installation.credential == "Sup3rSecret"
    assert rig.prompter.asked.count("Domain name (e.g. code.example.com)") == 2
    assert any("Invalid domain 'bad_domain'" in line for line in rig.prompter.said)


def test_password_mismatch_is_asked_again(tmp_path: Path) -> None:
    """Mismatching confirmations and weak passwords restart the password prompt."""
    rig = _rig(tmp_path, answers=["short", "Sup3rSecret", "different", "Sup3rSecret", "Sup3rSecret"])

    password = rig.orchestrator._ask_password()

    assert password == "Sup3rSecret"
    assert "Passwords do not match." in rig.prompter.said
    assert rig.prompter.asked.count("Password for code-server") == 3


def test_existing_record_requires_confirmation(tmp_path: Path, installation: InstallationConfig) -> None:
    """Declining to replace an existing record aborts."""
    rig = _rig(tmp_path, confirms=[False])
    rig.orchestrator.store.save(installation)

    with pytest.raises(OperatorAborted):
        rig.orchestrator.collect_answers()


def test_requires_root(tmp_path: Path, installation: InstallationConfig) -> None:
    """Non-root runs stop before anything is written."""
    rig = _rig(tmp_path, host=FakeHost(root=False))

    with pytest.raises(PreconditionError):
        rig.orchestrator.run(installation)

    assert rig.orchestrator.store.exists() is False


def test_native_install_step_order(tmp_path: Path, installation: InstallationConfig) -> None:
    """Steps run strictly in order and the summary reflects the outcome."""
    rig = _rig(tmp_path)

    summary = rig.orchestrator.run(installation)

    assert [name for name, _status in rig.steps] == [
        "state",
        "probe",
        "packages",
        "timezone",
        "application",
        "nginx-default-site",
        "proxy-http",
        "first-start",
        "certificate",
        "proxy-reload",
        "firewall",
        "fail2ban",
        "monitor",
        "logrotate",
    ]
    assert summary.url == "https://code.example.com"
    assert summary.swap is None
    assert summary.first_start.state is ServiceState.RUNNING
    assert rig.orchestrator.store.load().domain == "code.example.com"
    assert rig.application.installs == 1
    assert rig.host.created_users == ["coder"]
    assert "code-server@.service" in rig.systemd.units
    assert ("enable", MONITOR_TIMER_FILE) in rig.systemd.calls
    assert ("enable", "fail2ban.service") in rig.systemd.calls
    assert (tmp_path / "logrotate" / "devhostctl").exists()
    assert len(rig.nginx.activations) == 1
    assert "listen 443" not in rig.nginx.activations[0]


def test_container_install_writes_compose(tmp_path: Path, container_installation: InstallationConfig) -> None:
    """Container installs skip the native binary and start the stack."""
    rig = _rig(tmp_path)

    summary = rig.orchestrator.run(container_installation)

    assert rig.application.installs == 0
    assert rig.compose.descriptor is not None
    assert rig.compose.calls[-1] == "up"
    assert summary.first_start.target == "stack"
    assert ("application", "skipped") in rig.steps


def test_low_memory_enters_remediation_once(tmp_path: Path, installation: InstallationConfig) -> None:
    """Low memory triggers exactly one swap remediation."""
    plan = SwapPlan(size_gb=2, backing_path=Path("/swapfile"), already_present=False)
    swap = FakeSwap(plan=plan)
    rig = _rig(tmp_path, prober=FakeProber(memory_mb=512), swap=swap)

    summary = rig.orchestrator.run(installation)

    assert swap.calls == 1
    assert summary.swap == plan
    assert ("swap", "success") in rig.steps
    assert any("Only 512 MB" in line for line in rig.prompter.said)


def test_declined_swap_is_a_warning(tmp_path: Path, installation: InstallationConfig) -> None:
    """Continuing without swap is recorded as a warning."""
    swap = FakeSwap(plan=None)
    rig = _rig(tmp_path, prober=FakeProber(memory_mb=512), swap=swap)

    summary = rig.orchestrator.run(installation)

    assert swap.calls == 1
    assert "Continuing without swap on a low-memory host." in summary.warnings


def test_sufficient_memory_skips_remediation(tmp_path: Path, installation: InstallationConfig) -> None:
    """Hosts above the threshold never reach the swap provisioner."""
    swap = FakeSwap()
    rig = _rig(tmp_path, swap=swap)

    rig.orchestrator.run(installation)

    assert swap.calls == 0


def test_package_install_retries(tmp_path: Path, installation: InstallationConfig) -> None:
    """Transient package failures are retried with a fixed delay."""
    strategy = FakeStrategy(failures=2)
    rig = _rig(tmp_path, prober=FakeProber(strategy=strategy))

    rig.orchestrator.run(installation)

    assert strategy.installs == 3
    assert rig.sleeps[:2] == [10.0, 10.0]


def test_package_install_exhausted(tmp_path: Path, installation: InstallationConfig) -> None:
    """Three failed package attempts abort the installation."""
    strategy = FakeStrategy(failures=5)
    rig = _rig(tmp_path, prober=FakeProber(strategy=strategy))

    with pytest.raises(PackageInstallError) as excinfo:
        rig.orchestrator.run(installation)

    assert strategy.installs == 3
    assert "lock" in str(excinfo.value)
    assert rig.nginx.activations == []


def test_certificate_failure_keeps_http_config(tmp_path: Path, installation: InstallationConfig) -> None:
    """After certificate failure the HTTP-only site stays active and later steps are skipped."""
    rig = _rig(tmp_path, certificates=FakeCertificates(fail=True))

    with pytest.raises(CertificateError):
        rig.orchestrator.run(installation)

    assert len(rig.nginx.activations) == 1
    assert "listen 443" not in rig.nginx.activations[0]
    assert rig.certificates.provisioned == ["code.example.com"]
    names = [name for name, _status in rig.steps]
    assert "first-start" in names
    assert "proxy-reload" not in names


def test_timezone_failure_is_a_warning(tmp_path: Path, installation: InstallationConfig) -> None:
    """A rejected timezone does not stop the installation."""
    rig = _rig(tmp_path, host=FakeHost(timezone_fails=True))

    summary = rig.orchestrator.run(installation)

    assert ("timezone", "warning") in rig.steps
    assert any("Timezone not applied" in warning for warning in summary.warnings)


def test_fail2ban_failure_is_a_warning(tmp_path: Path, installation: InstallationConfig) -> None:
    """A missing fail2ban unit is reported without stopping the installation."""
    rig = _rig(tmp_path)
    rig.systemd.failing.add("fail2ban.service")

    summary = rig.orchestrator.run(installation)

    assert ("fail2ban", "warning") in rig.steps
    assert ("monitor", "success") in rig.steps
    assert any("fail2ban not enabled" in warning for warning in summary.warnings)


def test_first_start_failure_is_fatal(tmp_path: Path, installation: InstallationConfig) -> None:
    """A service that does not come up aborts before certificates are requested."""
    rig = _rig(tmp_path)
    rig.systemd.broken.add(APP_UNIT)

    with pytest.raises(SupervisorError):
        rig.orchestrator.run(installation)

    assert rig.certificates.provisioned == []
