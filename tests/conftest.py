"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from devhostctl.installation import InstallationConfig
from devhostctl.providers import ComposeError, ServiceState, SystemdError


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class DummyResult:
    """Stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ScriptedPrompter:
    """Prompter replaying canned answers and recording every exchange."""

    def __init__(
        self,
        answers: Iterable[str] = (),
        confirms: Iterable[bool] = (),
    ) -> None:
        """Queue *answers* for ``ask`` and *confirms* for ``confirm``."""
        self.answers = list(answers)
        self.confirms = list(confirms)
        self.asked: list[str] = []
        self.confirmed: list[str] = []
        self.said: list[str] = []

    def ask(self, message: str, *, default: str | None = None, secret: bool = False) -> str:
        """Pop the next answer, falling back to *default*."""
        self.asked.append(message)
        if not self.answers:
            if default is None:
                raise AssertionError(f"Unexpected prompt: {message}")
            return default
        return self.answers.pop(0)

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """Pop the next confirmation, falling back to *default*."""
        self.confirmed.append(message)
        if not self.confirms:
            return default
        return self.confirms.pop(0)

    def say(self, message: str, *, style: str | None = None) -> None:
        """Record *message*."""
        self.said.append(message)


def make_installation(**overrides: object) -> InstallationConfig:
    """Return a valid installation record with optional field overrides."""
    values: dict[str, object] = {
        "domain": "code.example.com",
        "admin_email": "ops@example.com",
        "credential": "Sup3rSecret",
        "install_method": "native",
        "service_user": "coder",
    }
    values.update(overrides)
    return InstallationConfig(**values)  # type: ignore[arg-type]


@pytest.fixture
def installation() -> InstallationConfig:
    """Return a native installation record."""
    return make_installation()


@pytest.fixture
def container_installation() -> InstallationConfig:
    """Return a container installation record."""
    return make_installation(install_method="container")


def write_certificate(
    path: Path,
    not_after: datetime,
    *,
    common_name: str = "code.example.com",
    der: bool = False,
) -> Path:
    """Write a self-signed certificate expiring at *not_after* to *path*."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=90))
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    encoding = serialization.Encoding.DER if der else serialization.Encoding.PEM
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(certificate.public_bytes(encoding))
    return path


@dataclass
class FakeSystemd:
    """In-memory systemd: units start unless listed in ``broken``."""

    systemd_dir: Path = Path("/nonexistent/systemd")
    states: dict[str, ServiceState] = field(default_factory=dict)
    broken: set[str] = field(default_factory=set)
    failing: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)
    units: dict[str, str] = field(default_factory=dict)
    journal: str = "journal line 1\njournal line 2\n"

    @staticmethod
    def app_unit(service_user: str) -> str:
        return f"code-server@{service_user}.service"

    def unit_path(self, unit_file: str) -> Path:
        return self.systemd_dir / unit_file

    def write_unit(self, unit_file: str, content: str) -> bool:
        self.calls.append(("write", unit_file))
        changed = self.units.get(unit_file) != content
        self.units[unit_file] = content
        return changed

    def _act(self, action: str, unit: str) -> None:
        self.calls.append((action, unit))
        if unit in self.failing:
            raise SystemdError(f"systemctl {action} {unit} failed (exit 1): boom")

    def enable(self, unit: str, *, now: bool = False) -> None:
        self._act("enable", unit)
        if now:
            self._started(unit)

    def disable(self, unit: str, *, now: bool = False) -> None:
        self._act("disable", unit)
        if now:
            self.states[unit] = ServiceState.STOPPED

    def start(self, unit: str) -> None:
        self._act("start", unit)
        self._started(unit)

    def restart(self, unit: str) -> None:
        self._act("restart", unit)
        self._started(unit)

    def reload(self, unit: str) -> None:
        self._act("reload", unit)

    def stop(self, unit: str) -> None:
        self._act("stop", unit)
        self.states[unit] = ServiceState.STOPPED

    def state(self, unit: str) -> ServiceState:
        return self.states.get(unit, ServiceState.STOPPED)

    def logs(self, unit: str, *, lines: int = 20) -> str:
        return self.journal

    def remove(self, unit_file: str) -> bool:
        self.calls.append(("remove", unit_file))
        return self.units.pop(unit_file, None) is not None

    def daemon_reload(self) -> None:
        self.calls.append(("daemon-reload", ""))

    def _started(self, unit: str) -> None:
        self.states[unit] = ServiceState.STOPPED if unit in self.broken else ServiceState.RUNNING


@dataclass
class FakeCompose:
    """In-memory compose stack; the first ``broken_starts`` starts do not stick."""

    compose_dir: Path = Path("/nonexistent/compose")
    running: bool = False
    broken_starts: int = 0
    calls: list[str] = field(default_factory=list)
    descriptor: str | None = None
    fail_pull: bool = False

    @property
    def compose_file(self) -> Path:
        return self.compose_dir / "docker-compose.yml"

    def write_descriptor(self, content: str) -> bool:
        self.calls.append("write")
        changed = self.descriptor != content
        self.descriptor = content
        return changed

    def remove_descriptor(self) -> bool:
        self.calls.append("remove")
        existed = self.descriptor is not None
        self.descriptor = None
        return existed

    def up(self) -> None:
        self.calls.append("up")
        self._start()

    def restart(self) -> None:
        self.calls.append("restart")
        self._start()

    def down(self) -> None:
        self.calls.append("down")
        self.running = False

    def stop(self) -> None:
        self.calls.append("stop")
        self.running = False

    def pull(self) -> None:
        self.calls.append("pull")
        if self.fail_pull:
            raise ComposeError("docker compose pull failed (exit 1): denied")

    def prune(self) -> None:
        self.calls.append("prune")

    def logs(self, *, lines: int = 20) -> str:
        return "container log\n"

    def state(self) -> ServiceState:
        return ServiceState.RUNNING if self.running else ServiceState.STOPPED

    def _start(self) -> None:
        if self.broken_starts > 0:
            self.broken_starts -= 1
            self.running = False
            return
        self.running = True
