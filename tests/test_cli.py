"""Tests for the devhostctl CLI."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from devhostctl import __version__
from devhostctl.cli import app
from devhostctl.health import CheckResult, HealthReport, HealthStatus
from devhostctl.installation import InstallationStore
from devhostctl.locking import LockManager, LockTimeoutError
from devhostctl.management import Management, StepOutcome
from devhostctl.providers import ServiceState
from devhostctl.supervisor import ServiceSupervisor, TransitionResult
from conftest import make_installation

runner = CliRunner()


def _prepare_environment(tmp_path: Path, *, installed: bool = True) -> tuple[dict[str, str], Path]:
    """Write a config pointing every path into *tmp_path*; return (env, state file)."""
    state_file = tmp_path / "etc" / "installation.json"
    config = {
        "state_file": str(state_file),
        "logs_dir": str(tmp_path / "logs"),
        "runtime_dir": str(tmp_path / "run"),
        "templates_dir": str(tmp_path / "templates"),
        "bin_dir": str(tmp_path / "bin"),
        "lock_timeout": 1,
        "backups": {"root": str(tmp_path / "backups")},
    }
    config_path = tmp_path / "config.yml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    if installed:
        InstallationStore(state_file).save(make_installation())
    env = {"DEVHOSTCTL_CONFIG_FILE": str(config_path), "COLUMNS": "200"}
    return env, state_file


def _report(*statuses: HealthStatus) -> HealthReport:
    return HealthReport(
        started_at=datetime(2026, 3, 1, tzinfo=UTC),
        results=tuple(
            CheckResult(f"check-{index}", status, f"detail {index}")
            for index, status in enumerate(statuses)
        ),
    )


def _operations(tmp_path: Path) -> list[dict[str, object]]:
    path = tmp_path / "logs" / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_version_option_outputs_package_version(tmp_path: Path) -> None:
    """CLI ``--version`` flag emits the package version."""
    env, _ = _prepare_environment(tmp_path)
    result = runner.invoke(app, ["--version"], env=env)

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_invocation_without_subcommand_shows_help(tmp_path: Path) -> None:
    """Calling the CLI without a subcommand shows help output."""
    env, _ = _prepare_environment(tmp_path)
    result = runner.invoke(app, env=env)

    assert result.exit_code == 0
    assert "code-server" in result.stdout


def test_invalid_config_exits_with_validation_code(tmp_path: Path) -> None:
    """Unknown configuration keys are rejected with exit code 2."""
    config_path = tmp_path / "config.yml"
    config_path.write_text("bogus_key: 1\n", encoding="utf-8")

    result = runner.invoke(app, ["status"], env={"DEVHOSTCTL_CONFIG_FILE": str(config_path)})

    assert result.exit_code == 2


def test_status_without_installation(tmp_path: Path) -> None:
    """Commands needing the installation record exit 3 when it is missing."""
    env, _ = _prepare_environment(tmp_path, installed=False)

    result = runner.invoke(app, ["status"], env=env)

    assert result.exit_code == 3
    assert "devhostctl install" in result.stdout


def test_console_without_installation(tmp_path: Path) -> None:
    """The management console refuses to start before installation."""
    env, _ = _prepare_environment(tmp_path, installed=False)

    result = runner.invoke(app, ["console"], env=env)

    assert result.exit_code == 3


def test_status_renders_table(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """`status` prints every check and records the operation."""
    env, _ = _prepare_environment(tmp_path)
    monkeypatch.setattr(Management, "status", lambda self: _report(HealthStatus.OK, HealthStatus.WARNING))

    result = runner.invoke(app, ["status"], env=env)

    assert result.exit_code == 0
    assert "check-0" in result.stdout
    assert "summary: 1 issue(s)" in result.stdout
    last = _operations(tmp_path)[-1]
    assert last["operation"] == "status"
    assert last["result"]["status"] == "success"  # type: ignore[index]


def test_status_json(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """`status --json` emits the report as JSON."""
    env, _ = _prepare_environment(tmp_path)
    monkeypatch.setattr(Management, "status", lambda self: _report(HealthStatus.OK))

    result = runner.invoke(app, ["status", "--json"], env=env)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["status"] == "ok"
    assert payload["results"][0]["name"] == "check-0"


@pytest.mark.parametrize(
    ("status", "exit_code"),
    [
        (HealthStatus.OK, 0),
        (HealthStatus.WARNING, 0),
        (HealthStatus.CRITICAL, 3),
        (HealthStatus.ERROR, 4),
    ],
)
def test_health_check_exit_codes(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    status: HealthStatus,
    exit_code: int,
) -> None:
    """The monitor exit code follows the worst check status."""
    env, _ = _prepare_environment(tmp_path)
    monkeypatch.setattr(Management, "health_check", lambda self: _report(HealthStatus.OK, status))

    result = runner.invoke(app, ["health-check", "--quiet"], env=env)

    assert result.exit_code == exit_code
    assert result.stdout == ""


def test_health_check_skips_when_locked(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A concurrent monitor run is skipped rather than queued."""
    env, _ = _prepare_environment(tmp_path)
    calls: list[str] = []

    def held(self: LockManager) -> object:
        raise LockTimeoutError("Timed out acquiring health-monitor lock (held by pid 1)")

    monkeypatch.setattr(LockManager, "monitor_lock", held)
    monkeypatch.setattr(Management, "health_check", lambda self: calls.append("run"))

    result = runner.invoke(app, ["health-check"], env=env)

    assert result.exit_code == 0
    assert "already running" in result.stdout
    assert calls == []


def test_service_rejects_unknown_target(tmp_path: Path) -> None:
    """Only app, proxy and all are accepted."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["service", "start", "database"], env=env)

    assert result.exit_code == 2
    assert "Unknown target 'database'" in result.stdout


def test_service_restart_single_target(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A single target is handed to the supervisor."""
    env, _ = _prepare_environment(tmp_path)
    targets: list[str] = []

    def fake_restart(self: ServiceSupervisor, target: str, *, first_install: bool = False) -> TransitionResult:
        targets.append(target)
        return TransitionResult(target=target, action="restart", state=ServiceState.RUNNING)

    monkeypatch.setattr(ServiceSupervisor, "restart", fake_restart)

    result = runner.invoke(app, ["service", "restart", "proxy"], env=env)

    assert result.exit_code == 0
    assert targets == ["proxy"]
    assert "proxy: running" in result.stdout


def test_service_failure_is_a_warning(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Services not reaching the expected state warn and show their logs."""
    env, _ = _prepare_environment(tmp_path)

    def fake_start(self: Management) -> list[TransitionResult]:
        return [
            TransitionResult(
                target="app",
                action="start",
                state=ServiceState.STOPPED,
                log_tail="code-server: address already in use",
            )
        ]

    monkeypatch.setattr(Management, "start", fake_start)

    result = runner.invoke(app, ["service", "start"], env=env)

    assert result.exit_code == 0
    assert "address already in use" in result.stdout
    assert _operations(tmp_path)[-1]["result"]["status"] == "warning"  # type: ignore[index]


def test_remove_cancelled(tmp_path: Path) -> None:
    """Anything other than YES cancels removal with exit code 1."""
    env, state_file = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["remove"], env=env, input="no\n")

    assert result.exit_code == 1
    assert "Removal cancelled." in result.stdout
    assert state_file.exists()


def test_remove_reports_failed_steps(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Failed teardown steps are listed and exit with code 4."""
    env, _ = _prepare_environment(tmp_path)

    def fake_remove(self: Management, *, bin_dir: Path | None = None) -> list[StepOutcome]:
        return [
            StepOutcome("service", ok=True, detail="stopped"),
            StepOutcome("certificate", ok=False, detail="no lineage"),
        ]

    monkeypatch.setattr(Management, "remove", fake_remove)

    result = runner.invoke(app, ["remove", "--confirm", "YES"], env=env)

    assert result.exit_code == 4
    assert "certificate: failed no lineage" in result.stdout


def test_remove_success(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A clean removal exits 0."""
    env, _ = _prepare_environment(tmp_path)
    monkeypatch.setattr(
        Management,
        "remove",
        lambda self, *, bin_dir=None: [StepOutcome("state", ok=True, detail="removed")],
    )

    result = runner.invoke(app, ["remove", "--confirm", "YES"], env=env)

    assert result.exit_code == 0
    assert _operations(tmp_path)[-1]["result"]["status"] == "success"  # type: ignore[index]
