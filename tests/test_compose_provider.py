"""Tests for the container stack provider."""
from __future__ import annotations

import stat
from collections.abc import Sequence
from pathlib import Path

import pytest

from devhostctl.providers import ComposeError, ComposeProvider, ServiceState
from conftest import DummyResult


class FakeDocker:
    """Scripted docker CLI."""

    def __init__(self, *, plugin: bool = True, inspect: DummyResult | None = None) -> None:
        """Configure plugin availability and the ``docker inspect`` answer."""
        self.plugin = plugin
        self.inspect = inspect or DummyResult(stdout="true\n")
        self.calls: list[list[str]] = []

    def run(self, args: Sequence[str], check: bool = True) -> DummyResult:
        """Record *args* and answer like docker would."""
        self.calls.append(list(args))
        if list(args[1:3]) == ["compose", "version"] and not self.plugin:
            raise ComposeError("docker compose version failed")
        if args[1] == "inspect":
            return self.inspect
        return DummyResult()


def _provider(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, docker: FakeDocker) -> ComposeProvider:
    monkeypatch.setattr(
        ComposeProvider,
        "_run",
        lambda self, args, check=True: docker.run(args, check),
    )
    return ComposeProvider(compose_dir=tmp_path / "compose")


def test_descriptor_written_owner_only(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """The descriptor carries the credential, so it is mode 0600."""
    provider = _provider(tmp_path, monkeypatch, FakeDocker())

    assert provider.write_descriptor("services: {}\n") is True

    assert stat.S_IMODE(provider.compose_file.stat().st_mode) == 0o600
    assert provider.remove_descriptor() is True
    assert provider.remove_descriptor() is False


def test_up_uses_plugin_when_available(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """``docker compose`` is preferred and probed only once."""
    docker = FakeDocker()
    provider = _provider(tmp_path, monkeypatch, docker)

    provider.up()
    provider.down()

    compose_file = str(tmp_path / "compose" / "docker-compose.yml")
    assert docker.calls == [
        ["docker", "compose", "version"],
        ["docker", "compose", "-f", compose_file, "up", "-d"],
        ["docker", "compose", "-f", compose_file, "down"],
    ]


def test_falls_back_to_standalone_binary(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Hosts without the plugin use ``docker-compose``."""
    docker = FakeDocker(plugin=False)
    provider = _provider(tmp_path, monkeypatch, docker)

    provider.pull()

    assert docker.calls[-1][:2] == ["docker-compose", "-f"]
    assert docker.calls[-1][-1] == "pull"


@pytest.mark.parametrize(
    ("inspect", "expected"),
    [
        (DummyResult(stdout="true\n"), ServiceState.RUNNING),
        (DummyResult(stdout="false\n"), ServiceState.STOPPED),
        (DummyResult(returncode=1, stderr="Error: No such object: x"), ServiceState.STOPPED),
        (DummyResult(returncode=1, stderr="daemon unreachable"), ServiceState.UNKNOWN),
    ],
)
def test_state(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    inspect: DummyResult,
    expected: ServiceState,
) -> None:
    """Container state follows ``docker inspect``."""
    provider = _provider(tmp_path, monkeypatch, FakeDocker(inspect=inspect))

    assert provider.state() is expected


def test_prune(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Pruning runs ``docker system prune -f``."""
    docker = FakeDocker()
    provider = _provider(tmp_path, monkeypatch, docker)

    provider.prune()

    assert docker.calls == [["docker", "system", "prune", "-f"]]
