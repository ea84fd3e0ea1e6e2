"""Tests for the code-server and certbot providers."""
from __future__ import annotations

import json
import stat
from collections.abc import Sequence
from pathlib import Path

import pytest
import yaml
from packaging.version import Version

from devhostctl.providers import (
    ApplicationError,
    ApplicationProvider,
    AppVersion,
    CertbotProvider,
    NetworkError,
    NetworkProvider,
)
from devhostctl.providers import application as application_module
from devhostctl.providers import certbot as certbot_module
from devhostctl.providers.application import parse_version
from conftest import DummyResult


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("4.89.1 1d0c3c2 with Code 1.89.1", Version("4.89.1")),
        ("v4.90.0", Version("4.90.0")),
        ("garbage", None),
    ],
)
def test_parse_version(text: str, expected: Version | None) -> None:
    """The first PEP 440 token wins."""
    assert parse_version(text) == expected


def test_update_available() -> None:
    """Updates need both versions and a newer release."""
    assert AppVersion(Version("4.1"), Version("4.2")).update_available is True
    assert AppVersion(Version("4.2"), Version("4.2")).update_available is False
    assert AppVersion(None, Version("4.2")).update_available is False


def test_versions(monkeypatch: pytest.MonkeyPatch) -> None:
    """Installed and latest versions come from the binary and the release API."""

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        assert list(args) == ["code-server", "--version"]
        return DummyResult(stdout="4.89.1 abc with Code 1.89.1\n")

    monkeypatch.setattr(application_module, "run_command", fake_run)
    monkeypatch.setattr(
        NetworkProvider,
        "fetch_text",
        lambda self, url: json.dumps({"tag_name": "v4.90.0"}),
    )
    provider = ApplicationProvider(network=NetworkProvider())

    versions = provider.versions()

    assert versions.installed == Version("4.89.1")
    assert versions.latest == Version("4.90.0")
    assert versions.update_available is True


def test_latest_version_unreachable(monkeypatch: pytest.MonkeyPatch) -> None:
    """An unreachable release API yields no latest version."""

    def fail(self: NetworkProvider, url: str) -> str:
        raise NetworkError("offline")

    monkeypatch.setattr(NetworkProvider, "fetch_text", fail)

    assert ApplicationProvider(network=NetworkProvider()).latest_version() is None


def test_install_pipes_script_to_shell(monkeypatch: pytest.MonkeyPatch) -> None:
    """The downloaded installer is fed to ``sh`` on stdin."""
    seen: dict[str, object] = {}

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        seen["args"] = list(args)
        seen["input"] = kwargs.get("input_text")
        return DummyResult()

    monkeypatch.setattr(application_module, "run_command", fake_run)
    monkeypatch.setattr(NetworkProvider, "fetch_text", lambda self, url: "#!/bin/sh\necho hi\n")

    ApplicationProvider(network=NetworkProvider()).install()

    assert seen == {"args": ["sh", "-s", "--"], "input": "#!/bin/sh\necho hi\n"}


def test_install_download_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    """A failed download surfaces as :class:`ApplicationError`."""

    def fail(self: NetworkProvider, url: str) -> str:
        raise NetworkError("offline")

    monkeypatch.setattr(NetworkProvider, "fetch_text", fail)

    with pytest.raises(ApplicationError):
        ApplicationProvider(network=NetworkProvider()).install()


@pytest.mark.parametrize(
    ("scheme", "key"),
    [("plain", "password"), ("sha256", "hashed-password")],
)
def test_write_config(tmp_path: Path, scheme: str, key: str) -> None:
    """code-server binds to loopback and stores the credential privately."""
    path = tmp_path / ".config" / "code-server" / "config.yaml"
    provider = ApplicationProvider(network=NetworkProvider())

    assert provider.write_config(path, port=8080, credential="secret", credential_scheme=scheme) is True

    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert payload["bind-addr"] == "127.0.0.1:8080"
    assert payload["auth"] == "password"
    assert payload[key] == "secret"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_certbot_request_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    """Certificates are requested non-interactively through the nginx plugin."""
    calls: list[list[str]] = []

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        calls.append(list(args))
        return DummyResult()

    monkeypatch.setattr(certbot_module, "run_command", fake_run)
    provider = CertbotProvider(live_dir=Path("/live"))

    provider.request("code.example.com", "ops@example.com")
    provider.renew("code.example.com")
    provider.delete("code.example.com")

    assert calls[0][:3] == ["certbot", "certonly", "--nginx"]
    assert "--non-interactive" in calls[0]
    assert calls[1] == ["certbot", "renew", "--non-interactive", "--cert-name", "code.example.com"]
    assert calls[2] == ["certbot", "delete", "--cert-name", "code.example.com", "--non-interactive"]
    assert provider.certificate_path("code.example.com") == Path("/live/code.example.com/fullchain.pem")
