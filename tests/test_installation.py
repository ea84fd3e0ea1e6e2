"""Tests for the persisted installation record."""
from __future__ import annotations

import json
import stat
from dataclasses import replace
from pathlib import Path

import pytest

from devhostctl.installation import (
    InstallationConfig,
    InstallationStateError,
    InstallationStore,
    ValidationError,
    hash_credential,
    validate_credential,
    validate_domain,
    validate_email,
)
from conftest import make_installation


@pytest.mark.parametrize("value", ["bad_domain", "localhost", "-x.example.com", "a..b.com", ""])
def test_validate_domain_rejects_invalid(value: str) -> None:
    """Malformed domains are rejected."""
    with pytest.raises(ValidationError):
        validate_domain(value)


def test_validate_domain_normalises() -> None:
    """Domains are lower-cased and lose a trailing dot."""
    assert validate_domain("Code.Example.COM.") == "code.example.com"


def test_validate_email() -> None:
    """E-mail addresses need a local part and a dotted domain."""
    assert validate_email(" ops@example.com ") == "ops@example.com"
    with pytest.raises(ValidationError):
        validate_email("ops@localhost")


@pytest.mark.parametrize("value", ["short", "has space1A", "back\\slash1A"])
def test_validate_credential_rejects(value: str) -> None:
    """Short, whitespace and backslash credentials are hard failures."""
    with pytest.raises(ValidationError):
        validate_credential(value)


def test_validate_credential_warns_on_weak_secret() -> None:
    """Weak but acceptable credentials produce warnings."""
    assert validate_credential("alllowercase") == [
        "Password has no uppercase letters.",
        "Password has no digits.",
    ]
    assert validate_credential("Str0ngEnough") == []


def test_create_hashes_when_requested() -> None:
    """Hashed credentials are stored as SHA-256 digests."""
    record = InstallationConfig.create(
        domain="code.example.com",
        admin_email="ops@example.com",
        password="Sup3rSecret",
        install_method="container",
        hash_password=True,
    )

    assert record.credential == hash_credential("Sup3rSecret")
    assert record.credential_scheme == "sha256"
    assert record.is_container is True


def test_invalid_record_cannot_be_constructed() -> None:
    """Construction validates every field."""
    with pytest.raises(ValidationError):
        make_installation(install_method="podman")
    with pytest.raises(ValidationError):
        make_installation(service_user="Root User")
    with pytest.raises(ValidationError):
        make_installation(credential="")


def test_redacted_masks_credential(installation: InstallationConfig) -> None:
    """The redacted payload never includes the secret."""
    payload = installation.redacted()

    assert payload["credential"] == "********"
    assert payload["domain"] == "code.example.com"


def test_store_save_and_load(tmp_path: Path, installation: InstallationConfig) -> None:
    """Records round-trip through disk with owner-only permissions."""
    store = InstallationStore(tmp_path / "etc" / "installation.json")

    store.save(installation)

    mode = stat.S_IMODE(store.path.stat().st_mode)
    assert mode == 0o600
    assert store.exists()
    assert store.load() == installation
    assert not list(store.path.parent.glob(".installation.json.*"))


def test_store_save_replaces_existing(tmp_path: Path, installation: InstallationConfig) -> None:
    """Saving again replaces the previous record wholesale."""
    store = InstallationStore(tmp_path / "installation.json")
    store.save(installation)

    store.save(replace(installation, timezone="Europe/Berlin"))

    assert store.load().timezone == "Europe/Berlin"


def test_store_load_missing(tmp_path: Path) -> None:
    """A missing record raises :class:`InstallationStateError`."""
    store = InstallationStore(tmp_path / "installation.json")

    with pytest.raises(InstallationStateError) as excinfo:
        store.load()

    assert "devhostctl install" in str(excinfo.value)


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"domain": "code.example.com"}),
        json.dumps(
            {
                "domain": "code.example.com",
                "admin_email": "ops@example.com",
                "credential": "Sup3rSecret",
                "install_method": "native",
                "schema_version": 99,
            }
        ),
    ],
)
def test_store_load_invalid(tmp_path: Path, content: str) -> None:
    """Corrupted or incomplete records are reported, never half-loaded."""
    path = tmp_path / "installation.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(InstallationStateError):
        InstallationStore(path).load()


def test_store_remove(tmp_path: Path, installation: InstallationConfig) -> None:
    """Removal reports whether a file existed."""
    store = InstallationStore(tmp_path / "installation.json")
    store.save(installation)

    assert store.remove() is True
    assert store.remove() is False
