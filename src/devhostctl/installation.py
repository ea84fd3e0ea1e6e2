"""Persisted installation record shared by the installer, monitor and console."""
from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

SCHEMA_VERSION = 1
STATE_FILE_MODE = 0o600

DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9.-]*[a-zA-Z0-9]\.[a-zA-Z]{2,}$")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
USER_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
MIN_CREDENTIAL_LENGTH = 8

INSTALL_METHODS = ("native", "container")
EXTENSION_MODES = ("none", "essential", "custom")
CREDENTIAL_SCHEMES = ("plain", "sha256")


class InstallationStateError(RuntimeError):
    """Raised when the persisted installation record is missing or invalid."""


class ValidationError(ValueError):
    """Raised when an operator-supplied value fails validation."""


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def validate_domain(value: str) -> str:
    """Return a normalised domain or raise :class:`ValidationError`."""
    candidate = value.strip().lower().rstrip(".")
    if not candidate or not DOMAIN_PATTERN.match(candidate) or ".." in candidate:
        raise ValidationError(
            f"Invalid domain '{value}'. Use a fully qualified name such as code.example.com."
        )
    return candidate


def validate_email(value: str) -> str:
    """Return a normalised e-mail address or raise :class:`ValidationError`."""
    candidate = value.strip()
    if not EMAIL_PATTERN.match(candidate):
        raise ValidationError(f"Invalid e-mail address '{value}'.")
    return candidate


def validate_credential(value: str) -> list[str]:
    """Validate an operator credential and return advisory warnings.

    Hard failures (too short, whitespace, backslash) raise
    :class:`ValidationError`; weak-but-acceptable secrets return warnings.
    """
    if len(value) < MIN_CREDENTIAL_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_CREDENTIAL_LENGTH} characters long."
        )
    if any(char.isspace() for char in value):
        raise ValidationError("Password must not contain whitespace.")
    if "\\" in value:
        raise ValidationError("Password must not contain backslashes.")
    warnings: list[str] = []
    if not any(char.isupper() for char in value):
        warnings.append("Password has no uppercase letters.")
    if not any(char.isdigit() for char in value):
        warnings.append("Password has no digits.")
    return warnings


def validate_choice(value: str, allowed: tuple[str, ...], *, label: str) -> str:
    """Return *value* when it is one of *allowed*."""
    candidate = value.strip().lower()
    if candidate not in allowed:
        joined = ", ".join(allowed)
        raise ValidationError(f"Unsupported {label} '{value}'. Allowed: {joined}.")
    return candidate


def validate_service_user(value: str) -> str:
    """Return a valid POSIX account name."""
    candidate = value.strip()
    if not USER_PATTERN.match(candidate):
        raise ValidationError(f"Invalid service user '{value}'.")
    return candidate


def hash_credential(value: str) -> str:
    """Return the SHA-256 hex digest used for hashed credentials."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class InstallationConfig:
    """Single source of truth for an installed deployment."""

    domain: str
    admin_email: str
    credential: str
    install_method: str
    credential_scheme: str = "plain"
    timezone: str = "UTC"
    extension_mode: str = "none"
    service_user: str = "coder"
    created_at: str = field(default_factory=_now_iso)
    schema_version: int = SCHEMA_VERSION

    def __post_init__(self) -> None:
        """Validate every field so invalid records cannot be constructed."""
        object.__setattr__(self, "domain", validate_domain(self.domain))
        object.__setattr__(self, "admin_email", validate_email(self.admin_email))
        object.__setattr__(
            self,
            "install_method",
            validate_choice(self.install_method, INSTALL_METHODS, label="install method"),
        )
        object.__setattr__(
            self,
            "extension_mode",
            validate_choice(self.extension_mode, EXTENSION_MODES, label="extension mode"),
        )
        object.__setattr__(
            self,
            "credential_scheme",
            validate_choice(self.credential_scheme, CREDENTIAL_SCHEMES, label="credential scheme"),
        )
        object.__setattr__(self, "service_user", validate_service_user(self.service_user))
        if not self.credential:
            raise ValidationError("Credential must not be empty.")
        if not self.timezone.strip():
            raise ValidationError("Timezone must not be empty.")
        if self.schema_version != SCHEMA_VERSION:
            raise ValidationError(
                f"Unsupported schema_version {self.schema_version}; expected {SCHEMA_VERSION}."
            )

    @classmethod
    def create(
        cls,
        *,
        domain: str,
        admin_email: str,
        password: str,
        install_method: str,
        hash_password: bool = False,
        timezone: str = "UTC",
        extension_mode: str = "none",
        service_user: str = "coder",
    ) -> InstallationConfig:
        """Build a fresh record, hashing *password* when requested."""
        validate_credential(password)
        credential = hash_credential(password) if hash_password else password
        return cls(
            domain=domain,
            admin_email=admin_email,
            credential=credential,
            credential_scheme="sha256" if hash_password else "plain",
            install_method=install_method,
            timezone=timezone,
            extension_mode=extension_mode,
            service_user=service_user,
        )

    @property
    def is_container(self) -> bool:
        """Return True for container-mode deployments."""
        return self.install_method == "container"

    def to_dict(self) -> dict[str, object]:
        """Return the JSON payload persisted to disk."""
        return {
            "domain": self.domain,
            "admin_email": self.admin_email,
            "credential": self.credential,
            "credential_scheme": self.credential_scheme,
            "install_method": self.install_method,
            "timezone": self.timezone,
            "extension_mode": self.extension_mode,
            "service_user": self.service_user,
            "created_at": self.created_at,
            "schema_version": self.schema_version,
        }

    def redacted(self) -> dict[str, object]:
        """Return the payload with the credential masked for display or logs."""
        payload = self.to_dict()
        payload["credential"] = "********"
        return payload

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> InstallationConfig:
        """Rebuild a record from its persisted JSON form."""
        required = ("domain", "admin_email", "credential", "install_method")
        missing = [key for key in required if key not in payload]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}.")
        schema_raw = payload.get("schema_version", SCHEMA_VERSION)
        if isinstance(schema_raw, bool) or not isinstance(schema_raw, int):
            raise ValidationError(f"schema_version must be an integer. Got {schema_raw!r}.")
        return cls(
            domain=str(payload["domain"]),
            admin_email=str(payload["admin_email"]),
            credential=str(payload["credential"]),
            credential_scheme=str(payload.get("credential_scheme", "plain")),
            install_method=str(payload["install_method"]),
            timezone=str(payload.get("timezone", "UTC")),
            extension_mode=str(payload.get("extension_mode", "none")),
            service_user=str(payload.get("service_user", "coder")),
            created_at=str(payload.get("created_at") or _now_iso()),
            schema_version=schema_raw,
        )


@dataclass(slots=True)
class InstallationStore:
    """Read and atomically replace the installation record on disk."""

    path: Path

    def exists(self) -> bool:
        """Return True when the record is present on disk."""
        return self.path.is_file()

    def load(self) -> InstallationConfig:
        """Return the persisted record or raise :class:`InstallationStateError`."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise InstallationStateError(
                f"Installation record {self.path} not found. Run 'devhostctl install' first."
            ) from exc
        except OSError as exc:
            raise InstallationStateError(
                f"Unable to read installation record {self.path}: {exc}"
            ) from exc
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InstallationStateError(
                f"Installation record {self.path} is corrupted: {exc}"
            ) from exc
        if not isinstance(payload, Mapping):
            raise InstallationStateError(
                f"Installation record {self.path} must contain a JSON object."
            )
        try:
            return InstallationConfig.from_mapping(payload)
        except ValidationError as exc:
            raise InstallationStateError(
                f"Installation record {self.path} is invalid: {exc}"
            ) from exc

    def save(self, record: InstallationConfig) -> None:
        """Atomically replace the record; the file is never more open than 0600."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # mkstemp creates the file with mode 0600 before any content is written.
        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent),
            prefix=f".{self.path.name}.",
        )
        tmp_path = Path(tmp_name)
        try:
            os.fchmod(tmp_fd, STATE_FILE_MODE)
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(record.to_dict(), handle, indent=2)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
            os.chmod(self.path, STATE_FILE_MODE)
        except OSError as exc:
            raise InstallationStateError(
                f"Failed to write installation record {self.path}: {exc}"
            ) from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def remove(self) -> bool:
        """Delete the record; return True when a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True


__all__ = [
    "EXTENSION_MODES",
    "INSTALL_METHODS",
    "InstallationConfig",
    "InstallationStateError",
    "InstallationStore",
    "ValidationError",
    "hash_credential",
    "validate_credential",
    "validate_domain",
    "validate_email",
]
