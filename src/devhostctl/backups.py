"""Configuration backups and their JSON index."""
from __future__ import annotations

import json
import os
import secrets
import shutil
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .templates import write_if_changed

INDEX_MODE = 0o640
ROOT_MODE = 0o750
SNAPSHOT_MODE = 0o700


class BackupError(RuntimeError):
    """Raised when a configuration backup cannot be taken."""


class BackupRegistryError(BackupError):
    """Raised when the backup index is unreadable or cannot be written."""


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class BackupArtifact:
    """A file or directory worth preserving, stored under *name*."""

    name: str
    source: Path


@dataclass(slots=True)
class BackupResult:
    """What a backup run copied, skipped and failed to copy."""

    identifier: str
    path: Path
    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_entry(self) -> dict[str, object]:
        """Return the index entry describing this snapshot."""
        return {
            "id": self.identifier,
            "created_at": _timestamp(),
            "path": str(self.path),
            "copied": list(self.copied),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
            "status": "partial" if self.failed else "available",
        }


@dataclass(slots=True)
class BackupsRegistry:
    """Snapshot directories under *root* plus the ``backups.json`` index."""

    root: Path
    index: Path
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        """Expand ``~`` in the configured locations."""
        self.root = self.root.expanduser()
        self.index = self.index.expanduser()

    def ensure_root(self) -> None:
        """Create the backups directory (0750) when missing."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            os.chmod(self.root, ROOT_MODE)
        except OSError as exc:  # pragma: no cover - depends on host permissions
            raise BackupRegistryError(f"Cannot prepare backups directory {self.root}: {exc}") from exc

    def list_entries(self) -> list[dict[str, object]]:
        """Return the recorded snapshots, oldest first."""
        try:
            payload = json.loads(self.index.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as exc:
            raise BackupRegistryError(f"Backup index {self.index} is not valid JSON: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise BackupRegistryError(f"Backup index {self.index} must hold a JSON object.")
        recorded = payload.get("backups", [])
        if not isinstance(recorded, list):
            return []
        return [dict(item) for item in recorded if isinstance(item, Mapping)]

    def append(self, entry: Mapping[str, object]) -> None:
        """Record *entry* at the end of the index."""
        entries: list[object] = [*self.list_entries(), dict(entry)]
        self.ensure_root()
        content = json.dumps({"backups": entries}, indent=2) + "\n"
        try:
            write_if_changed(self.index, content, mode=INDEX_MODE)
        except OSError as exc:
            raise BackupRegistryError(f"Cannot update backup index {self.index}: {exc}") from exc

    def generate_identifier(self, prefix: str = "devhost") -> str:
        """Return ``<prefix>-<YYYYmmdd-HHMMSS>``, suffixed when already taken."""
        identifier = f"{prefix}-{self.clock().strftime('%Y%m%d-%H%M%S')}"
        if (self.root / identifier).exists():
            identifier = f"{identifier}-{secrets.token_hex(3)}"
        return identifier

    def create(self, artifacts: Iterable[BackupArtifact]) -> BackupResult:
        """Copy *artifacts* into a fresh timestamped directory and index it.

        Each artifact is copied independently: a missing source is skipped and
        a failing copy is recorded, neither stops the remaining artifacts.
        """
        self.ensure_root()
        identifier = self.generate_identifier()
        snapshot = self.root / identifier
        try:
            snapshot.mkdir(parents=True)
            os.chmod(snapshot, SNAPSHOT_MODE)
        except OSError as exc:
            raise BackupError(f"Cannot create backup directory {snapshot}: {exc}") from exc

        result = BackupResult(identifier=identifier, path=snapshot)
        for artifact in artifacts:
            try:
                present = copy_into(artifact.source, snapshot / artifact.name)
            except OSError as exc:
                result.failed[artifact.name] = str(exc)
                continue
            (result.copied if present else result.skipped).append(artifact.name)
        self.append(result.to_entry())
        return result


def copy_into(source: Path, destination: Path) -> bool:
    """Mirror *source* (file or tree) at *destination*; False when it is absent."""
    if not source.exists():
        return False
    if source.is_dir():
        shutil.copytree(source, destination, dirs_exist_ok=True)
        return True
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, destination)
    return True


__all__ = [
    "BackupArtifact",
    "BackupError",
    "BackupRegistryError",
    "BackupResult",
    "BackupsRegistry",
    "copy_into",
]
