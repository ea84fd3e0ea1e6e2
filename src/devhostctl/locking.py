"""Advisory file locks used to serialise installer, console and monitor runs."""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

_POLL_INTERVAL = 0.05


class LockTimeoutError(RuntimeError):
    """Raised when a lock could not be acquired before the timeout."""


@dataclass(slots=True, frozen=True)
class LockHandle:
    """Metadata describing an acquired lock."""

    path: Path
    wait_ms: int


class LockManager:
    """Acquire ``flock`` based locks under the runtime directory."""

    def __init__(self, runtime_dir: Path, default_timeout: float) -> None:
        """Store the runtime directory and default acquisition timeout."""
        self._runtime_dir = Path(runtime_dir)
        self._default_timeout = default_timeout

    @property
    def runtime_dir(self) -> Path:
        """Return the directory holding lock files."""
        return self._runtime_dir

    def installation_lock(
        self,
        state_path: Path,
        *,
        timeout: float | None = None,
    ) -> AbstractContextManager[LockHandle]:
        """Lock covering the installation record at *state_path*."""
        return self.acquire("installation", subject=state_path, timeout=timeout)

    def monitor_lock(self) -> AbstractContextManager[LockHandle]:
        """Non-blocking lock ensuring at most one health run at a time."""
        return self.acquire("health-monitor", timeout=0.0)

    @contextmanager
    def acquire(
        self,
        name: str,
        *,
        subject: Path | None = None,
        timeout: float | None = None,
    ) -> Iterator[LockHandle]:
        """Acquire the lock file ``<runtime_dir>/<name>.lock``."""
        effective_timeout = self._default_timeout if timeout is None else timeout
        path = self._runtime_dir / f"{name}.lock"
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o640)
        start = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError as exc:
                    if time.monotonic() - start >= effective_timeout:
                        raise LockTimeoutError(
                            f"Timed out after {effective_timeout:.1f}s waiting for lock {path}"
                            f"{_describe_holder(path)}."
                        ) from exc
                    time.sleep(_POLL_INTERVAL)
            wait_ms = int((time.monotonic() - start) * 1000)
            _write_metadata(fd, path, subject)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


def _write_metadata(fd: int, path: Path, subject: Path | None) -> None:
    payload: dict[str, object] = {
        "pid": os.getpid(),
        "path": str(path),
        "acquired_at": datetime.now(tz=UTC).isoformat(timespec="seconds"),
    }
    if subject is not None:
        payload["subject"] = str(subject)
    data = json.dumps(payload).encode("utf-8")
    os.ftruncate(fd, 0)
    os.lseek(fd, 0, os.SEEK_SET)
    os.write(fd, data)


def _describe_holder(path: Path) -> str:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return ""
    pid = data.get("pid") if isinstance(data, dict) else None
    return f" (held by pid {pid})" if pid else ""


__all__ = ["LockHandle", "LockManager", "LockTimeoutError"]
