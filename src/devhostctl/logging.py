"""Structured operation logging for devhostctl commands.

Every command runs inside :meth:`StructuredLogger.operation`, which yields an
:class:`OperationScope`. Steps and the final result are collected on the scope
and written as a single JSON line to ``operations.jsonl`` plus a short human
readable line to ``devhostctl.log`` when the scope closes.

Logging must never break a command: when the log directory cannot be created,
or a write fails, the logger disables itself and later writes are skipped.
"""
from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

_LOG = logging.getLogger("devhostctl")

OPERATIONS_LOG_NAME = "operations.jsonl"
HUMAN_LOG_NAME = "devhostctl.log"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def sanitize(value: object) -> object:
    """Return a JSON-safe copy of *value* (unknown objects become strings)."""
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [sanitize(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Mutable record of a single logged operation."""

    name: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    op_id: str = field(default_factory=lambda: secrets.token_hex(6))
    started_at: str = field(default_factory=_now_iso)
    steps: list[dict[str, object]] = field(default_factory=list)
    lock_wait_ms: int | None = None
    result: dict[str, object] | None = None
    _start: float = field(default_factory=time.perf_counter)

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status, "at": _now_iso()}
        if detail is not None:
            step["detail"] = sanitize(detail)
        self.steps.append(step)

    def set_lock_wait_ms(self, value: int) -> None:
        """Record how long the operation waited on its lock."""
        self.lock_wait_ms = int(value)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._finish(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            changed=changed,
            warnings=list(warnings) if warnings else [message],
            errors=errors,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        rc: int = 1,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._finish(
            "error",
            message,
            rc=rc,
            errors=list(errors) if errors else [message],
            warnings=warnings,
            context=context,
        )

    @property
    def finished(self) -> bool:
        """Return True once a terminal result has been recorded."""
        return self.result is not None

    def to_record(self) -> dict[str, object]:
        """Return the JSON line persisted for this operation."""
        return {
            "id": self.op_id,
            "operation": self.name,
            "started_at": self.started_at,
            "finished_at": _now_iso(),
            "duration_ms": int((time.perf_counter() - self._start) * 1000),
            "args": sanitize(self.args),
            "target": sanitize(self.target),
            "lock_wait_ms": self.lock_wait_ms,
            "steps": self.steps,
            "result": self.result,
        }

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        rc: int | None = None,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
        }
        if rc is not None:
            result["rc"] = rc
        if backups:
            result["backups"] = list(backups)
        if context:
            result["context"] = sanitize(context)
        self.result = result


class StructuredLogger:
    """Append operation records to the JSONL and human logs."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory; disable logging if it is unavailable."""
        self._logs_dir = Path(logs_dir)
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG_NAME
        self._human_log_path = self._logs_dir / HUMAN_LOG_NAME
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _LOG.warning("Structured logging disabled; cannot create %s: %s", logs_dir, exc)
            self._enabled = False

    @property
    def logs_dir(self) -> Path:
        """Return the directory receiving log files."""
        return self._logs_dir

    @property
    def enabled(self) -> bool:
        """Return True while the logger can still write."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` that is persisted on exit."""
        scope = OperationScope(name=name, args=dict(args or {}), target=dict(target or {}))
        try:
            yield scope
        except BaseException as exc:
            if not scope.finished:
                scope.error(f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__)
            raise
        finally:
            if not scope.finished:
                scope.success("Completed.")
            self._write(scope)

    # ------------------------------------------------------------------
    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        result = scope.result or {}
        human = (
            f"{record['finished_at']} {scope.name} "
            f"[{result.get('status', 'unknown')}] {result.get('message', '')}".rstrip()
        )
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(human + "\n")
        except OSError as exc:
            _LOG.warning("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger", "sanitize"]
