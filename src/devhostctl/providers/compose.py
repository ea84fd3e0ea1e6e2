"""Container stack provider wrapping ``docker compose``."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..templates import write_if_changed
from .process import run_command
from .service_state import ServiceState

COMPOSE_FILE_NAME = "docker-compose.yml"


class ComposeError(RuntimeError):
    """Raised when container runtime operations fail."""


@dataclass(slots=True)
class ComposeProvider:
    """Manage the code-server container stack."""

    compose_dir: Path
    container_name: str = "code-server-enhanced"
    docker_bin: str = "docker"
    _compose_command: list[str] | None = field(default=None, init=False, repr=False)

    @property
    def compose_file(self) -> Path:
        """Return the path of the compose descriptor."""
        return self.compose_dir / COMPOSE_FILE_NAME

    def write_descriptor(self, content: str) -> bool:
        """Write the compose descriptor; return True when it changed."""
        return write_if_changed(self.compose_file, content, mode=0o600)

    def remove_descriptor(self) -> bool:
        """Delete the compose descriptor; return True when a file was removed."""
        existed = self.compose_file.exists()
        self.compose_file.unlink(missing_ok=True)
        return existed

    def compose_command(self) -> list[str]:
        """Return the compose invocation available on this host.

        Prefers the ``docker compose`` plugin and falls back to the standalone
        ``docker-compose`` binary.
        """
        if self._compose_command is None:
            try:
                self._run([self.docker_bin, "compose", "version"])
                self._compose_command = [self.docker_bin, "compose"]
            except ComposeError:
                self._compose_command = ["docker-compose"]
        return list(self._compose_command)

    def up(self) -> subprocess.CompletedProcess[str]:
        """Start (or recreate) the stack in the background."""
        return self._compose("up", "-d")

    def down(self) -> subprocess.CompletedProcess[str]:
        """Stop and remove the stack's containers."""
        return self._compose("down")

    def stop(self) -> subprocess.CompletedProcess[str]:
        """Stop the stack without removing containers."""
        return self._compose("stop")

    def restart(self) -> subprocess.CompletedProcess[str]:
        """Restart the stack's containers."""
        return self._compose("restart")

    def pull(self) -> subprocess.CompletedProcess[str]:
        """Pull the newest images referenced by the descriptor."""
        return self._compose("pull")

    def logs(self, *, lines: int = 20) -> str:
        """Return the last *lines* log lines of the stack."""
        result = self._compose("logs", f"--tail={lines}")
        return result.stdout or ""

    def prune(self) -> subprocess.CompletedProcess[str]:
        """Remove stale containers, networks and dangling images."""
        return self._run([self.docker_bin, "system", "prune", "-f"])

    def state(self) -> ServiceState:
        """Return whether the stack's container is running."""
        try:
            result = self._run(
                [self.docker_bin, "inspect", "-f", "{{.State.Running}}", self.container_name],
                check=False,
            )
        except ComposeError:
            return ServiceState.UNKNOWN
        if result.returncode != 0:
            # docker inspect exits non-zero when the container does not exist.
            if "no such" in (result.stderr or "").lower():
                return ServiceState.STOPPED
            return ServiceState.UNKNOWN
        value = (result.stdout or "").strip().lower()
        if value == "true":
            return ServiceState.RUNNING
        if value == "false":
            return ServiceState.STOPPED
        return ServiceState.UNKNOWN

    # ------------------------------------------------------------------
    def _compose(self, *args: str) -> subprocess.CompletedProcess[str]:
        command = [*self.compose_command(), "-f", str(self.compose_file), *args]
        return self._run(command)

    def _run(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        return run_command(args, error=ComposeError, check=check)


__all__ = ["COMPOSE_FILE_NAME", "ComposeError", "ComposeProvider"]
