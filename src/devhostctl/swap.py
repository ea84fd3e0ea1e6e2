"""Swap provisioner: add a swap file on hosts short of memory."""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .config import SwapConfig
from .installation import ValidationError
from .prompts import OperatorAborted, Prompter, ask_until_valid, choose
from .providers.host import HostProvider
from .providers.process import run_command

_LOG = logging.getLogger(__name__)

_ALLOCATION_TIMEOUT = 1800.0


class SwapError(RuntimeError):
    """Raised when the swap file cannot be allocated, formatted or activated."""


@dataclass(frozen=True, slots=True)
class SwapPlan:
    """Swap resource chosen (or found) for this host."""

    size_gb: int
    backing_path: Path
    already_present: bool


@dataclass(slots=True)
class SwapProvisioner:
    """Create, activate and persist a single swap file.

    Any active swap, whatever its size or origin, short-circuits the whole
    flow so repeated runs never stack swap files.
    """

    config: SwapConfig
    host: HostProvider
    prompter: Prompter

    def existing(self) -> SwapPlan | None:
        """Return a plan describing already-active swap, if any."""
        devices = self.host.active_swaps(self.config.swaps_file)
        if not devices:
            return None
        first = devices[0]
        total_gb = max(1, round(sum(device.size_kb for device in devices) / (1024 * 1024)))
        return SwapPlan(size_gb=total_gb, backing_path=Path(first.path), already_present=True)

    def provision(self, *, size_gb: int | None = None) -> SwapPlan | None:
        """Interactively create swap; return None when the operator skips it.

        Raises :class:`OperatorAborted` when disk space is short and the
        operator refuses to continue without swap, and :class:`SwapError`
        when allocation fails.
        """
        present = self.existing()
        if present is not None:
            _LOG.info("Swap already active (%s); skipping.", present.backing_path)
            return present

        if size_gb is None:
            if not self.prompter.confirm(
                "Low memory detected. Create a swap file?", default=True
            ):
                self.prompter.say("Continuing without swap.", style="yellow")
                return None
            size_gb = self.choose_size()
        else:
            size_gb = self.validate_size(str(size_gb))

        plan = SwapPlan(size_gb=size_gb, backing_path=self.config.backing_path, already_present=False)
        if not self._enough_disk(plan):
            return None
        self.allocate(plan)
        return plan

    def choose_size(self) -> int:
        """Ask the operator for 2 GB, 4 GB or a custom size."""
        selection = choose(
            self.prompter,
            "Swap size",
            (
                ("2", "2 GB (recommended)"),
                ("4", "4 GB"),
                ("custom", f"Custom ({self.config.min_size_gb}-{self.config.max_size_gb} GB)"),
            ),
            default="2",
        )
        if selection != "custom":
            return int(selection)
        return ask_until_valid(
            self.prompter,
            f"Swap size in GB ({self.config.min_size_gb}-{self.config.max_size_gb})",
            self.validate_size,
        )

    def validate_size(self, answer: str) -> int:
        """Return *answer* as an integer size within the allowed range."""
        text = answer.strip().lower().removesuffix("g").removesuffix("gb").strip()
        if not text.isdigit():
            raise ValidationError(f"Swap size must be a whole number of GB, got '{answer}'.")
        size = int(text)
        if not self.config.min_size_gb <= size <= self.config.max_size_gb:
            raise ValidationError(
                f"Swap size must be between {self.config.min_size_gb} and "
                f"{self.config.max_size_gb} GB."
            )
        return size

    def allocate(self, plan: SwapPlan) -> None:
        """Allocate, secure, format, activate and register *plan*."""
        path = plan.backing_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.unlink(missing_ok=True)
        try:
            self._run(["fallocate", "-l", f"{plan.size_gb}G", str(path)])
        except SwapError as exc:
            _LOG.warning("fallocate unavailable (%s); falling back to dd.", exc)
            path.unlink(missing_ok=True)
            self._run(
                [
                    "dd",
                    "if=/dev/zero",
                    f"of={path}",
                    "bs=1M",
                    f"count={plan.size_gb * 1024}",
                    "status=none",
                ]
            )
        try:
            os.chmod(path, 0o600)
        except OSError as exc:
            raise SwapError(f"Unable to restrict permissions on {path}: {exc}") from exc
        self._run(["mkswap", str(path)])
        self._run(["swapon", str(path)])
        self.register(path)

    def register(self, path: Path) -> bool:
        """Add *path* to fstab unless an entry already exists."""
        fstab = self.config.fstab
        try:
            text = fstab.read_text(encoding="utf-8")
        except FileNotFoundError:
            text = ""
        for line in text.splitlines():
            fields = line.split()
            if fields and not fields[0].startswith("#") and fields[0] == str(path):
                return False
        prefix = "" if not text or text.endswith("\n") else "\n"
        try:
            with fstab.open("a", encoding="utf-8") as handle:
                handle.write(f"{prefix}{path} none swap sw 0 0\n")
        except OSError as exc:
            raise SwapError(f"Unable to register swap in {fstab}: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    def _enough_disk(self, plan: SwapPlan) -> bool:
        free_gb = self.host.disk_usage(plan.backing_path.parent).free_gb
        required = plan.size_gb + self.config.margin_gb
        if free_gb >= required:
            return True
        self.prompter.say(
            f"Only {free_gb:.1f} GB free; {required} GB needed for a {plan.size_gb} GB swap file.",
            style="yellow",
        )
        if self.prompter.confirm("Continue the installation without swap?", default=False):
            return False
        raise OperatorAborted("Installation aborted: insufficient disk space for swap.")

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return run_command(args, error=SwapError, timeout=_ALLOCATION_TIMEOUT)


__all__ = ["SwapError", "SwapPlan", "SwapProvisioner"]
