"""Subprocess helper shared by the providers."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence


def run_command(
    args: Sequence[str],
    *,
    error: type[Exception],
    error_prefix: str | None = None,
    check: bool = True,
    input_text: str | None = None,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args* capturing text output.

    Missing binaries, timeouts and (when *check* is set) non-zero exits are
    raised as *error* with the tool's own output attached.
    """
    command = [str(arg) for arg in args]
    prefix = error_prefix or " ".join(command)
    try:
        result = subprocess.run(  # noqa: S603, S607
            command,
            capture_output=True,
            text=True,
            check=False,
            input=input_text,
            timeout=timeout,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as exc:
        raise error(f"{command[0]} not found: {exc}") from exc
    except subprocess.TimeoutExpired as exc:
        raise error(f"{prefix} timed out after {timeout}s") from exc
    if check and result.returncode != 0:
        raise error(f"{prefix} failed (exit {result.returncode}): {output_of(result)}")
    return result


def output_of(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful diagnostic text from *result*."""
    stdout = getattr(result, "stdout", "") or ""
    stderr = getattr(result, "stderr", "") or ""
    return stderr.strip() or stdout.strip() or "no output"


__all__ = ["output_of", "run_command"]
