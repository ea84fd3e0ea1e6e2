"""Operator interaction seam used by the installer and the console."""
from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol, TypeVar

import typer
from rich.console import Console

from .installation import ValidationError

T = TypeVar("T")


class OperatorAborted(RuntimeError):
    """Raised when the operator declines to continue."""


class Prompter(Protocol):
    """Minimal operator dialogue interface."""

    def ask(self, message: str, *, default: str | None = None, secret: bool = False) -> str:
        """Return free-form text typed by the operator."""

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """Return the operator's yes/no answer."""

    def say(self, message: str, *, style: str | None = None) -> None:
        """Display *message* to the operator."""


class TyperPrompter:
    """Interactive prompter backed by typer prompts and a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        """Bind the prompter to *console* (a fresh one by default)."""
        self._console = console or Console()

    def ask(self, message: str, *, default: str | None = None, secret: bool = False) -> str:
        """Prompt for text; hide input when *secret* is set."""
        value = typer.prompt(message, default=default, hide_input=secret, show_default=not secret)
        return str(value)

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """Prompt for a yes/no answer."""
        return bool(typer.confirm(message, default=default))

    def say(self, message: str, *, style: str | None = None) -> None:
        """Print *message*, optionally wrapped in a rich style."""
        if style:
            self._console.print(f"[{style}]{message}[/{style}]")
        else:
            self._console.print(message)


def ask_until_valid(
    prompter: Prompter,
    message: str,
    validate: Callable[[str], T],
    *,
    default: str | None = None,
    secret: bool = False,
) -> T:
    """Ask repeatedly until *validate* accepts the answer."""
    while True:
        answer = prompter.ask(message, default=default, secret=secret)
        try:
            return validate(answer)
        except ValidationError as exc:
            prompter.say(str(exc), style="red")


def choose(
    prompter: Prompter,
    message: str,
    options: Sequence[tuple[str, str]],
    *,
    default: str | None = None,
) -> str:
    """Present numbered *options* (``(key, label)``) and return the chosen key."""
    for index, (_key, label) in enumerate(options, start=1):
        prompter.say(f"  {index}) {label}")
    keys = [key for key, _label in options]
    default_index = str(keys.index(default) + 1) if default in keys else None

    def _validate(answer: str) -> str:
        text = answer.strip().lower()
        if text.isdigit() and 1 <= int(text) <= len(options):
            return keys[int(text) - 1]
        if text in keys:
            return text
        raise ValidationError(f"Choose a number between 1 and {len(options)}.")

    return ask_until_valid(prompter, message, _validate, default=default_index)


__all__ = ["OperatorAborted", "Prompter", "TyperPrompter", "ask_until_valid", "choose"]
