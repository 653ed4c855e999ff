"""Interactive prompt helpers with a non-interactive (``--yes``) mode."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape


def attach_default(question: str, default: object) -> str:
    """Append the default hint to *question* (``[Y/n]``, ``[8080]`` ...)."""
    if isinstance(default, bool):
        return f"{question} {'[Y/n]' if default else '[y/N]'}"
    if isinstance(default, int):
        return f"{question} [{default}]"
    if isinstance(default, str) and default:
        return f"{question} [{default}]"
    return question


@dataclass(slots=True)
class Prompter:
    """Ask questions on the terminal, or answer them with defaults."""

    assume_yes: bool = False
    console: Console = field(default_factory=Console)
    port_check: Callable[[int], bool] | None = None

    def confirm(self, question: str, default: bool = False) -> bool:
        """Ask a yes/no question; ``--yes`` always answers yes."""
        prompt = attach_default(question, default)
        if self.assume_yes:
            self._echo(f"{prompt} Y")
            return True
        while True:
            answer = self._ask(prompt)
            if not answer:
                return default
            lowered = answer.lower()
            if lowered.startswith("y"):
                return True
            if lowered.startswith("n"):
                return False

    def text(self, question: str, default: str | None = None) -> str | None:
        """Ask for free text, returning *default* on empty input."""
        prompt = attach_default(question, default)
        if self.assume_yes:
            self._echo(f"{prompt} {default or ''}".rstrip())
            return default
        while True:
            answer = self._ask(prompt)
            value = answer or default
            if value is not None:
                return value

    def password(self, question: str, default: str | None = None) -> str | None:
        """Ask for a secret without echoing the input."""
        prompt = attach_default(question, default)
        if self.assume_yes:
            self._echo(prompt)
            return default
        while True:
            answer = self._ask(prompt, hide_input=True)
            value = answer or default
            if value:
                return value

    def path(self, question: str, default: str | None = None) -> Path | None:
        """Ask for the path of an existing file."""
        prompt = attach_default(question, default)
        if self.assume_yes:
            self._echo(prompt)
            return Path(default) if default else None
        while True:
            answer = self._ask(prompt)
            value = answer or default
            if not value:
                continue
            candidate = Path(value).expanduser()
            if candidate.exists():
                return candidate
            self.console.print(f"[red]File not found: {escape(str(candidate))}[/red]")

    def port(self, question: str, default: int) -> int:
        """Ask for a TCP port number."""
        prompt = attach_default(question, default)
        if self.assume_yes:
            self._echo(f"{prompt} {default}")
            return default
        while True:
            answer = self._ask(prompt)
            if not answer:
                value = default
            else:
                try:
                    value = int(answer)
                except ValueError:
                    continue
                if not 0 < value < 65536:
                    self.console.print(f"[red]Port must be between 1 and 65535: {value}[/red]")
                    continue
            if self.port_check is not None and not self.port_check(value):
                self.console.print(f"[yellow]Port {value} appears to be in use.[/yellow]")
            return value

    # ------------------------------------------------------------------
    def _echo(self, text: str) -> None:
        self.console.print(escape(text), highlight=False)

    def _ask(self, prompt: str, *, hide_input: bool = False) -> str:
        answer = typer.prompt(
            prompt,
            default="",
            show_default=False,
            hide_input=hide_input,
            prompt_suffix=" ",
        )
        return str(answer).strip()


__all__ = ["Prompter", "attach_default"]
