"""Thin subprocess helpers shared by the providers."""
from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path


class CommandError(RuntimeError):
    """Raised when an external command fails or cannot be found."""

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        """Store the failing exit status alongside the message."""
        super().__init__(message)
        self.returncode = returncode


def run_command(
    args: Sequence[str],
    *,
    capture_output: bool = True,
    check: bool = True,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    error_prefix: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args* and return the completed process.

    With ``capture_output`` stdout/stderr are collected as text; otherwise the
    child inherits the terminal. A missing executable, or a non-zero exit status
    when ``check`` is set, raises :class:`CommandError`.
    """
    command = [str(arg) for arg in args]
    prefix = error_prefix or " ".join(command[:2])
    merged_env = None
    if env:
        merged_env = dict(os.environ)
        merged_env.update(env)
    try:
        result = subprocess.run(  # noqa: S603
            command,
            capture_output=capture_output,
            text=True,
            check=False,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env,
        )
    except FileNotFoundError as exc:
        raise CommandError(f"{command[0]} not found: {exc}") from exc
    except OSError as exc:
        raise CommandError(f"{prefix} could not be started: {exc}") from exc
    if check and result.returncode != 0:
        stdout = getattr(result, "stdout", "") or ""
        stderr = getattr(result, "stderr", "") or ""
        message = stderr.strip() or stdout.strip() or "no output"
        raise CommandError(
            f"{prefix} failed (exit {result.returncode}): {message}",
            returncode=result.returncode,
        )
    return result


def is_installed(program: str) -> bool:
    """Return True when ``program --version`` runs successfully."""
    try:
        result = subprocess.run(  # noqa: S603
            [program, "--version"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        return False
    return result.returncode == 0


def resolve_editor(configured: str | None, system: str, env: Mapping[str, str] | None = None) -> str:
    """Pick the editor used for ``compose``/``env`` editing."""
    resolved_env = os.environ if env is None else env
    if configured:
        return configured
    for key in ("VISUAL", "EDITOR"):
        value = resolved_env.get(key)
        if value:
            return value
    return "notepad" if system == "Windows" else "vi"


def edit_file(editor: str, path: Path) -> subprocess.CompletedProcess[str]:
    """Open *path* in *editor*, inheriting the terminal."""
    # $EDITOR may carry arguments, e.g. "code --wait".
    args = [*shlex.split(editor), str(path)]
    return run_command(args, capture_output=False, error_prefix=editor)


__all__ = ["CommandError", "edit_file", "is_installed", "resolve_editor", "run_command"]
