"""Tests for the subprocess helpers."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from trambarctl import process
from trambarctl.process import CommandError, edit_file, resolve_editor, run_command


class DummyResult:
    """Stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_run_command_missing_binary_raises() -> None:
    """An executable that does not exist raises CommandError."""
    with pytest.raises(CommandError, match="not found"):
        run_command(["trambarctl-definitely-missing-binary"])


def test_run_command_reports_stderr_on_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-zero exits carry the exit status and stderr in the message."""

    def fake_run(args: Sequence[str], **kwargs: Any) -> DummyResult:
        return DummyResult(returncode=3, stderr="boom\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(CommandError) as excinfo:
        run_command(["docker", "ps"])

    assert excinfo.value.returncode == 3
    assert str(excinfo.value) == "docker ps failed (exit 3): boom"


def test_run_command_without_check_returns_result(monkeypatch: pytest.MonkeyPatch) -> None:
    """``check=False`` hands back failing results untouched."""
    captured: dict[str, Any] = {}

    def fake_run(args: Sequence[str], **kwargs: Any) -> DummyResult:
        captured["args"] = list(args)
        captured.update(kwargs)
        return DummyResult(returncode=1, stdout="partial")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = run_command(["docker", 5], check=False, cwd=Path("/tmp"), env={"A": "1"})

    assert result.stdout == "partial"
    assert captured["args"] == ["docker", "5"]
    assert captured["cwd"] == "/tmp"
    assert captured["env"]["A"] == "1"


@pytest.mark.parametrize(
    ("configured", "env", "system", "expected"),
    [
        ("nano", {"EDITOR": "vim"}, "Linux", "nano"),
        (None, {"VISUAL": "code --wait", "EDITOR": "vim"}, "Linux", "code --wait"),
        (None, {"EDITOR": "vim"}, "Linux", "vim"),
        (None, {}, "Linux", "vi"),
        (None, {}, "Windows", "notepad"),
    ],
)
def test_resolve_editor(
    configured: str | None, env: dict[str, str], system: str, expected: str
) -> None:
    """Configured editor wins, then VISUAL, then EDITOR, then the platform default."""
    assert resolve_editor(configured, system, env) == expected


def test_edit_file_splits_editor_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    """Editors given with arguments are split before the file path is appended."""
    calls: list[tuple[list[str], dict[str, Any]]] = []

    def fake_run_command(args: Sequence[str], **kwargs: Any) -> DummyResult:
        calls.append((list(args), kwargs))
        return DummyResult()

    monkeypatch.setattr(process, "run_command", fake_run_command)

    edit_file("code --wait", Path("/etc/trambar/.env"))

    args, kwargs = calls[0]
    assert args == ["code", "--wait", "/etc/trambar/.env"]
    assert kwargs["capture_output"] is False
