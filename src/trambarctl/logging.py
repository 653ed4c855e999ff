"""Structured operation logging for trambarctl commands.

Every CLI command runs inside an :class:`OperationScope`. When the scope closes
a single JSON document is appended to ``operations.jsonl`` in the logs folder::

    {"ts": "...", "op_id": "...", "command": "start", "args": {...},
     "steps": [{"name": "compose.up", "status": "success", ...}],
     "result": {"status": "success", "message": "...", "rc": 0, ...},
     "duration_ms": 812}

Logging never interferes with a command: when the folder cannot be created or
a write fails the logger marks itself disabled and becomes a no-op.
"""
from __future__ import annotations

import json
import os
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG_NAME = "operations.jsonl"


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result of a single command."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start timing an operation named *command*."""
        self.command = command
        self.op_id = uuid.uuid4().hex
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.monotonic()
        self._started_at = datetime.now(UTC)

    def add_step(self, name: str, *, status: str, detail: str | None = None) -> None:
        """Record a step taken by the command."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            errors=(),
            context=context,
            rc=0,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings if warnings is not None else (message,),
            errors=errors,
            context=context,
            rc=0,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            changed=0,
            warnings=(),
            errors=errors if errors else (message,),
            context=context,
            rc=int(rc),
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON document describing this operation."""
        duration_ms = int((time.monotonic() - self._started) * 1000)
        return {
            "ts": self._started_at.isoformat(),
            "op_id": self.op_id,
            "command": self.command,
            "pid": os.getpid(),
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": list(self.steps),
            "result": self.result,
            "duration_ms": duration_ms,
        }

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: Iterable[str],
        errors: Iterable[str],
        context: Mapping[str, object] | None,
        rc: int,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": [str(item) for item in warnings],
            "errors": [str(item) for item in errors],
            "context": _sanitize(dict(context or {})),
            "rc": rc,
        }


class StructuredLogger:
    """Append operation records to ``operations.jsonl``."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare the log folder, disabling the logger when unavailable."""
        self._log_dir = log_dir
        self._operations_log_path = log_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the JSON lines log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a block as a logged operation."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                exit_code = getattr(exc, "exit_code", None)
                if exit_code == 0:
                    scope.success("Completed.")
                elif isinstance(exit_code, int):
                    scope.error(f"Exited with code {exit_code}.", rc=exit_code)
                else:
                    scope.error(f"Unhandled error: {exc}", errors=[repr(exc)])
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
