"""Compose provider driving the multi-container deployment."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..process import CommandError, run_command


class ComposeError(RuntimeError):
    """Raised when compose operations fail."""


@dataclass(slots=True)
class ComposeProvider:
    """Run the compose tool against the configuration folder.

    ``compose_bin`` pins the invocation (e.g. ``docker-compose``). When unset the
    ``docker compose`` plugin is preferred and the standalone binary is used as
    a fallback.
    """

    project_dir: Path
    project_name: str
    docker_bin: str = "docker"
    compose_bin: str | None = None
    _resolved: list[str] | None = field(default=None, init=False, repr=False)

    def command(self) -> list[str]:
        """Return the argv prefix used to invoke the compose tool."""
        if self._resolved is not None:
            return list(self._resolved)
        if self.compose_bin:
            resolved = self.compose_bin.split()
        elif self._responds([self.docker_bin, "compose", "version"]):
            resolved = [self.docker_bin, "compose"]
        else:
            resolved = ["docker-compose"]
        self._resolved = resolved
        return list(resolved)

    def is_available(self) -> bool:
        """Return True when a working compose tool is present."""
        if self.compose_bin:
            return self._responds([*self.compose_bin.split(), "version"])
        return self._responds([self.docker_bin, "compose", "version"]) or self._responds(
            ["docker-compose", "version"]
        )

    def pull(self) -> subprocess.CompletedProcess[str]:
        """Pull every image referenced by the compose file."""
        return self._compose(["pull"], project=False)

    def up(self) -> subprocess.CompletedProcess[str]:
        """Create and start the containers in the background."""
        return self._compose(["up", "-d"])

    def down(self) -> subprocess.CompletedProcess[str]:
        """Stop and remove the containers."""
        return self._compose(["down"])

    def restart(self) -> subprocess.CompletedProcess[str]:
        """Restart the running containers."""
        return self._compose(["restart"])

    def logs(
        self,
        *,
        follow: bool = True,
        tail: int | None = None,
        service: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Stream container logs to the terminal."""
        args = ["logs"]
        if follow:
            args.append("-f")
        if tail is not None:
            args.extend(["--tail", str(tail)])
        if service:
            args.append(service)
        return self._compose(args, capture_output=False)

    def exec(self, service: str, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Run *command* inside the running *service* container."""
        return self._compose(["exec", "-T", service, *command], capture_output=True)

    # ------------------------------------------------------------------
    def _responds(self, args: Sequence[str]) -> bool:
        try:
            run_command(args)
        except CommandError:
            return False
        return True

    def _compose(
        self,
        args: Sequence[str],
        *,
        project: bool = True,
        capture_output: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        command = self.command()
        if project:
            command.extend(["-p", self.project_name])
        command.extend(args)
        try:
            return run_command(
                command,
                capture_output=capture_output,
                cwd=self.project_dir,
                error_prefix=f"compose {args[0]}",
            )
        except CommandError as exc:
            raise ComposeError(str(exc)) from exc


__all__ = ["ComposeError", "ComposeProvider"]
