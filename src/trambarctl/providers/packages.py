"""Install Docker and the compose tool through the host package manager."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ..process import CommandError, run_command

DOCKER_DOWNLOAD_URL = "https://www.docker.com/get-docker"

DOCKER = "docker"
COMPOSE = "compose"

PACKAGE_MANAGERS = ("apt-get", "pacman", "yum", "urpmi")

_ENABLE_DOCKER: tuple[tuple[str, ...], ...] = (
    ("systemctl", "enable", "docker"),
    ("systemctl", "start", "docker"),
)

_PLANS: dict[str, dict[str, tuple[tuple[str, ...], ...]]] = {
    DOCKER: {
        "apt-get": (("apt-get", "-y", "install", "docker.io"),),
        "pacman": (("pacman", "--noconfirm", "-S", "docker"), *_ENABLE_DOCKER),
        "yum": (("yum", "-y", "install", "docker"), *_ENABLE_DOCKER),
        "urpmi": (("urpmi", "--auto", "docker"), *_ENABLE_DOCKER),
    },
    COMPOSE: {
        "apt-get": (("apt-get", "-y", "install", "docker-compose"),),
        "pacman": (("pacman", "--noconfirm", "-S", "docker-compose"),),
        "yum": (
            ("yum", "-y", "install", "epel-release"),
            ("yum", "-y", "install", "python-pip"),
            ("pip", "install", "docker-compose"),
            ("yum", "-y", "upgrade", "python*"),
        ),
        "urpmi": (("urpmi", "--auto", "docker-compose"),),
    },
}

_LABELS = {DOCKER: "Docker", COMPOSE: "Docker Compose"}


class PackageInstallError(RuntimeError):
    """Raised when a component cannot be installed automatically."""


@dataclass(slots=True)
class PackageInstaller:
    """Map a component to install commands for the detected package manager."""

    system: str = "Linux"
    which: Callable[[str], str | None] = shutil.which

    def package_manager(self) -> str | None:
        """Return the first supported package manager found on the host."""
        if self.system != "Linux":
            return None
        for manager in PACKAGE_MANAGERS:
            if self.which(manager):
                return manager
        return None

    def plan(self, component: str) -> list[list[str]]:
        """Return the ordered commands that install *component*."""
        if component not in _PLANS:
            raise PackageInstallError(f"Unknown component '{component}'.")
        label = _LABELS[component]
        manager = self.package_manager()
        if manager is None:
            raise PackageInstallError(
                f"You must install {label} manually ({DOCKER_DOWNLOAD_URL})"
            )
        return [list(step) for step in _PLANS[component][manager]]

    def install(
        self,
        component: str,
        *,
        on_step: Callable[[Sequence[str]], None] | None = None,
    ) -> list[subprocess.CompletedProcess[str]]:
        """Run the install plan, stopping at the first failing step."""
        results: list[subprocess.CompletedProcess[str]] = []
        for step in self.plan(component):
            if on_step is not None:
                on_step(step)
            try:
                results.append(run_command(step, capture_output=False))
            except CommandError as exc:
                raise PackageInstallError(
                    f"Installing {_LABELS[component]} failed at '{' '.join(step)}': {exc}"
                ) from exc
        return results


__all__ = [
    "COMPOSE",
    "DOCKER",
    "DOCKER_DOWNLOAD_URL",
    "PackageInstallError",
    "PackageInstaller",
]
