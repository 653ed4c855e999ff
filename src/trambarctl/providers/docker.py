"""Docker provider for inspecting and cleaning up application containers."""
from __future__ import annotations

import json
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..process import CommandError, run_command

PS_FORMAT = '{"Image": {{json .Image}}, "Names": {{json .Names}}, "ID": {{json .ID}}}'
IMAGES_FORMAT = (
    '{"Repository": {{json .Repository}}, "ID": {{json .ID}}, "Tag": {{json .Tag}}}'
)
UNTAGGED = "<none>"


class DockerError(RuntimeError):
    """Raised when docker operations fail."""


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    """A running container as reported by ``docker ps``."""

    id: str
    name: str
    image: str


@dataclass(frozen=True, slots=True)
class ImageInfo:
    """A local image as reported by ``docker images``."""

    id: str
    repository: str
    tag: str

    @property
    def untagged(self) -> bool:
        """Return True for dangling images left behind by a pull."""
        return self.tag == UNTAGGED


@dataclass(slots=True)
class DockerProvider:
    """Query and manage containers and images belonging to the application."""

    image_namespace: str = "trambar"
    docker_bin: str = "docker"
    warnings: list[str] = field(default_factory=list)

    def ping(self) -> subprocess.CompletedProcess[str]:
        """Run ``docker ps`` to confirm the daemon is reachable."""
        return self._docker(["ps"])

    def owns_image(self, reference: str) -> bool:
        """Return True when *reference* lives in the application namespace."""
        return reference.startswith(f"{self.image_namespace}/")

    def containers(self, *, all_images: bool = False) -> list[ContainerInfo]:
        """Return running containers, limited to the application namespace."""
        result = self._docker(["ps", f"--format={PS_FORMAT}"])
        containers = [
            ContainerInfo(
                id=str(entry.get("ID", "")),
                name=str(entry.get("Names", "")),
                image=str(entry.get("Image", "")),
            )
            for entry in self._parse_json_lines(result.stdout)
        ]
        if all_images:
            return containers
        return [container for container in containers if self.owns_image(container.image)]

    def images(self, *, all_images: bool = False) -> list[ImageInfo]:
        """Return local images, limited to the application namespace."""
        result = self._docker(["images", f"--format={IMAGES_FORMAT}"])
        images = [
            ImageInfo(
                id=str(entry.get("ID", "")),
                repository=str(entry.get("Repository", "")),
                tag=str(entry.get("Tag", "")),
            )
            for entry in self._parse_json_lines(result.stdout)
        ]
        if all_images:
            return images
        return [image for image in images if self.owns_image(image.repository)]

    def is_running(self) -> bool:
        """Return True when any application container is up."""
        return bool(self.containers())

    def remove_image(self, image_id: str) -> subprocess.CompletedProcess[str]:
        """Remove a local image by ID."""
        return self._docker(["rmi", image_id])

    def stats(self, names: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Stream ``docker stats`` for *names* to the terminal."""
        return self._docker(["stats", *names], capture_output=False)

    # ------------------------------------------------------------------
    def _parse_json_lines(self, stdout: str | None) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        for line in (stdout or "").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                self.warnings.append(f"Skipping malformed docker output {line!r}: {exc}")
                continue
            if isinstance(payload, dict):
                entries.append(payload)
        return entries

    def _docker(
        self,
        args: Sequence[str],
        *,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.docker_bin, *args]
        try:
            return run_command(
                command,
                capture_output=capture_output,
                error_prefix=f"{self.docker_bin} {args[0]}",
            )
        except CommandError as exc:
            raise DockerError(str(exc)) from exc


__all__ = ["ContainerInfo", "DockerError", "DockerProvider", "ImageInfo"]
