"""Tests for the docker provider."""
from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from trambarctl.process import CommandError
from trambarctl.providers import docker as docker_module
from trambarctl.providers.docker import DockerError, DockerProvider


class DummyResult:
    """Stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


PS_OUTPUT = "\n".join(
    [
        '{"Image": "trambar/server", "Names": "trambar_server_1", "ID": "a1"}',
        '{"Image": "postgres:11", "Names": "other_db", "ID": "b2"}',
        "not json at all",
        '{"Image": "trambar/nginx", "Names": "trambar_nginx_1", "ID": "c3"}',
        "",
    ]
)

IMAGES_OUTPUT = "\n".join(
    [
        '{"Repository": "trambar/server", "ID": "i1", "Tag": "latest"}',
        '{"Repository": "trambar/server", "ID": "i2", "Tag": "<none>"}',
        '{"Repository": "nginx", "ID": "i3", "Tag": "<none>"}',
    ]
)


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Record docker invocations and answer with canned output."""
    recorded: list[list[str]] = []

    def fake_run_command(args: Sequence[str], **kwargs: Any) -> DummyResult:
        recorded.append(list(args))
        if args[1] == "ps" and len(args) > 2:
            return DummyResult(stdout=PS_OUTPUT)
        if args[1] == "images":
            return DummyResult(stdout=IMAGES_OUTPUT)
        return DummyResult()

    monkeypatch.setattr(docker_module, "run_command", fake_run_command)
    return recorded


def test_containers_filter_namespace_and_warn_on_bad_lines(calls: list[list[str]]) -> None:
    """Only application containers are listed; malformed lines become warnings."""
    provider = DockerProvider()

    containers = provider.containers()

    assert [container.name for container in containers] == ["trambar_server_1", "trambar_nginx_1"]
    assert len(provider.warnings) == 1
    assert "not json at all" in provider.warnings[0]
    assert calls[0][:2] == ["docker", "ps"]


def test_containers_all_images(calls: list[list[str]]) -> None:
    """``all_images`` skips the namespace filter."""
    assert len(DockerProvider().containers(all_images=True)) == 3


def test_is_running(calls: list[list[str]]) -> None:
    """Any application container counts as running."""
    assert DockerProvider().is_running() is True
    assert DockerProvider(image_namespace="elsewhere").is_running() is False


def test_images_mark_untagged(calls: list[list[str]]) -> None:
    """Dangling images in the namespace are flagged as untagged."""
    images = DockerProvider().images()

    assert [(image.id, image.untagged) for image in images] == [("i1", False), ("i2", True)]


def test_remove_image_and_stats(calls: list[list[str]]) -> None:
    """Image removal and stats use the expected docker subcommands."""
    provider = DockerProvider(docker_bin="/usr/bin/docker")

    provider.remove_image("i2")
    provider.stats(["trambar_nginx_1", "trambar_server_1"])

    assert calls == [
        ["/usr/bin/docker", "rmi", "i2"],
        ["/usr/bin/docker", "stats", "trambar_nginx_1", "trambar_server_1"],
    ]


def test_failures_raise_docker_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Command failures are wrapped in DockerError."""

    def failing(args: Sequence[str], **kwargs: Any) -> DummyResult:
        raise CommandError("docker ps failed (exit 1): permission denied")

    monkeypatch.setattr(docker_module, "run_command", failing)

    with pytest.raises(DockerError, match="permission denied"):
        DockerProvider().ping()
