"""Tests for the certbot provider."""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from trambarctl.process import CommandError
from trambarctl.providers import certbot as certbot_module
from trambarctl.providers.certbot import CertbotError, CertbotProvider


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Capture certbot invocations."""
    recorded: list[list[str]] = []

    def fake_run_command(args: Sequence[str], **kwargs: Any) -> None:
        recorded.append(list(args))

    monkeypatch.setattr(certbot_module, "run_command", fake_run_command)
    return recorded


def test_paths(tmp_path: Path) -> None:
    """Lineage paths follow the letsencrypt layout."""
    provider = CertbotProvider(root=tmp_path)

    assert provider.certificate_path("example.com") == (
        tmp_path / "conf" / "live" / "example.com" / "fullchain.pem"
    )
    assert provider.key_path("example.com").name == "privkey.pem"


def test_docker_mode_issue(tmp_path: Path, calls: list[list[str]]) -> None:
    """Container mode mounts the host folders and uses the container webroot."""
    provider = CertbotProvider(root=tmp_path)

    provider.issue("example.com", "ops@example.com")

    argv = calls[0]
    assert argv[:3] == ["docker", "run", "--rm"]
    assert f"{tmp_path / 'conf'}:/etc/letsencrypt" in argv
    assert "certbot/certbot" in argv
    index = argv.index("certonly")
    assert argv[index:index + 4] == ["certonly", "--webroot", "-w", "/var/www/certbot"]
    assert argv[argv.index("--email") + 1] == "ops@example.com"
    assert "--staging" not in argv
    assert (tmp_path / "www").is_dir()


def test_host_mode_renew_with_staging(tmp_path: Path, calls: list[list[str]]) -> None:
    """Host mode runs the local binary with explicit directories."""
    provider = CertbotProvider(root=tmp_path, mode="host", staging=True)

    provider.renew()

    argv = calls[0]
    assert argv[0] == "certbot"
    assert argv[1:4] == ["renew", "--webroot", "-w"]
    assert argv[4] == str(tmp_path / "www")
    assert "--staging" in argv
    assert argv[argv.index("--config-dir") + 1] == str(tmp_path / "conf")


def test_delete(tmp_path: Path, calls: list[list[str]]) -> None:
    """Deleting targets the lineage named after the domain."""
    CertbotProvider(root=tmp_path).delete("example.com")

    assert calls[0][-4:] == ["delete", "--cert-name", "example.com", "--non-interactive"]


def test_failure_raises_certbot_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Command failures surface as CertbotError."""

    def failing(args: Sequence[str], **kwargs: Any) -> None:
        raise CommandError("certbot certonly failed (exit 1): rate limited")

    monkeypatch.setattr(certbot_module, "run_command", failing)

    with pytest.raises(CertbotError, match="rate limited"):
        CertbotProvider(root=tmp_path).issue("example.com", "ops@example.com")
