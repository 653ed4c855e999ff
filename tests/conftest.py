"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from trambarctl import cli


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Point every trambarctl folder at *tmp_path* and strip host settings."""
    for key in list(os.environ):
        if key.startswith("TRAMBAR_") or key in {"VISUAL", "EDITOR"}:
            monkeypatch.delenv(key, raising=False)
    return {
        "TRAMBAR_SETTINGS_FILE": str(tmp_path / "trambarctl.yml"),
        "TRAMBAR_CONFIG_DIR": str(tmp_path / "config"),
        "TRAMBAR_LOGS_DIR": str(tmp_path / "logs"),
        "TRAMBAR_DATABASE_DIR": str(tmp_path / "data" / "postgres"),
        "TRAMBAR_MEDIA_DIR": str(tmp_path / "data" / "media"),
    }


@pytest.fixture
def as_root(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend the CLI runs with root privileges."""
    monkeypatch.setattr(cli, "_has_root_access", lambda config: True)


@pytest.fixture
def private_host(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make installation defaults deterministic (private host named ``trambar-test``)."""
    monkeypatch.setattr(cli, "is_public_server", lambda: False)
    monkeypatch.setattr(cli, "host_name", lambda: "trambar-test")
    monkeypatch.setattr(cli, "is_port_available", lambda port: True)
