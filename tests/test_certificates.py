"""Tests for the certificate registry."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from trambarctl.certificates import (
    CertificateRegistry,
    CertificateRegistryError,
    normalize_domain,
    normalize_email,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Example.COM", "example.com"),
        ("www.example.com.", "www.example.com"),
        ("  a-b.example.org ", "a-b.example.org"),
    ],
)
def test_normalize_domain(raw: str, expected: str) -> None:
    """Domains are lower-cased and stripped of the trailing dot."""
    assert normalize_domain(raw) == expected


@pytest.mark.parametrize("raw", ["", "localhost", "-bad.example.com", "bad_.example.com"])
def test_normalize_domain_rejects_invalid(raw: str) -> None:
    """Single labels and invalid characters are rejected."""
    with pytest.raises(CertificateRegistryError):
        normalize_domain(raw)


def test_normalize_email() -> None:
    """E-mail addresses need a local part and a dotted domain."""
    assert normalize_email(" ops@example.com ") == "ops@example.com"
    with pytest.raises(CertificateRegistryError):
        normalize_email("not-an-address")


def test_missing_registry_loads_empty(tmp_path: Path) -> None:
    """A missing file reads as an empty registry."""
    document = CertificateRegistry(tmp_path / "certificates.json").load()

    assert document.email == ""
    assert document.domains == []


def test_add_and_remove_keep_domains_sorted_and_unique(tmp_path: Path) -> None:
    """Domains are deduplicated and stored sorted."""
    registry = CertificateRegistry(tmp_path / "certbot" / "certificates.json")

    assert registry.add_domain("www.example.com") is True
    assert registry.add_domain("Example.com") is True
    assert registry.add_domain("example.com") is False

    payload = json.loads(registry.path.read_text(encoding="utf-8"))
    assert payload["domains"] == ["example.com", "www.example.com"]

    assert registry.remove_domain("WWW.example.com") is True
    assert registry.remove_domain("www.example.com") is False
    assert registry.load().domains == ["example.com"]


def test_set_email_persists(tmp_path: Path) -> None:
    """The contact e-mail is validated and stored."""
    registry = CertificateRegistry(tmp_path / "certificates.json")

    assert registry.set_email("admin@example.net") == "admin@example.net"
    assert registry.load().email == "admin@example.net"


@pytest.mark.parametrize(
    "content",
    ["{not json", "[]", '{"domains": "example.com"}', '{"email": 5}'],
)
def test_invalid_registry_raises(tmp_path: Path, content: str) -> None:
    """Corrupt documents raise CertificateRegistryError."""
    path = tmp_path / "certificates.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(CertificateRegistryError):
        CertificateRegistry(path).load()
