"""Certificate registry: the domains and contact e-mail handed to certbot.

The registry is a small JSON document stored in the configuration bundle::

    {"email": "admin@example.com", "domains": ["example.com", "www.example.com"]}

Domains are normalised to lower case, deduplicated and kept sorted. Writes are
atomic so an interrupted command never leaves a truncated document behind.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path

from .templates import write_text_atomic

_EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")
_LABEL_PATTERN = re.compile(r"[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?")


class CertificateRegistryError(RuntimeError):
    """Raised when the certificate registry cannot be read or updated."""


def normalize_domain(value: str) -> str:
    """Validate and normalise a domain name."""
    normalised = value.strip().lower().rstrip(".")
    if not normalised:
        raise CertificateRegistryError("Domain must be a non-empty string.")
    if len(normalised) > 253:
        raise CertificateRegistryError("Domain must be 253 characters or fewer.")
    labels = normalised.split(".")
    if len(labels) < 2:
        raise CertificateRegistryError(
            f"'{value}' is not a fully qualified domain name."
        )
    for label in labels:
        if not _LABEL_PATTERN.fullmatch(label):
            raise CertificateRegistryError(
                f"Invalid domain '{value}': labels may contain letters, numbers and "
                "hyphens and cannot start or end with a hyphen."
            )
    return normalised


def normalize_email(value: str) -> str:
    """Validate a contact e-mail address."""
    normalised = value.strip()
    if not _EMAIL_PATTERN.fullmatch(normalised):
        raise CertificateRegistryError(f"Invalid e-mail address: '{value}'.")
    return normalised


@dataclass(slots=True)
class CertificateDocument:
    """In-memory form of the registry."""

    email: str = ""
    domains: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return the JSON payload."""
        return {"email": self.email, "domains": list(self.domains)}


@dataclass(frozen=True, slots=True)
class CertificateRegistry:
    """Read and mutate the registry file at ``path``."""

    path: Path

    def exists(self) -> bool:
        """Return True when the registry file is present."""
        return self.path.exists()

    def load(self) -> CertificateDocument:
        """Return the registry contents (empty when the file is missing)."""
        if not self.path.exists():
            return CertificateDocument()
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise CertificateRegistryError(
                f"Failed to parse certificate registry {self.path}: {exc}"
            ) from exc
        except OSError as exc:
            raise CertificateRegistryError(
                f"Unable to read certificate registry {self.path}: {exc}"
            ) from exc
        if not isinstance(payload, dict):
            raise CertificateRegistryError(
                f"Certificate registry {self.path} must contain a JSON object."
            )
        email = payload.get("email") or ""
        domains_raw = payload.get("domains") or []
        if not isinstance(email, str):
            raise CertificateRegistryError("Certificate registry 'email' must be a string.")
        if not isinstance(domains_raw, list):
            raise CertificateRegistryError("Certificate registry 'domains' must be a list.")
        domains = sorted({normalize_domain(str(domain)) for domain in domains_raw})
        return CertificateDocument(email=email, domains=domains)

    def save(self, document: CertificateDocument) -> bool:
        """Persist *document*; return True when the file changed."""
        document.domains = sorted(set(document.domains))
        text = json.dumps(document.to_dict(), indent=2) + "\n"
        try:
            return write_text_atomic(self.path, text, mode=0o644)
        except OSError as exc:
            raise CertificateRegistryError(
                f"Unable to write certificate registry {self.path}: {exc}"
            ) from exc

    def add_domain(self, domain: str) -> bool:
        """Add *domain*; return False when it was already registered."""
        normalised = normalize_domain(domain)
        document = self.load()
        if normalised in document.domains:
            return False
        document.domains.append(normalised)
        self.save(document)
        return True

    def remove_domain(self, domain: str) -> bool:
        """Remove *domain*; return False when it was not registered."""
        normalised = normalize_domain(domain)
        document = self.load()
        if normalised not in document.domains:
            return False
        document.domains.remove(normalised)
        self.save(document)
        return True

    def set_email(self, email: str) -> str:
        """Store the contact e-mail and return the normalised value."""
        normalised = normalize_email(email)
        document = self.load()
        document.email = normalised
        self.save(document)
        return normalised


__all__ = [
    "CertificateDocument",
    "CertificateRegistry",
    "CertificateRegistryError",
    "normalize_domain",
    "normalize_email",
]
