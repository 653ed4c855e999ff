"""Credential file holding the root account's password hash.

The file uses the htpasswd format (``account:hash``) with bcrypt hashes carrying
the ``$2y$`` prefix produced by Apache's ``htpasswd -B``.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from passlib.context import CryptContext

from .templates import write_text_atomic

ROOT_ACCOUNT = "root"
CREDENTIAL_FILE_NAME = "trambar.htpasswd"

_CONTEXT = CryptContext(
    schemes=["bcrypt"],
    bcrypt__ident="2y",
    bcrypt__default_rounds=10,
)


class CredentialError(RuntimeError):
    """Raised when the credential file cannot be read or written."""


def hash_password(password: str) -> str:
    """Return an htpasswd-compatible bcrypt hash for *password*."""
    if not password:
        raise CredentialError("Password must not be empty.")
    return _CONTEXT.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Return True when *password* matches *hashed*."""
    return _CONTEXT.verify(password, hashed)


@dataclass(frozen=True, slots=True)
class CredentialFile:
    """Read and rewrite the credential file at ``path``."""

    path: Path

    def exists(self) -> bool:
        """Return True when the credential file is present."""
        return self.path.exists()

    def entries(self) -> dict[str, str]:
        """Return the ``account -> hash`` mapping stored in the file."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise CredentialError(f"Unable to read {self.path}: {exc}") from exc
        entries: dict[str, str] = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            account, sep, hashed = line.partition(":")
            if sep:
                entries[account] = hashed
        return entries

    def set_password(self, password: str, *, account: str = ROOT_ACCOUNT) -> str:
        """Replace the file with a single entry for *account*; return the hash."""
        hashed = hash_password(password)
        try:
            write_text_atomic(self.path, f"{account}:{hashed}\n", mode=0o644)
        except OSError as exc:
            raise CredentialError(f"Unable to write {self.path}: {exc}") from exc
        return hashed

    def verify(self, password: str, *, account: str = ROOT_ACCOUNT) -> bool:
        """Return True when *password* matches the stored hash for *account*."""
        hashed = self.entries().get(account)
        if hashed is None:
            return False
        return verify_password(password, hashed)


__all__ = [
    "CREDENTIAL_FILE_NAME",
    "CredentialError",
    "CredentialFile",
    "ROOT_ACCOUNT",
    "hash_password",
    "verify_password",
]
