"""TLS helpers: self-signed certificates, inspection and mount folders."""
from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Protocol, cast

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .templates import write_text_atomic


class TLSError(RuntimeError):
    """Raised when TLS material cannot be created or inspected."""


class TLSValidationSeverity(Enum):
    """Expiry status for an inspected certificate."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class TLSMaterial:
    """Concrete TLS assets (certificate and private key)."""

    certificate: Path
    key: Path


@dataclass(frozen=True)
class CertificateInfo:
    """Summary of a certificate on disk."""

    path: Path
    subject: str
    names: tuple[str, ...]
    not_valid_before: datetime
    not_valid_after: datetime
    self_signed: bool

    def days_remaining(self, now: datetime | None = None) -> int:
        """Return whole days until expiry (negative once expired)."""
        moment = now or datetime.now(UTC)
        return (self.not_valid_after - moment).days

    def severity(self, warn_days: int, now: datetime | None = None) -> TLSValidationSeverity:
        """Classify the certificate against the expiry warning threshold."""
        remaining = self.days_remaining(now)
        if remaining < 0:
            return TLSValidationSeverity.ERROR
        if remaining <= warn_days:
            return TLSValidationSeverity.WARNING
        return TLSValidationSeverity.OK

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "path": str(self.path),
            "subject": self.subject,
            "names": list(self.names),
            "not_valid_before": self.not_valid_before.isoformat(),
            "not_valid_after": self.not_valid_after.isoformat(),
            "days_remaining": self.days_remaining(),
            "self_signed": self.self_signed,
        }


class PublicKeyProtocol(Protocol):
    """Protocol covering public keys exposing ``public_bytes``."""

    def public_bytes(
        self,
        *,
        encoding: serialization.Encoding,
        format: serialization.PublicFormat,
    ) -> bytes:
        """Return the public key bytes in the requested encoding/format."""


class PrivateKeyProtocol(Protocol):
    """Protocol for private keys that can provide a matching public key."""

    def public_key(self) -> PublicKeyProtocol:
        """Return the associated public key object."""


def generate_self_signed(
    material: TLSMaterial,
    server_name: str,
    *,
    days: int = 3650,
    key_size: int = 2048,
) -> TLSMaterial:
    """Write a self-signed ("snakeoil") certificate and key for *server_name*."""
    now = datetime.now(UTC)
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    common_name = server_name or "localhost"
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(_subject_alt_names(common_name), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    try:
        write_text_atomic(
            material.certificate,
            cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
            mode=0o644,
        )
        write_text_atomic(
            material.key,
            key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            ).decode("ascii"),
            mode=0o600,
        )
    except OSError as exc:
        raise TLSError(f"Unable to write self-signed certificate: {exc}") from exc
    return material


def inspect_certificate(path: Path) -> CertificateInfo:
    """Load the certificate at *path* and summarise it."""
    try:
        cert = _load_certificate(path)
    except (OSError, ValueError) as exc:
        raise TLSError(f"Unable to load certificate {path}: {exc}") from exc
    names: list[str] = []
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        pass
    else:
        names.extend(san.value.get_values_for_type(x509.DNSName))
        names.extend(str(ip) for ip in san.value.get_values_for_type(x509.IPAddress))
    return CertificateInfo(
        path=path,
        subject=cert.subject.rfc4514_string(),
        names=tuple(names),
        not_valid_before=_as_utc(cert.not_valid_before_utc),
        not_valid_after=_as_utc(cert.not_valid_after_utc),
        self_signed=cert.issuer == cert.subject,
    )


def keys_match(material: TLSMaterial) -> bool:
    """Return True when the certificate and private key belong together."""
    try:
        cert = _load_certificate(material.certificate)
        key = _load_private_key(material.key)
    except (OSError, ValueError, TypeError) as exc:
        raise TLSError(f"Unable to load TLS material: {exc}") from exc
    return _public_keys_match(cert, key)


def common_directory(paths: list[Path]) -> Path:
    """Return the deepest folder containing every path in *paths*."""
    if not paths:
        raise TLSError("At least one path is required.")
    parents = [str(path.parent if not path.is_dir() else path) for path in paths]
    try:
        return Path(os.path.commonpath(parents))
    except ValueError as exc:
        raise TLSError(f"Paths do not share a common folder: {exc}") from exc


def ssl_mount_folder(material: TLSMaterial) -> Path:
    """Return the folder to mount so both files (and symlink targets) are visible.

    Mounting a top-level folder such as ``/etc`` is refused.
    """
    candidates = [
        material.certificate.absolute(),
        material.key.absolute(),
        material.certificate.resolve(),
        material.key.resolve(),
    ]
    folder = common_directory(candidates)
    if len(folder.parts) <= 2:
        raise TLSError("Certificate location requires mounting of root level folder")
    return folder


def _subject_alt_names(server_name: str) -> x509.SubjectAlternativeName:
    try:
        address = ipaddress.ip_address(server_name)
    except ValueError:
        return x509.SubjectAlternativeName([x509.DNSName(server_name)])
    return x509.SubjectAlternativeName([x509.IPAddress(address)])


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _load_private_key(path: Path) -> PrivateKeyProtocol:
    data = path.read_bytes()
    private_key = serialization.load_pem_private_key(data, password=None)
    return cast(PrivateKeyProtocol, private_key)


def _public_keys_match(cert: x509.Certificate, private_key: PrivateKeyProtocol) -> bool:
    cert_key = cert.public_key()
    try:
        key_public = private_key.public_key()
    except AttributeError:  # pragma: no cover
        return False
    cert_bytes = cert_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = key_public.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


__all__ = [
    "CertificateInfo",
    "TLSError",
    "TLSMaterial",
    "TLSValidationSeverity",
    "common_directory",
    "generate_self_signed",
    "inspect_certificate",
    "keys_match",
    "ssl_mount_folder",
]
