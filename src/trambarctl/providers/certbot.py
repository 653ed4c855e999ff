"""Certbot provider for requesting, renewing and deleting certificates."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..process import CommandError, run_command

CONTAINER_CONFIG_DIR = "/etc/letsencrypt"
CONTAINER_WEBROOT = "/var/www/certbot"
CONTAINER_LOGS_DIR = "/var/log/letsencrypt"


class CertbotError(RuntimeError):
    """Raised when certbot operations fail."""


@dataclass(slots=True)
class CertbotProvider:
    """Drive certbot either from the host or from the official container image.

    The on-disk layout below ``root`` is shared by both modes::

        root/conf   certbot configuration, ``live/<domain>/`` lineages
        root/www    webroot served by the web server for HTTP-01 challenges
        root/logs   certbot logs
        root/work   certbot working directory (host mode only)
    """

    root: Path
    mode: str = "docker"
    certbot_bin: str = "certbot"
    image: str = "certbot/certbot"
    docker_bin: str = "docker"
    staging: bool = False

    @property
    def config_dir(self) -> Path:
        """Return the certbot configuration directory on the host."""
        return self.root / "conf"

    @property
    def webroot(self) -> Path:
        """Return the challenge webroot on the host."""
        return self.root / "www"

    @property
    def logs_dir(self) -> Path:
        """Return the certbot logs directory on the host."""
        return self.root / "logs"

    @property
    def work_dir(self) -> Path:
        """Return the certbot working directory on the host."""
        return self.root / "work"

    def live_dir(self, domain: str) -> Path:
        """Return the live lineage directory for *domain*."""
        return self.config_dir / "live" / domain

    def certificate_path(self, domain: str) -> Path:
        """Return the full-chain certificate path for *domain*."""
        return self.live_dir(domain) / "fullchain.pem"

    def key_path(self, domain: str) -> Path:
        """Return the private key path for *domain*."""
        return self.live_dir(domain) / "privkey.pem"

    def ensure_dirs(self) -> None:
        """Create the host directories used by certbot."""
        for path in (self.config_dir, self.webroot, self.logs_dir, self.work_dir):
            path.mkdir(parents=True, exist_ok=True)

    def issue(self, domain: str, email: str) -> subprocess.CompletedProcess[str]:
        """Request (or keep) a certificate for *domain* via the webroot challenge."""
        args = [
            "certonly",
            "--webroot",
            "-w",
            self._webroot_arg(),
            "-d",
            domain,
            "--cert-name",
            domain,
            "--email",
            email,
            "--agree-tos",
            "--non-interactive",
            "--keep-until-expiring",
        ]
        if self.staging:
            args.append("--staging")
        return self._certbot(args)

    def renew(self) -> subprocess.CompletedProcess[str]:
        """Renew every certificate that is close to expiry."""
        args = ["renew", "--webroot", "-w", self._webroot_arg(), "--non-interactive"]
        if self.staging:
            args.append("--staging")
        return self._certbot(args)

    def delete(self, domain: str) -> subprocess.CompletedProcess[str]:
        """Delete the certificate lineage named after *domain*."""
        return self._certbot(["delete", "--cert-name", domain, "--non-interactive"])

    def build_command(self, args: Sequence[str]) -> list[str]:
        """Return the full argv for a certbot invocation."""
        if self.mode == "host":
            return [
                self.certbot_bin,
                *args,
                "--config-dir",
                str(self.config_dir),
                "--work-dir",
                str(self.work_dir),
                "--logs-dir",
                str(self.logs_dir),
            ]
        return [
            self.docker_bin,
            "run",
            "--rm",
            "-v",
            f"{self.config_dir}:{CONTAINER_CONFIG_DIR}",
            "-v",
            f"{self.webroot}:{CONTAINER_WEBROOT}",
            "-v",
            f"{self.logs_dir}:{CONTAINER_LOGS_DIR}",
            self.image,
            *args,
        ]

    # ------------------------------------------------------------------
    def _webroot_arg(self) -> str:
        return str(self.webroot) if self.mode == "host" else CONTAINER_WEBROOT

    def _certbot(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        self.ensure_dirs()
        try:
            return run_command(
                self.build_command(args),
                capture_output=False,
                error_prefix=f"certbot {args[0]}",
            )
        except CommandError as exc:
            raise CertbotError(str(exc)) from exc


__all__ = ["CertbotError", "CertbotProvider"]
