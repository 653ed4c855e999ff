"""The configuration bundle: every file the deployment reads from the config folder.

Layout of the folder (``/etc/trambar`` on Linux)::

    docker-compose.yml       compose specification
    .env                     secrets and ports (mode 0600)
    nginx/trambar.conf       web server
    nginx/sites/<domain>.conf  per-domain HTTPS servers backed by certbot
    postgres/postgresql.conf database
    server/config.json       app server
    trambar.htpasswd         root account credential
    certs/snakeoil.{crt,key} self-signed certificate (optional)
    certbot/                 certbot state, webroot and certificates.json
"""
from __future__ import annotations

import secrets
import shutil
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path

from .certificates import (
    CertificateRegistry,
    CertificateRegistryError,
    normalize_domain,
    normalize_email,
)
from .config import AppConfig
from .credentials import CREDENTIAL_FILE_NAME, CredentialFile
from .prompts import Prompter
from .templates import TemplateEngine
from .tls import TLSError, TLSMaterial, generate_self_signed, keys_match, ssl_mount_folder

SECRET_COUNT = 4

WRITTEN = "written"
UNCHANGED = "unchanged"
SKIPPED = "skipped"


class BundleError(RuntimeError):
    """Raised when the configuration bundle cannot be created."""


@dataclass(frozen=True, slots=True)
class BundlePaths:
    """Filesystem locations inside the configuration folder."""

    root: Path

    @property
    def compose_file(self) -> Path:
        return self.root / "docker-compose.yml"

    @property
    def env_file(self) -> Path:
        return self.root / ".env"

    @property
    def nginx_conf(self) -> Path:
        return self.root / "nginx" / "trambar.conf"

    @property
    def nginx_sites(self) -> Path:
        return self.root / "nginx" / "sites"

    @property
    def postgres_conf(self) -> Path:
        return self.root / "postgres" / "postgresql.conf"

    @property
    def server_conf(self) -> Path:
        return self.root / "server" / "config.json"

    @property
    def credentials(self) -> Path:
        return self.root / CREDENTIAL_FILE_NAME

    @property
    def certs_dir(self) -> Path:
        return self.root / "certs"

    @property
    def snakeoil(self) -> TLSMaterial:
        return TLSMaterial(
            certificate=self.certs_dir / "snakeoil.crt",
            key=self.certs_dir / "snakeoil.key",
        )

    @property
    def certbot_dir(self) -> Path:
        return self.root / "certbot"

    @property
    def certificate_registry(self) -> Path:
        return self.certbot_dir / "certificates.json"

    def site_path(self, domain: str) -> Path:
        """Return the HTTPS server fragment for *domain*."""
        return self.nginx_sites / f"{domain}.conf"

    def required_files(self) -> tuple[Path, ...]:
        """Return files that must exist before containers can be managed."""
        return (self.compose_file, self.env_file)


@dataclass(slots=True)
class InstallOptions:
    """Answers collected during installation, fed to every template."""

    prefix: str
    namespace: str
    build: str
    ssl: bool = True
    certbot: bool = False
    snakeoil: bool = True
    server_name: str = ""
    contact_email: str = ""
    http_port: int = 8080
    https_port: int = 8443
    cert_path: str = ""
    key_path: str = ""
    ssl_folder: str = ""
    database_folder: str = ""
    media_folder: str = ""
    dev_source: str = ""
    secrets: list[str] = field(default_factory=list)

    @property
    def volumes(self) -> bool:
        """Return True when named volumes replace missing host folders."""
        return not self.database_folder or not self.media_folder

    @property
    def dev(self) -> bool:
        """Return True when a source checkout is mounted into the containers."""
        return bool(self.dev_source)

    def to_context(self) -> dict[str, object]:
        """Return the template context."""
        context = asdict(self)
        context["volumes"] = self.volumes
        context["dev"] = self.dev
        return context


def generate_secrets(count: int = SECRET_COUNT) -> list[str]:
    """Return *count* random 16-byte hex secrets."""
    return [secrets.token_hex(16) for _ in range(count)]


def default_install_options(
    config: AppConfig,
    *,
    public: bool,
    hostname: str,
) -> InstallOptions:
    """Return the answers offered as defaults before prompting."""
    return InstallOptions(
        prefix=config.prefix,
        namespace=config.image_namespace,
        build=config.build,
        ssl=True,
        certbot=public,
        snakeoil=not public,
        server_name="" if public else hostname,
        http_port=80 if public else 8080,
        https_port=443 if public else 8443,
        database_folder=str(config.database_dir) if config.database_dir else "",
        media_folder=str(config.media_dir) if config.media_dir else "",
        dev_source=str(config.dev.source_dir) if config.dev.source_dir else "",
    )


def collect_install_options(
    prompter: Prompter,
    paths: BundlePaths,
    defaults: InstallOptions,
) -> InstallOptions:
    """Walk the operator through the installation questions."""
    options = defaults
    options.ssl = prompter.confirm("Set up SSL?", options.ssl)
    if options.ssl:
        options.certbot = prompter.confirm(
            "Use certbot (https://certbot.eff.org/)?", options.certbot
        )
        if options.certbot:
            options.server_name = _ask_checked(
                prompter, "Server domain name:", options.server_name, normalize_domain
            )
            options.contact_email = _ask_checked(prompter, "Contact e-mail:", "", normalize_email)
            options.ssl_folder = "./certbot"
            options.snakeoil = False
        else:
            options.snakeoil = prompter.confirm(
                "Use self-signed SSL certificate?", options.snakeoil
            )
            options.server_name = prompter.text("Server domain name:", options.server_name) or ""
            if options.snakeoil:
                material = paths.snakeoil
                options.ssl_folder = str(paths.certs_dir)
                options.cert_path = str(material.certificate)
                options.key_path = str(material.key)
            else:
                cert_path = prompter.path("Full path of certificate:")
                key_path = prompter.path("Full path of private key:")
                if cert_path is None or key_path is None:
                    raise BundleError("Certificate and private key paths are required.")
                material = TLSMaterial(certificate=cert_path, key=key_path)
                try:
                    folder = ssl_mount_folder(material)
                    matching = keys_match(material)
                except TLSError as exc:
                    raise BundleError(str(exc)) from exc
                if not matching:
                    raise BundleError(f"Private key {key_path} does not match {cert_path}")
                options.cert_path = str(cert_path)
                options.key_path = str(key_path)
                options.ssl_folder = str(folder)
        options.https_port = prompter.port("HTTPS port:", options.https_port)
    else:
        options.certbot = False
        options.snakeoil = False
    options.http_port = prompter.port("HTTP port:", options.http_port)
    options.secrets = generate_secrets()
    return options


def _ask_checked(
    prompter: Prompter,
    question: str,
    default: str,
    normalize: Callable[[str], str],
) -> str:
    """Ask until the answer is empty or accepted by *normalize*."""
    while True:
        answer = (prompter.text(question, default or None) or "").strip()
        if not answer:
            return ""
        try:
            return normalize(answer)
        except CertificateRegistryError as exc:
            if prompter.assume_yes:
                return answer
            prompter.console.print(str(exc), style="red", markup=False)


@dataclass(slots=True)
class ConfigurationBundle:
    """Create, inspect and remove the files of the configuration folder."""

    paths: BundlePaths
    templates: TemplateEngine
    confirm_overwrite: Callable[[Path], bool] = field(default=lambda path: False)

    def missing_files(self) -> list[Path]:
        """Return required files that do not exist yet."""
        return [path for path in self.paths.required_files() if not path.exists()]

    def exists(self) -> bool:
        """Return True when the configuration folder exists."""
        return self.paths.root.exists()

    def write(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> str:
        """Render one file, asking before an existing file is replaced."""
        if destination.exists() and not self.confirm_overwrite(destination):
            return SKIPPED
        try:
            changed = self.templates.render_to_path(template_name, destination, context, mode=mode)
        except OSError as exc:
            raise BundleError(f"Unable to write {destination}: {exc}") from exc
        return WRITTEN if changed else UNCHANGED

    def render(
        self,
        options: InstallOptions,
        *,
        on_file: Callable[[Path, str], None] | None = None,
        tls_days: int = 3650,
        tls_key_size: int = 2048,
    ) -> dict[Path, str]:
        """Write every file of the bundle from *options*."""
        outcomes: dict[Path, str] = {}

        def _record(path: Path, outcome: str) -> None:
            outcomes[path] = outcome
            if on_file is not None:
                on_file(path, outcome)

        if options.ssl and options.snakeoil:
            material = self.paths.snakeoil
            if material.certificate.exists() and not self.confirm_overwrite(material.certificate):
                _record(material.certificate, SKIPPED)
            else:
                try:
                    generate_self_signed(
                        material,
                        options.server_name,
                        days=tls_days,
                        key_size=tls_key_size,
                    )
                except TLSError as exc:
                    raise BundleError(str(exc)) from exc
                _record(material.certificate, WRITTEN)
                _record(material.key, WRITTEN)

        context = options.to_context()
        files = (
            ("compose/docker-compose.yml.j2", self.paths.compose_file, 0o644),
            ("compose/env.j2", self.paths.env_file, 0o600),
            ("nginx/trambar.conf.j2", self.paths.nginx_conf, 0o644),
            ("postgres/postgresql.conf.j2", self.paths.postgres_conf, 0o644),
            ("server/config.json.j2", self.paths.server_conf, 0o644),
        )
        for template_name, destination, mode in files:
            _record(destination, self.write(template_name, destination, context, mode=mode))

        self.paths.nginx_sites.mkdir(parents=True, exist_ok=True)
        if options.certbot:
            self.paths.certbot_dir.mkdir(parents=True, exist_ok=True)
            if self.seed_registry(options):
                _record(self.paths.certificate_registry, WRITTEN)
        return outcomes

    def seed_registry(self, options: InstallOptions) -> bool:
        """Record the install's contact e-mail and server domain for certbot.

        Values that are not a valid address or domain are left for
        ``trambar cert email`` and ``trambar cert add``.
        """
        registry = CertificateRegistry(self.paths.certificate_registry)
        try:
            document = registry.load()
        except CertificateRegistryError as exc:
            raise BundleError(str(exc)) from exc
        changed = False
        try:
            email = normalize_email(options.contact_email)
        except CertificateRegistryError:
            email = ""
        if email and document.email != email:
            document.email = email
            changed = True
        try:
            domain = normalize_domain(options.server_name)
        except CertificateRegistryError:
            domain = ""
        if domain and domain not in document.domains:
            document.domains.append(domain)
            changed = True
        if changed or not registry.exists():
            registry.save(document)
            return True
        return False

    def save_password(self, password: str | None) -> str:
        """Write the credential file, asking before replacing it."""
        if not password:
            raise BundleError("A password is required for the root account.")
        credentials = CredentialFile(self.paths.credentials)
        if credentials.exists() and not self.confirm_overwrite(self.paths.credentials):
            return SKIPPED
        credentials.set_password(password)
        return WRITTEN

    def render_site(self, domain: str) -> bool:
        """Write the HTTPS server fragment for a certbot-managed *domain*."""
        return self.templates.render_to_path(
            "nginx/site.conf.j2",
            self.paths.site_path(domain),
            {"domain": domain},
            mode=0o644,
        )

    def remove_site(self, domain: str) -> bool:
        """Delete the fragment for *domain*; return False when absent."""
        try:
            self.paths.site_path(domain).unlink()
        except FileNotFoundError:
            return False
        return True

    def remove(self) -> None:
        """Delete the whole configuration folder."""
        try:
            shutil.rmtree(self.paths.root)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise BundleError(f"Unable to remove {self.paths.root}: {exc}") from exc


__all__ = [
    "BundleError",
    "BundlePaths",
    "ConfigurationBundle",
    "InstallOptions",
    "SKIPPED",
    "UNCHANGED",
    "WRITTEN",
    "collect_install_options",
    "default_install_options",
    "generate_secrets",
]
