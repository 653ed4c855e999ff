"""Tests for configuration bundle generation."""
from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
import yaml
from rich.console import Console

from trambarctl.bundle import (
    SKIPPED,
    WRITTEN,
    BundleError,
    BundlePaths,
    ConfigurationBundle,
    InstallOptions,
    collect_install_options,
    default_install_options,
    generate_secrets,
)
from trambarctl.config import load_config
from trambarctl.credentials import CredentialFile
from trambarctl.prompts import Prompter
from trambarctl.templates import TemplateEngine
from trambarctl.tls import TLSMaterial, generate_self_signed, inspect_certificate


def _bundle(tmp_path: Path, confirm: bool = False) -> ConfigurationBundle:
    return ConfigurationBundle(
        paths=BundlePaths(tmp_path / "config"),
        templates=TemplateEngine.with_overrides(None),
        confirm_overwrite=lambda path: confirm,
    )


def _options(**overrides: object) -> InstallOptions:
    values: dict[str, object] = {
        "prefix": "trambar",
        "namespace": "trambar",
        "build": "latest",
        "ssl": False,
        "certbot": False,
        "snakeoil": False,
        "server_name": "trambar.local",
        "http_port": 8080,
        "https_port": 8443,
        "database_folder": "/srv/trambar/postgres",
        "media_folder": "/srv/trambar/media",
        "secrets": ["a" * 32, "b" * 32, "c" * 32, "d" * 32],
    }
    values.update(overrides)
    return InstallOptions(**values)  # type: ignore[arg-type]


def test_default_options_for_public_and_private_hosts(tmp_path: Path) -> None:
    """Public hosts default to certbot on 80/443; private hosts to snakeoil."""
    config = load_config(tmp_path / "none.yml", env={}, system="Linux")

    public = default_install_options(config, public=True, hostname="box")
    private = default_install_options(config, public=False, hostname="box")

    assert (public.certbot, public.snakeoil, public.server_name) == (True, False, "")
    assert (public.http_port, public.https_port) == (80, 443)
    assert (private.certbot, private.snakeoil, private.server_name) == (False, True, "box")
    assert (private.http_port, private.https_port) == (8080, 8443)
    assert private.database_folder == "/srv/trambar/postgres"
    assert private.volumes is False


def test_volumes_flag_follows_missing_folders() -> None:
    """Named volumes are used when either host folder is missing."""
    assert _options(database_folder="").volumes is True
    assert _options(media_folder="").volumes is True
    assert _options().volumes is False


def test_generate_secrets_returns_hex_tokens() -> None:
    """Four 16-byte secrets are produced as 32 hex characters each."""
    secrets = generate_secrets()

    assert len(secrets) == 4
    assert all(len(value) == 32 and int(value, 16) >= 0 for value in secrets)
    assert len(set(secrets)) == 4


def test_collect_options_with_yes_keeps_defaults(tmp_path: Path) -> None:
    """Non-interactive mode answers yes to every confirmation."""
    paths = BundlePaths(tmp_path / "config")
    defaults = _options(ssl=True, snakeoil=True)

    options = collect_install_options(Prompter(assume_yes=True), paths, defaults)

    assert options.ssl is True
    assert options.certbot is True
    assert options.ssl_folder == "./certbot"
    assert options.snakeoil is False
    assert len(options.secrets) == 4


def test_collect_options_custom_certificate(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Custom certificate paths produce the common mount folder."""
    certs = tmp_path / "tls" / "site"
    generate_self_signed(TLSMaterial(certs / "cert.pem", certs / "key.pem"), "example.org", days=5)
    answers = iter(
        ["y", "n", "n", "example.org", str(certs / "cert.pem"), str(certs / "key.pem"), "", ""]
    )
    monkeypatch.setattr(Prompter, "_ask", lambda self, prompt, hide_input=False: next(answers))

    options = collect_install_options(
        Prompter(), BundlePaths(tmp_path / "config"), _options(ssl=True, snakeoil=True)
    )

    assert options.certbot is False
    assert options.snakeoil is False
    assert options.server_name == "example.org"
    assert options.cert_path == str(certs / "cert.pem")
    assert options.ssl_folder == str(certs)
    assert options.https_port == 8443


def test_collect_options_rejects_mismatched_key(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A private key from another pair is refused."""
    first = tmp_path / "tls" / "one"
    second = tmp_path / "tls" / "two"
    generate_self_signed(TLSMaterial(first / "cert.pem", first / "key.pem"), "example.org", days=5)
    generate_self_signed(TLSMaterial(second / "cert.pem", second / "key.pem"), "example.org", days=5)
    answers = iter(["y", "n", "n", "example.org", str(first / "cert.pem"), str(second / "key.pem")])
    monkeypatch.setattr(Prompter, "_ask", lambda self, prompt, hide_input=False: next(answers))

    with pytest.raises(BundleError, match="does not match"):
        collect_install_options(
            Prompter(), BundlePaths(tmp_path / "config"), _options(ssl=True, snakeoil=True)
        )


def test_collect_options_rejects_root_level_certificate_folder(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Certificates whose common folder sits at the root are refused."""
    answers = iter(["y", "n", "n", "example.org", "/etc/passwd", "/etc/hosts"])
    monkeypatch.setattr(Prompter, "_ask", lambda self, prompt, hide_input=False: next(answers))

    with pytest.raises(BundleError, match="root level folder"):
        collect_install_options(
            Prompter(), BundlePaths(tmp_path / "config"), _options(ssl=True, snakeoil=True)
        )


def test_render_writes_bundle_files(tmp_path: Path) -> None:
    """Rendering produces compose, env, nginx, postgres and server files."""
    bundle = _bundle(tmp_path)
    seen: list[Path] = []

    outcomes = bundle.render(_options(), on_file=lambda path, outcome: seen.append(path))

    paths = bundle.paths
    for path in (
        paths.compose_file,
        paths.env_file,
        paths.nginx_conf,
        paths.postgres_conf,
        paths.server_conf,
    ):
        assert outcomes[path] == WRITTEN
        assert path in seen
    assert oct(paths.env_file.stat().st_mode & 0o777) == "0o600"
    assert paths.nginx_sites.is_dir()

    compose = yaml.safe_load(paths.compose_file.read_text(encoding="utf-8"))
    assert set(compose["services"]) == {"postgres", "server", "nginx"}
    assert compose["services"]["server"]["image"] == "trambar/server:latest"
    assert compose["services"]["nginx"]["ports"] == ["8080:80"]
    assert "/srv/trambar/postgres:/var/lib/postgresql/data" in compose["services"]["postgres"]["volumes"]
    assert "volumes" not in compose

    env = paths.env_file.read_text(encoding="utf-8")
    assert f"POSTGRES_PASSWORD={'a' * 32}" in env
    assert "TRAMBAR_HTTPS_PORT" not in env

    server = json.loads(paths.server_conf.read_text(encoding="utf-8"))
    assert server["serverName"] == "trambar.local"
    assert server["ssl"] is False


def test_render_named_volumes_and_dev_mode(tmp_path: Path) -> None:
    """Missing host folders become named volumes; dev mode mounts sources."""
    bundle = _bundle(tmp_path)

    bundle.render(_options(database_folder="", media_folder="", dev_source="/home/dev/trambar"))

    compose = yaml.safe_load(bundle.paths.compose_file.read_text(encoding="utf-8"))
    assert set(compose["volumes"]) == {"postgres", "media"}
    assert compose["services"]["postgres"]["ports"] == ["127.0.0.1:5432:5432"]
    assert compose["services"]["server"]["environment"]["NODE_ENV"] == "development"
    assert "/home/dev/trambar/server/src:/opt/trambar/src" in compose["services"]["server"]["volumes"]
    assert "log_statement = 'all'" in bundle.paths.postgres_conf.read_text(encoding="utf-8")


def test_render_snakeoil_generates_certificate(tmp_path: Path) -> None:
    """A self-signed certificate is created for the server name."""
    bundle = _bundle(tmp_path)
    material = bundle.paths.snakeoil
    options = _options(
        ssl=True,
        snakeoil=True,
        ssl_folder=str(bundle.paths.certs_dir),
        cert_path=str(material.certificate),
        key_path=str(material.key),
    )

    bundle.render(options, tls_days=30, tls_key_size=2048)

    info = inspect_certificate(material.certificate)
    assert info.self_signed is True
    assert "trambar.local" in info.names
    assert oct(material.key.stat().st_mode & 0o777) == "0o600"
    nginx = bundle.paths.nginx_conf.read_text(encoding="utf-8")
    assert f"ssl_certificate {material.certificate};" in nginx
    compose = yaml.safe_load(bundle.paths.compose_file.read_text(encoding="utf-8"))
    assert "8443:443" in compose["services"]["nginx"]["ports"]


def test_render_certbot_seeds_registry(tmp_path: Path) -> None:
    """Certbot installs register the contact e-mail and the server domain."""
    bundle = _bundle(tmp_path)

    bundle.render(
        _options(
            ssl=True,
            certbot=True,
            server_name="Trambar.Example.com",
            contact_email="ops@example.com",
            ssl_folder="./certbot",
        )
    )

    registry = json.loads(bundle.paths.certificate_registry.read_text(encoding="utf-8"))
    assert registry == {"email": "ops@example.com", "domains": ["trambar.example.com"]}
    nginx = bundle.paths.nginx_conf.read_text(encoding="utf-8")
    assert "return 301" not in nginx
    assert "include /etc/nginx/trambar-locations.conf;" in nginx
    compose = yaml.safe_load(bundle.paths.compose_file.read_text(encoding="utf-8"))
    assert "./certbot/conf:/etc/letsencrypt:ro" in compose["services"]["nginx"]["volumes"]


def test_render_certbot_skips_invalid_registry_values(tmp_path: Path) -> None:
    """A bare host name or a malformed e-mail is not written to the registry."""
    bundle = _bundle(tmp_path)

    bundle.render(
        _options(ssl=True, certbot=True, server_name="trambar-test", contact_email="nobody")
    )

    registry = json.loads(bundle.paths.certificate_registry.read_text(encoding="utf-8"))
    assert registry == {"email": "", "domains": []}


def test_collect_options_reasks_invalid_certbot_answers(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The certbot domain and e-mail are validated before they are accepted."""
    answers = iter(
        ["y", "y", "localhost", "Trambar.Example.com", "not-an-address", "ops@example.com", "", ""]
    )
    monkeypatch.setattr(Prompter, "_ask", lambda self, prompt, hide_input=False: next(answers))
    prompter = Prompter(console=Console(file=io.StringIO()))

    options = collect_install_options(
        prompter, BundlePaths(tmp_path / "config"), _options(ssl=True, server_name="")
    )

    assert options.certbot is True
    assert options.server_name == "trambar.example.com"
    assert options.contact_email == "ops@example.com"
    assert options.ssl_folder == "./certbot"


def test_existing_files_are_kept_when_overwrite_declined(tmp_path: Path) -> None:
    """Declining the overwrite prompt leaves the file untouched."""
    bundle = _bundle(tmp_path, confirm=False)
    bundle.paths.root.mkdir(parents=True)
    bundle.paths.compose_file.write_text("original\n", encoding="utf-8")

    outcomes = bundle.render(_options())

    assert outcomes[bundle.paths.compose_file] == SKIPPED
    assert bundle.paths.compose_file.read_text(encoding="utf-8") == "original\n"


def test_missing_files_lists_required_files(tmp_path: Path) -> None:
    """Compose file and env file are required before containers are managed."""
    bundle = _bundle(tmp_path)

    assert bundle.missing_files() == [bundle.paths.compose_file, bundle.paths.env_file]

    bundle.render(_options())
    assert bundle.missing_files() == []


def test_save_password_writes_htpasswd(tmp_path: Path) -> None:
    """The credential file holds a verifiable hash for root."""
    bundle = _bundle(tmp_path, confirm=True)

    assert bundle.save_password("s3cret") == WRITTEN
    assert CredentialFile(bundle.paths.credentials).verify("s3cret") is True

    with pytest.raises(BundleError):
        bundle.save_password("")


def test_site_fragments_and_remove(tmp_path: Path) -> None:
    """Per-domain fragments are written, removed, and the folder can be purged."""
    bundle = _bundle(tmp_path)

    assert bundle.render_site("example.com") is True
    assert bundle.paths.site_path("example.com").exists()
    assert bundle.remove_site("example.com") is True
    assert bundle.remove_site("example.com") is False

    bundle.remove()
    assert not bundle.paths.root.exists()
    bundle.remove()
