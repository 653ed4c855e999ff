"""Settings loader for trambarctl.

Values are merged from several sources, later sources winning:

1. Built-in defaults (which depend on the host operating system).
2. ``trambarctl.yml`` inside the default configuration folder (or an override
   path supplied with ``--settings`` / ``TRAMBAR_SETTINGS_FILE``).
3. Environment variables prefixed with ``TRAMBAR_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export TRAMBAR_CERTBOT__MODE=host
    export TRAMBAR_TLS__SELF_SIGNED_DAYS=365

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
import platform
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load trambarctl settings. Install with "
        "`pip install trambarctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "TRAMBAR_"
SETTINGS_ENV_VAR = f"{ENV_PREFIX}SETTINGS_FILE"
SETTINGS_FILE_NAME = "trambarctl.yml"
RESERVED_ENV_KEYS = {SETTINGS_ENV_VAR}
# Values that stay literal strings when read from the environment.
RAW_ENV_KEYS = {("build",), ("prefix",), ("image_namespace",), ("default_password",)}

LINUX = "Linux"
DARWIN = "Darwin"
WINDOWS = "Windows"
SUPPORTED_SYSTEMS = (LINUX, DARWIN, WINDOWS)

ALLOWED_CERTBOT_MODES = {"docker", "host"}


class ConfigError(RuntimeError):
    """Raised when settings parsing fails."""


@dataclass(frozen=True)
class PlatformDefaults:
    """Folder defaults that differ between operating systems."""

    system: str
    config_dir: Path
    database_dir: Path | None
    media_dir: Path | None
    logs_dir: Path


@dataclass(frozen=True)
class DockerConfig:
    """Container runtime binaries."""

    docker_bin: str = "docker"
    compose_bin: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"docker_bin": self.docker_bin, "compose_bin": self.compose_bin}


@dataclass(frozen=True)
class CertbotConfig:
    """Certificate tool invocation settings."""

    mode: str = "docker"
    bin: str = "certbot"
    image: str = "certbot/certbot"
    staging: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "mode": self.mode,
            "bin": self.bin,
            "image": self.image,
            "staging": self.staging,
        }


@dataclass(frozen=True)
class TLSConfig:
    """Self-signed certificate generation and expiry reporting."""

    self_signed_days: int = 3650
    key_size: int = 2048
    warn_expiry_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "self_signed_days": self.self_signed_days,
            "key_size": self.key_size,
            "warn_expiry_days": self.warn_expiry_days,
        }


@dataclass(frozen=True)
class DevConfig:
    """Developer mode settings."""

    source_dir: Path | None = None

    @property
    def enabled(self) -> bool:
        """Return True when a source checkout is mounted into the containers."""
        return self.source_dir is not None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"source_dir": str(self.source_dir) if self.source_dir else None}


@dataclass(frozen=True)
class AppConfig:
    """Resolved settings for trambarctl."""

    system: str
    settings_file: Path
    config_dir: Path
    prefix: str
    build: str
    image_namespace: str
    default_password: str
    database_dir: Path | None
    media_dir: Path | None
    logs_dir: Path
    templates_dir: Path | None
    editor: str | None
    docker: DockerConfig
    certbot: CertbotConfig
    tls: TLSConfig
    dev: DevConfig

    @property
    def requires_root(self) -> bool:
        """Return True when privileged commands need root access."""
        return self.system == LINUX

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the settings."""
        return {
            "system": self.system,
            "settings_file": str(self.settings_file),
            "config_dir": str(self.config_dir),
            "prefix": self.prefix,
            "build": self.build,
            "image_namespace": self.image_namespace,
            "default_password": self.default_password,
            "database_dir": str(self.database_dir) if self.database_dir else None,
            "media_dir": str(self.media_dir) if self.media_dir else None,
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "editor": self.editor,
            "docker": self.docker.to_dict(),
            "certbot": self.certbot.to_dict(),
            "tls": self.tls.to_dict(),
            "dev": self.dev.to_dict(),
        }


def platform_defaults(
    system: str | None = None,
    env: Mapping[str, str] | None = None,
) -> PlatformDefaults:
    """Return folder defaults for *system* (defaults to the running host)."""
    system = system or platform.system()
    resolved_env = os.environ if env is None else env
    if system == LINUX:
        return PlatformDefaults(
            system=system,
            config_dir=Path("/etc/trambar"),
            database_dir=Path("/srv/trambar/postgres"),
            media_dir=Path("/srv/trambar/media"),
            logs_dir=Path("/var/log/trambar"),
        )
    if system == WINDOWS:
        profile = resolved_env.get("USERPROFILE", "")
        home = Path(profile.replace("\\", "/")) if profile else Path.home()
        return PlatformDefaults(
            system=system,
            config_dir=home / "Trambar",
            database_dir=None,
            media_dir=None,
            logs_dir=home / "Trambar" / "logs",
        )
    if system == DARWIN:
        home_raw = resolved_env.get("HOME")
        home = Path(home_raw) if home_raw else Path.home()
        return PlatformDefaults(
            system=system,
            config_dir=home / "Trambar",
            database_dir=None,
            media_dir=None,
            logs_dir=home / "Trambar" / "logs",
        )
    raise ConfigError(f"Unsupported operating system: {system}")


def build_defaults(host: PlatformDefaults) -> dict[str, object]:
    """Return the built-in settings tree for *host*."""
    return {
        "settings_file": str(host.config_dir / SETTINGS_FILE_NAME),
        "config_dir": str(host.config_dir),
        "prefix": "trambar",
        "build": "latest",
        "image_namespace": "trambar",
        "default_password": "password",
        "database_dir": str(host.database_dir) if host.database_dir else None,
        "media_dir": str(host.media_dir) if host.media_dir else None,
        "logs_dir": str(host.logs_dir),
        "templates_dir": None,
        "editor": None,
        "docker": {
            "docker_bin": "docker",
            "compose_bin": None,
        },
        "certbot": {
            "mode": "docker",
            "bin": "certbot",
            "image": "certbot/certbot",
            "staging": False,
        },
        "tls": {
            "self_signed_days": 3650,
            "key_size": 2048,
            "warn_expiry_days": 30,
        },
        "dev": {
            "source_dir": None,
        },
    }


ALLOWED_TOP_LEVEL_KEYS = set(build_defaults(platform_defaults(LINUX)).keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "docker": {"docker_bin", "compose_bin"},
    "certbot": {"mode", "bin", "image", "staging"},
    "tls": {"self_signed_days", "key_size", "warn_expiry_days"},
    "dev": {"source_dir"},
}


def load_config(
    settings_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
    system: str | None = None,
) -> AppConfig:
    """Load and merge settings sources into an :class:`AppConfig`."""
    resolved_env = dict(os.environ if env is None else env)
    host = platform_defaults(system, resolved_env)
    merged: dict[str, object] = _deep_copy(build_defaults(host))

    settings_default = _expect_str(merged["settings_file"], "settings_file")
    settings_path = _determine_settings_path(settings_default, settings_file, resolved_env)

    file_values = _load_yaml_file(settings_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, {key: value for key, value in overrides.items() if value is not None})

    merged["settings_file"] = str(settings_path)

    _validate_structure(merged)

    return _build_app_config(host, merged)


def _determine_settings_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if SETTINGS_ENV_VAR in env:
        return Path(env[SETTINGS_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    try:
        exists = path.is_file()
    except OSError:
        return {}
    if not exists:
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse settings file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Unable to read settings file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Settings file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    prefix = raw.get("prefix")
    if not isinstance(prefix, str) or not prefix.strip():
        raise ConfigError("prefix must be a non-empty string.")
    if not all(ch.isalnum() or ch in "-_" for ch in prefix.strip()):
        raise ConfigError(f"prefix may only contain letters, digits, '-' and '_'. Got {prefix!r}.")

    build = raw.get("build")
    if not isinstance(build, (str, int, float)) or not str(build).strip():
        raise ConfigError("build must be a non-empty string.")

    certbot_map = _as_dict(raw.get("certbot"), "certbot")
    mode = str(certbot_map.get("mode", "docker"))
    if mode not in ALLOWED_CERTBOT_MODES:
        allowed = ", ".join(sorted(ALLOWED_CERTBOT_MODES))
        raise ConfigError(f"Unsupported certbot mode '{mode}'. Allowed: {allowed}.")

    tls_map = _as_dict(raw.get("tls"), "tls")
    for key in ("self_signed_days", "key_size"):
        value = _expect_int(tls_map.get(key), f"tls.{key}", default=1)
        if value <= 0:
            raise ConfigError(f"tls.{key} must be greater than zero.")
    warn_days = _expect_int(tls_map.get("warn_expiry_days"), "tls.warn_expiry_days", default=30)
    if warn_days < 0:
        raise ConfigError("tls.warn_expiry_days must be non-negative.")


def _build_app_config(host: PlatformDefaults, raw: Mapping[str, object]) -> AppConfig:
    docker_map = _as_dict(raw.get("docker"), "docker")
    compose_bin = docker_map.get("compose_bin")
    docker = DockerConfig(
        docker_bin=str(docker_map.get("docker_bin", "docker")),
        compose_bin=str(compose_bin) if compose_bin else None,
    )

    certbot_map = _as_dict(raw.get("certbot"), "certbot")
    certbot = CertbotConfig(
        mode=str(certbot_map.get("mode", "docker")),
        bin=str(certbot_map.get("bin", "certbot")),
        image=str(certbot_map.get("image", "certbot/certbot")),
        staging=_expect_bool(certbot_map.get("staging"), "certbot.staging", default=False),
    )

    tls_map = _as_dict(raw.get("tls"), "tls")
    tls = TLSConfig(
        self_signed_days=_expect_int(
            tls_map.get("self_signed_days"), "tls.self_signed_days", default=3650
        ),
        key_size=_expect_int(tls_map.get("key_size"), "tls.key_size", default=2048),
        warn_expiry_days=_expect_int(
            tls_map.get("warn_expiry_days"), "tls.warn_expiry_days", default=30
        ),
    )

    dev_map = _as_dict(raw.get("dev"), "dev")
    source_dir = dev_map.get("source_dir")
    dev = DevConfig(source_dir=_to_path(source_dir) if source_dir else None)

    editor = raw.get("editor")
    templates_dir = raw.get("templates_dir")

    return AppConfig(
        system=host.system,
        settings_file=_to_path(raw.get("settings_file")),
        config_dir=_to_path(raw.get("config_dir")),
        prefix=str(raw.get("prefix")).strip(),
        build=str(raw.get("build")).strip(),
        image_namespace=str(raw.get("image_namespace", "trambar")).strip("/"),
        default_password=str(raw.get("default_password", "password")),
        database_dir=_optional_path(raw.get("database_dir")),
        media_dir=_optional_path(raw.get("media_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(templates_dir) if templates_dir else None,
        editor=str(editor) if editor else None,
        docker=docker,
        certbot=certbot,
        tls=tls,
        dev=dev,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if tuple(path_segments) in RAW_ENV_KEYS:
            _assign_nested(overrides, path_segments, value.strip())
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_path(value: object) -> Path | None:
    if value is None or value == "":
        return None
    return _to_path(value)


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "CertbotConfig",
    "ConfigError",
    "DevConfig",
    "DockerConfig",
    "PlatformDefaults",
    "TLSConfig",
    "load_config",
    "platform_defaults",
]
