"""Jinja2 template engine for the configuration bundle.

Built-in templates ship alongside this module. A templates folder configured
in the settings may shadow any of them by relative name, e.g.
``nginx/trambar.conf.j2``.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError as JinjaTemplateError,
)


class TemplateError(RuntimeError):
    """Raised when a template cannot be loaded or rendered."""


@dataclass(slots=True)
class TemplateEngine:
    """Render packaged templates with optional on-disk overrides."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates found in *override_dir*."""
        loaders: list[FileSystemLoader | PackageLoader] = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("trambarctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**context)
        except JinjaTemplateError as exc:
            raise TemplateError(f"Failed to render {template_name}: {exc}") from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int | None = None,
    ) -> bool:
        """Render into *destination*; return False when the content is unchanged."""
        content = self.render_to_string(template_name, context)
        return write_text_atomic(destination, content, mode=mode)


def write_text_atomic(destination: Path, content: str, *, mode: int | None = None) -> bool:
    """Write *content* to *destination* atomically, returning True on change."""
    if destination.exists():
        try:
            current = destination.read_text(encoding="utf-8")
        except OSError:
            current = None
        if current == content:
            if mode is not None:
                destination.chmod(mode)
            return False

    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(destination.parent), prefix=f".{destination.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(content)
        tmp_path.chmod(mode if mode is not None else 0o644)
        os.replace(tmp_path, destination)
    finally:
        tmp_path.unlink(missing_ok=True)
    return True


__all__ = ["TemplateEngine", "TemplateError", "write_text_atomic"]
