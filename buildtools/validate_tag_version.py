#!/usr/bin/env python3
"""Check that a release tag matches the package version.

Tags are ``v<version>`` for releases, ``v<version>-dev`` for development
snapshots and ``docs-v<version>`` for documentation builds. The version inside
the tag must equal ``__version__`` in ``src/trambarctl/__init__.py``.
"""
from __future__ import annotations

import argparse
import ast
import pathlib
import sys

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
INIT_PATH = PROJECT_ROOT / "src" / "trambarctl" / "__init__.py"

_TAG_FORMATS = {
    "release": ("v", ""),
    "dev": ("v", "-dev"),
    "docs": ("docs-v", ""),
}


class TagValidationError(RuntimeError):
    """Raised when a tag does not match the expected scheme."""


def load_package_version() -> str:
    """Parse ``__version__`` from the package without importing it."""
    module = ast.parse(INIT_PATH.read_text(encoding="utf-8"), filename=str(INIT_PATH))
    for node in module.body:
        if not isinstance(node, ast.Assign):
            continue
        if any(getattr(target, "id", None) == "__version__" for target in node.targets):
            if isinstance(node.value, ast.Constant) and isinstance(node.value.value, str):
                return node.value.value
    raise TagValidationError("Unable to determine __version__ from __init__.py")


def expected_version_from_tag(tag: str, kind: str) -> str:
    """Return the version embedded in *tag*."""
    if kind not in _TAG_FORMATS:
        raise TagValidationError(f"Unknown tag kind '{kind}'.")
    prefix, suffix = _TAG_FORMATS[kind]
    matches = tag.startswith(prefix) and tag.endswith(suffix)
    if kind == "release" and tag.endswith("-dev"):
        matches = False
    if not matches:
        raise TagValidationError(
            f"{kind.title()} tags must be formatted as {prefix}<version>{suffix}; "
            f"received '{tag}'."
        )
    return tag[len(prefix) : len(tag) - len(suffix)]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Return parsed CLI arguments."""
    parser = argparse.ArgumentParser(description="Validate tag name against package version.")
    parser.add_argument("--kind", required=True, choices=sorted(_TAG_FORMATS))
    parser.add_argument("--tag", required=True, help="Git tag name to validate.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Return 0 when the tag matches the package version."""
    args = parse_args(argv)
    try:
        expected_version = expected_version_from_tag(args.tag, args.kind)
        package_version = load_package_version()
    except TagValidationError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1

    if package_version != expected_version:
        sys.stderr.write(
            f"Tag version '{expected_version}' does not match package version "
            f"'{package_version}'.\n"
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
