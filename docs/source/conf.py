"""Sphinx configuration for trambarctl documentation."""
from __future__ import annotations

import importlib
import pathlib
import sys
from datetime import UTC, datetime

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[2]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

release = importlib.import_module("trambarctl").__version__

project = "trambarctl"
author = "Trambar contributors"
copyright = f"{datetime.now(UTC):%Y}, {author}"

version = release

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
]

autodoc_default_options = {
    "members": True,
    "undoc-members": False,
}

exclude_patterns: list[str] = ["_build"]

html_theme = "sphinx_rtd_theme"
html_title = f"{project} {release}"

napoleon_google_docstring = False
napoleon_numpy_docstring = True
