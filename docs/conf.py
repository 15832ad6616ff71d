from __future__ import annotations

import os
import sys
from importlib.metadata import PackageNotFoundError, version

DOCS_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.join(DOCS_ROOT, "..", "src"))

project = "crossview"
author = "crossview contributors"
try:
    release = version("crossview")
except PackageNotFoundError:
    release = "0.1.0"

extensions = [
    "myst_parser",
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
    "sphinx.ext.intersphinx",
    "sphinx_copybutton",
]

exclude_patterns = ["_build"]
source_suffix = {".md": "markdown", ".rst": "restructuredtext"}

myst_enable_extensions = ["colon_fence", "dollarmath"]

autodoc_mock_imports = ["cv2"]
autodoc_member_order = "bysource"
autodoc_typehints = "description"
autodoc_default_options = {"members": True, "undoc-members": False}

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "numpy": ("https://numpy.org/doc/stable", None),
    "scipy": ("https://docs.scipy.org/doc/scipy", None),
}

html_theme = "sphinx_rtd_theme"
html_title = "crossview"
copybutton_prompt_text = "$ "
