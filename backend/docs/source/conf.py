"""Sphinx configuration for the GeoSpot API reference.

Build from the repository root with:

    sphinx-build backend/docs/source backend/docs/build
"""

import pathlib
import sys

# backend/ holds the geospot package.
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[2]))

project = 'GeoSpot API'
author = 'GeoSpot developers'
release = '0.1.0'

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.autosummary',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx_autodoc_typehints',
    'myst_parser',
]

source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}
exclude_patterns = ['_build', '_autosummary/*.tmp']

# Docstrings are Google style throughout.
napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_include_init_with_doc = True

autosummary_generate = True
autodoc_default_options = {
    'members': True,
    'show-inheritance': True,
}
autodoc_member_order = 'bysource'
typehints_fully_qualified = False

# The API reference builds without a database driver installed.
autodoc_mock_imports = ['psycopg2']

html_theme = 'sphinx_rtd_theme'
html_title = 'GeoSpot API reference'
