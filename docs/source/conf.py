# Configuration file for the Sphinx documentation builder.
#
# For a full list of configuration options, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

import os
import re
import sys

# Add the project root to sys.path so Sphinx can find torch_adaptloop
ROOT = os.path.abspath('../..')
sys.path.insert(0, ROOT)

def _read_version():
    # Read without importing the package
    with open(os.path.join(ROOT, 'torch_adaptloop', '__init__.py'), encoding='utf-8') as f:
        match = re.search(r'^__version__ = "([^"]+)"', f.read(), re.MULTILINE)
    return match.group(1) if match else '0.0.0'

# -- Project information -----------------------------------------------------
project = 'torch_adaptloop'
copyright = '2026, Stefano Giacomelli'
author = 'Stefano Giacomelli'
release = _read_version()
version = '.'.join(release.split('.')[:2])

# -- General configuration ---------------------------------------------------
extensions = [
    'sphinx.ext.autodoc',           # Auto-generate docs from docstrings
    'sphinx.ext.napoleon',          # Support for NumPy-style docstrings
    'sphinx.ext.viewcode',          # Add links to highlighted source code
    'sphinx.ext.intersphinx',       # Link to other projects' documentation
    'sphinx.ext.mathjax',           # Render LaTeX math equations
    'sphinx.ext.autosummary',       # Generate summary tables
    'sphinx_autodoc_typehints',     # Better type hints rendering
    'myst_parser',                  # Markdown support (for .md files)
]

# Napoleon settings for NumPy-style docstrings
napoleon_google_docstring = False
napoleon_numpy_docstring = True
napoleon_include_init_with_doc = True
napoleon_include_private_with_doc = False
napoleon_include_special_with_doc = True
napoleon_use_admonition_for_examples = False
napoleon_use_admonition_for_notes = False
napoleon_use_admonition_for_references = False
napoleon_use_ivar = False
napoleon_use_param = True
napoleon_use_rtype = True
napoleon_preprocess_types = False
napoleon_type_aliases = {
    'TauLike': ':data:`~torch_adaptloop.common.parameters.TauLike`',
}
# Section used by the AdaptLoop docstring
napoleon_custom_sections = [('Algorithm Overview', 'notes_style'), ('Shape', 'params_style')]
napoleon_attr_annotations = True

# Autodoc settings
autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'special-members': '__init__',
    'undoc-members': True,
    'exclude-members': '__weakref__'
}
autodoc_typehints = 'description'
autodoc_typehints_description_target = 'documented'

# Autosummary settings
autosummary_generate = True
autosummary_imported_members = False

# Templates path (none, the theme defaults are used)
templates_path = []

# List of patterns to ignore when looking for source files
exclude_patterns = []

# The suffix of source filenames
source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}

# The master toctree document
master_doc = 'index'

# -- Options for HTML output -------------------------------------------------
html_theme = 'sphinx_rtd_theme'  # Read the Docs theme
html_theme_options = {
    'navigation_depth': 4,
    'collapse_navigation': False,
    'sticky_navigation': True,
    'includehidden': True,
    'titles_only': False,
    'logo_only': False,
    'prev_next_buttons_location': 'bottom',
    'style_external_links': True,
}

# No custom static files
html_static_path = []

# HTML output options
html_title = f'{project} v{release}: streaming adaptation loops'
html_short_title = project
html_show_sourcelink = True
html_show_sphinx = True
html_show_copyright = True

# -- Extension configuration -------------------------------------------------

# Intersphinx mapping (link to other projects' docs)
intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'torch': ('https://pytorch.org/docs/stable/', None),
    'numpy': ('https://numpy.org/doc/stable/', None),
}

# MathJax configuration for LaTeX rendering
mathjax_path = 'https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-mml-chtml.js'

# Type hints configuration
always_document_param_types = True
typehints_fully_qualified = False
