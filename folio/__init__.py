"""Folio static site builder.

Folio renders a site from Jinja2 page templates, TOML content objects and
named layouts, and ships a dev loop that rebuilds incrementally and reloads
connected browsers.

The main entry point is the CLI module, which provides commands for building
a site once and for running the watch-and-serve dev loop.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
