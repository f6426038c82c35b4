"""Command-line interface for Folio.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site into the build directory.
- run: Build, then watch for changes and serve the site with live reload.
"""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import click

from . import __version__
from .errors import BuildError, FolioError

_root_option = click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Site root directory (defaults to the current directory)",
)


def _fail(exc: FolioError, root: Path) -> NoReturn:
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    if isinstance(exc, BuildError):
        try:
            rel_path = exc.source_path.relative_to(root)
        except ValueError:
            rel_path = exc.source_path
        click.echo(click.style(f"  File: {rel_path}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
    else:
        click.echo(click.style(f"  Error: {exc}", fg="white"), err=True)
    raise SystemExit(1) from None


@click.group()
@click.version_option(version=__version__, prog_name="folio")
def cli():
    """Folio static site builder."""


@cli.command()
@_root_option
def build(root: Path | None):
    """Build the site into the build directory."""
    project_root = (root or Path.cwd()).resolve()
    from .build import Builder
    from .config import load_config

    try:
        builder = Builder(load_config(project_root))
        result = builder.write_all()
    except FolioError as exc:
        _fail(exc, project_root)
    click.echo(f"Built {len(result.written)} files into {result.build_dir}")
    if result.errors:
        click.echo(click.style(f"{len(result.errors)} problem(s) reported above", fg="yellow"))


@cli.command()
@_root_option
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port for the dev server (overrides helper_port in manifest.toml)",
)
@click.option("--noserve", is_flag=True, help="Rebuild on changes without serving")
def run(root: Path | None, port: int | None, noserve: bool):
    """Build, watch for changes and serve with live reload."""
    project_root = (root or Path.cwd()).resolve()
    from .watch import DevLoop

    try:
        loop = DevLoop(project_root, port=port, serve=not noserve)
    except FolioError as exc:
        _fail(exc, project_root)
    loop.run_forever()


def main():
    """Entry point for the CLI application."""
    cli()
