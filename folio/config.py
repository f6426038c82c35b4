"""Site configuration for Folio.

Configuration is read once per build generation from manifest.toml at the
site root and frozen for the duration of a build pass.

Key functions:
- load_config: Build a Config from defaults, manifest.toml and overrides.
- read_toml: Parse a TOML file into a dictionary.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError, ParseError

MANIFEST_FILE_NAME = "manifest.toml"
SCHEMA_FILE_NAME = "objects.toml"

DEFAULT_CONFIG: dict[str, Any] = {
    "pages": "pages",
    "objects": "objects",
    "build_dir": "dist",
    "static_dir": "public",
    "layout_dir": "layout",
    "assets": [],
    "helper_port": 2701,
    "site_url": None,
    "cdn_url": "",
}

_PATH_FIELDS = ("pages", "objects", "build_dir", "static_dir", "layout_dir")


@dataclass(frozen=True)
class Config:
    """Resolved site configuration.

    Attributes:
        root: Site root directory.
        pages_dir: Directory holding page templates.
        objects_dir: Directory holding object data files.
        build_dir: Directory the site is written to.
        static_dir: Directory copied verbatim into the build directory.
        layout_dir: Directory holding named layouts.
        assets_dirs: Extra directories copied verbatim into the build directory.
        helper_port: Port of the dev server.
        dev_mode: Whether the site is being built by the dev loop.
        site_url: Public URL of the site, if known.
        cdn_url: Base URL that uploaded files are served from.
        editor_types: Alias type name -> underlying field type name.
    """

    root: Path
    pages_dir: Path
    objects_dir: Path
    build_dir: Path
    static_dir: Path
    layout_dir: Path
    assets_dirs: tuple[Path, ...] = ()
    helper_port: int = 2701
    dev_mode: bool = False
    site_url: str | None = None
    cdn_url: str = ""
    editor_types: dict[str, str] = field(default_factory=dict)

    @property
    def schema_file(self) -> Path:
        return self.root / SCHEMA_FILE_NAME

    @property
    def manifest_file(self) -> Path:
        return self.root / MANIFEST_FILE_NAME

    def watched_paths(self) -> list[Path]:
        """Return every path the dev loop should watch for changes."""
        paths = [
            self.pages_dir,
            self.objects_dir,
            self.static_dir,
            self.layout_dir,
            *self.assets_dirs,
            self.schema_file,
            self.manifest_file,
        ]
        return [p for p in paths if p.exists()]


def read_toml(path: Path) -> dict[str, Any]:
    """Parse a TOML file.

    Args:
        path: File to read.

    Returns:
        Parsed table, keys in file order.

    Raises:
        ParseError: If the file is not valid TOML.
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ParseError(f"invalid TOML: {exc}", path) from exc


def load_config(
    root: Path | None = None,
    overrides: dict[str, Any] | None = None,
    dev_mode: bool = False,
) -> Config:
    """Load site configuration.

    Values come from explicit overrides first, then manifest.toml, then
    DEFAULT_CONFIG. Bad manifest values are reported and replaced by their
    defaults.

    Args:
        root: Site root directory (defaults to the working directory).
        overrides: Values that win over the manifest.
        dev_mode: Whether the dev loop is building the site.

    Returns:
        Frozen Config instance.
    """
    root = (root or Path.cwd()).resolve()
    manifest = _load_manifest(root)
    values = DEFAULT_CONFIG.copy()
    for key, default in DEFAULT_CONFIG.items():
        if key not in manifest:
            continue
        try:
            values[key] = _validate(key, manifest[key])
        except ConfigError as exc:
            print(f"Warning: {exc}; using default {default!r}")
    editor_types = _editor_types(manifest.get("editor_types", {}))
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    def resolve(value: str | Path) -> Path:
        path = Path(value)
        return path if path.is_absolute() else root / path

    return Config(
        root=root,
        pages_dir=resolve(values["pages"]),
        objects_dir=resolve(values["objects"]),
        build_dir=resolve(values["build_dir"]),
        static_dir=resolve(values["static_dir"]),
        layout_dir=resolve(values["layout_dir"]),
        assets_dirs=tuple(resolve(p) for p in values["assets"]),
        helper_port=int(values["helper_port"]),
        dev_mode=dev_mode,
        site_url=values["site_url"],
        cdn_url=str(values["cdn_url"] or ""),
        editor_types=editor_types,
    )


def _load_manifest(root: Path) -> dict[str, Any]:
    manifest_path = root / MANIFEST_FILE_NAME
    if not manifest_path.is_file():
        return {}
    try:
        return read_toml(manifest_path)
    except ParseError as exc:
        print(f"Warning: ignoring {exc}")
        return {}


def _validate(key: str, value: Any) -> Any:
    """Check a manifest value against the shape its default has."""
    if key in _PATH_FIELDS:
        if not isinstance(value, str) or not value:
            raise ConfigError(key, "expected a path string")
        return value
    if key == "assets":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(key, "expected a list of path strings")
        return value
    if key == "helper_port":
        if isinstance(value, bool) or not isinstance(value, int) or not 0 < value < 65536:
            raise ConfigError(key, "expected a port number")
        return value
    if not isinstance(value, str):
        raise ConfigError(key, "expected a string")
    return value


def _editor_types(table: Any) -> dict[str, str]:
    if not isinstance(table, dict):
        print(f"Warning: {ConfigError('editor_types', 'expected a table')}")
        return {}
    aliases: dict[str, str] = {}
    for name, definition in table.items():
        alias_of = definition.get("alias_of") if isinstance(definition, dict) else None
        if not isinstance(alias_of, str):
            print(f"Warning: {ConfigError(f'editor_types.{name}', 'missing alias_of')}")
            continue
        aliases[name] = alias_of
    return aliases
