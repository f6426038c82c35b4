"""Error taxonomy for Folio.

Every error raised by the build engine derives from FolioError so callers
(the CLI, the dev loop) can report a failed build without knowing which
subsystem produced it.

Key classes:
- ConfigError: a manifest field has the wrong shape (defaulted, never fatal).
- SchemaError: the object schema file is malformed (build-fatal).
- ParseError: an object data file or a template could not be parsed.
- LayoutError: a layout could not be found, was ambiguous, or had bad syntax.
- AssetError: an asset tag was rendered without the context it needs.
- DuplicateKeyError: two objects of one type share a name (build-fatal).
- ProtocolError: a live reload client sent a frame we do not support.
- BuildError: wraps any of the above with the source file that caused it.
"""

from __future__ import annotations

from pathlib import Path


class FolioError(Exception):
    """Base class for all Folio errors."""


class ConfigError(FolioError):
    """A manifest value could not be used.

    Attributes:
        field: Name of the manifest field.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"manifest field '{field}': {message}")


class SchemaError(FolioError):
    """The object definition file is malformed."""


class ParseError(FolioError):
    """An object data file or template could not be parsed.

    Attributes:
        source_path: File that failed to parse, when known.
    """

    def __init__(self, message: str, source_path: Path | None = None):
        self.source_path = source_path
        self.message = message
        prefix = f"{source_path}: " if source_path else ""
        super().__init__(f"{prefix}{message}")


class LayoutError(FolioError):
    """A layout tag could not be resolved or rendered."""


class AssetError(FolioError):
    """An asset tag could not be resolved."""


class DuplicateKeyError(FolioError):
    """Two objects in one collection resolve to the same name.

    Attributes:
        name: The duplicated object name.
    """

    def __init__(self, name: str, type_name: str | None = None):
        self.name = name
        self.type_name = type_name
        where = f" in {type_name}" if type_name else ""
        super().__init__(f"Duplicate object name '{name}'{where}")


class ProtocolError(FolioError):
    """A live reload client violated the supported WebSocket subset."""


class BuildError(FolioError):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")
