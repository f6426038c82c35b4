"""Content loading for Folio.

Objects live in ``objects/<type>/<name>.toml`` (or ``objects/<type>.toml``
for a type with a single object). Each file is parsed, its values coerced to
the field types its definition declares, and the objects of a type are
collected into an ordered, name-addressable ObjectCollection.

Key classes:
- FileValue: An uploaded file referenced by an image/video/audio/upload field.
- ContentObject: One record of an object type.
- ObjectCollection: Ordered objects of one type, addressable by name.
- ContentStore: Loads and coerces every object declared by the schema.

Key functions:
- sort_objects: Deterministic ordering by ``order`` then name.
- coerce_value: Convert a raw TOML value to its field type.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

from markupsafe import Markup

from .config import Config, read_toml
from .errors import DuplicateKeyError, ParseError, SchemaError
from .renderers import MarkdownRenderer, default_markdown_renderer
from .schema import ORDER, FieldKind, FieldType, ObjectTypeDefinition
from .utils import rewrite_link

OBJECT_SUFFIX = ".toml"


@dataclass(frozen=True)
class FileValue:
    """An uploaded file.

    Attributes:
        sha: Content hash the file is stored under.
        filename: Original filename.
        name: Optional display name.
        mime: MIME type.
        display_type: image, video, audio or upload.
        url: Where the file is served from.
    """

    sha: str
    filename: str
    name: str | None
    mime: str
    display_type: str
    url: str

    def __str__(self) -> str:
        return self.url


@dataclass
class ContentObject:
    """One record of an object type.

    Field values are reachable by subscription (``obj["title"]``), which is
    also how templates reach them (``{{ post.title }}``).

    Attributes:
        name: Stable name derived from the source filename.
        type_name: Name of the object type.
        data: Coerced field values.
        order: Explicit position, if the file set one.
        source: File the object was loaded from.
        path: Output file relative to the page being rendered, for types
            with a template binding.
    """

    name: str
    type_name: str
    data: dict[str, Any] = field(default_factory=dict)
    order: int | float | None = None
    source: Path | None = None
    path: str | None = None

    def __getitem__(self, key: str) -> Any:
        if key == "name":
            return self.name
        if key == ORDER:
            return self.order
        if key == "path":
            return self.path
        return self.data[key]

    def __contains__(self, key: object) -> bool:
        return key in ("name", ORDER, "path") or key in self.data

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def with_path(self, path: str | None) -> ContentObject:
        return dataclasses.replace(self, path=path)


def _order_key(obj: ContentObject) -> tuple[int, int | float | str, str]:
    # Ordered objects come first, by numeric order; the rest by name.
    if obj.order is None:
        return (1, obj.name, obj.name)
    return (0, obj.order, obj.name)


def sort_objects(objects: Iterable[ContentObject], type_name: str | None = None) -> ObjectCollection:
    """Sort objects into their render order.

    Objects with an order come first, compared as numbers; objects without
    one follow, by name. Ties are broken by name, so the result is the same
    whatever order the objects arrive in.

    Args:
        objects: Objects of a single type.
        type_name: Used in error messages.

    Returns:
        An ObjectCollection in render order.

    Raises:
        DuplicateKeyError: If two objects share a name.
    """
    seen: set[str] = set()
    items = list(objects)
    for obj in items:
        if obj.name in seen:
            raise DuplicateKeyError(obj.name, type_name or obj.type_name)
        seen.add(obj.name)
    items.sort(key=_order_key)
    return ObjectCollection(items)


class ObjectCollection(Sequence[ContentObject]):
    """Ordered objects of one type.

    Indexing with an int or slice uses render order; indexing with a string
    looks an object up by name.
    """

    def __init__(self, objects: Iterable[ContentObject] = ()):
        self._objects = list(objects)
        self._by_name = {o.name: o for o in self._objects}
        if len(self._by_name) != len(self._objects):
            names = [o.name for o in self._objects]
            duplicate = next(n for n in names if names.count(n) > 1)
            raise DuplicateKeyError(duplicate)

    def __iter__(self) -> Iterator[ContentObject]:
        return iter(self._objects)

    def __len__(self) -> int:
        return len(self._objects)

    def __getitem__(self, item):
        if isinstance(item, str):
            return self._by_name[item]
        if isinstance(item, slice):
            return ObjectCollection(self._objects[item])
        return self._objects[item]

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return item in self._by_name
        return item in self._objects

    def __repr__(self) -> str:
        return f"ObjectCollection({[o.name for o in self._objects]!r})"

    def names(self) -> list[str]:
        return [o.name for o in self._objects]

    def get(self, name: str) -> ContentObject | None:
        return self._by_name.get(name)

    def map(self, fn: Callable[[ContentObject], ContentObject]) -> ObjectCollection:
        return ObjectCollection(fn(o) for o in self._objects)


def coerce_value(
    field_type: FieldType,
    value: Any,
    field_name: str,
    render_markdown: Callable[[str], str] | None = None,
    cdn_url: str = "",
) -> Any:
    """Convert a raw TOML value to the type its field declares.

    Args:
        field_type: Declared type of the field.
        value: Raw value from the data file.
        field_name: Used in error messages.
        render_markdown: Renders markdown source to HTML.
        cdn_url: Base URL for uploaded files.

    Returns:
        The coerced value.

    Raises:
        ParseError: If the value cannot represent the field type.
    """
    kind = field_type.kind

    def mismatch() -> ParseError:
        return ParseError(
            f"type mismatch for field {field_name!r} - expected type {field_type}, got value {value!r}"
        )

    if kind is FieldKind.ALIAS:
        if field_type.alias_of is None:
            raise mismatch()
        return coerce_value(field_type.alias_of, value, field_name, render_markdown, cdn_url)
    if kind is FieldKind.STRING:
        if isinstance(value, (dict, list)):
            raise mismatch()
        return str(value)
    if kind is FieldKind.NUMBER:
        if isinstance(value, bool):
            raise mismatch()
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                number = float(value)
            except ValueError:
                raise mismatch() from None
            return int(number) if number.is_integer() and "." not in value else number
        raise mismatch()
    if kind is FieldKind.DATE:
        if isinstance(value, (datetime, date)):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.strip())
            except ValueError:
                raise ParseError(f"invalid date {value!r} for field {field_name!r}") from None
        raise mismatch()
    if kind is FieldKind.ENUM:
        if value not in field_type.options:
            raise ParseError(
                f"enum mismatch for field {field_name!r} - expected value {value!r} to be in {field_type}"
            )
        return value
    if kind is FieldKind.MARKDOWN:
        if not isinstance(value, str):
            raise mismatch()
        renderer = render_markdown or default_markdown_renderer.render
        return Markup(renderer(value))
    if kind is FieldKind.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise mismatch()
    if kind in (FieldKind.IMAGE, FieldKind.VIDEO, FieldKind.UPLOAD, FieldKind.AUDIO):
        return _file_value(kind, value, cdn_url, mismatch)
    if kind is FieldKind.META:
        if not isinstance(value, dict):
            raise mismatch()
        return value
    raise SchemaError(f"unhandled field kind {kind}")


def _file_value(
    kind: FieldKind, value: Any, cdn_url: str, mismatch: Callable[[], ParseError]
) -> FileValue:
    if isinstance(value, str):
        value = {"filename": value}
    if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
        raise mismatch()
    sha = value.get("sha", "")
    filename = value.get("filename", "")
    if sha and cdn_url:
        url = f"{cdn_url.rstrip('/')}/{sha}"
    else:
        url = filename
    mime_default = "application/octet-stream" if kind is FieldKind.UPLOAD else f"{kind.value}/*"
    return FileValue(
        sha=sha,
        filename=filename,
        name=value.get("name"),
        mime=value.get("mime", mime_default),
        display_type=value.get("display_type", kind.value),
        url=url,
    )


class ContentStore:
    """Loads every object the schema declares.

    Malformed files fail alone: they are recorded in ``errors``, reported on
    stdout and left out of their collection.

    Attributes:
        config: Site configuration.
        definitions: Object type definitions by name.
        errors: Parse errors from the most recent load.
    """

    def __init__(
        self,
        config: Config,
        definitions: Mapping[str, ObjectTypeDefinition],
        markdown_renderer: MarkdownRenderer | None = None,
    ):
        self.config = config
        self.definitions = definitions
        self.markdown_renderer = markdown_renderer or default_markdown_renderer
        self.errors: list[ParseError] = []

    def load(self) -> dict[str, ObjectCollection]:
        """Load all object types.

        Raises:
            SchemaError: If a type has both a directory and a singleton file.
            DuplicateKeyError: If two objects of a type share a name.
        """
        self.errors = []
        return {name: self.load_type(d) for name, d in self.definitions.items()}

    def load_type(self, definition: ObjectTypeDefinition) -> ObjectCollection:
        """Load the objects of a single type, in render order."""
        type_dir = self.config.objects_dir / definition.name
        singleton = self.config.objects_dir / f"{definition.name}{OBJECT_SUFFIX}"
        if type_dir.is_dir():
            if singleton.is_file():
                raise SchemaError(f"cannot define both {type_dir} and {singleton}")
            paths = sorted(p for p in type_dir.iterdir() if self.is_object_file(p))
        elif singleton.is_file():
            paths = [singleton]
        else:
            paths = []
        objects: list[ContentObject] = []
        for path in paths:
            try:
                objects.append(self.load_object(definition, path))
            except ParseError as exc:
                self._report(exc, path)
        return sort_objects(objects, definition.name)

    @staticmethod
    def is_object_file(path: Path) -> bool:
        return path.is_file() and path.suffix.lower() == OBJECT_SUFFIX and not path.name.startswith(".")

    def type_for_path(self, path: Path) -> ObjectTypeDefinition | None:
        """Return the definition that owns an object file, if any."""
        try:
            rel = path.relative_to(self.config.objects_dir)
        except ValueError:
            return None
        if not rel.parts:
            return None
        name = rel.parts[0]
        if len(rel.parts) == 1:
            name = Path(name).stem
        return self.definitions.get(name)

    def load_object(self, definition: ObjectTypeDefinition, path: Path) -> ContentObject:
        """Parse and coerce one object file.

        Raises:
            ParseError: If the file is not valid TOML or a value does not
                match its field type.
        """
        table = read_toml(path)
        order = table.pop(ORDER, None)
        if order is not None and (isinstance(order, bool) or not isinstance(order, (int, float))):
            raise ParseError(f"order must be a number, got {order!r}", path)
        rewrite = self._link_rewriter(definition)
        try:
            data = self._coerce_fields(definition, table, rewrite)
        except ParseError as exc:
            raise ParseError(exc.message, path) from exc
        return ContentObject(
            name=path.stem,
            type_name=definition.name,
            data=data,
            order=order,
            source=path,
        )

    def _coerce_fields(
        self,
        definition: ObjectTypeDefinition,
        table: dict[str, Any],
        rewrite: Callable[[str], str],
    ) -> dict[str, Any]:
        data = dict(table)

        def render(source: str) -> str:
            return self.markdown_renderer.render(source, rewrite)

        for name, field_type in definition.fields.items():
            if name in table:
                data[name] = coerce_value(
                    field_type, table[name], name, render, self.config.cdn_url
                )
        for name, child in definition.children.items():
            rows = table.get(name, [])
            if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
                raise ParseError(f"not an array of tables: {name!r} ({rows!r})")
            data[name] = [self._coerce_fields(child, row, rewrite) for row in rows]
        return data

    def _link_rewriter(self, definition: ObjectTypeDefinition) -> Callable[[str], str]:
        """Rewrite markdown links relative to where this type's pages land."""
        root = self.config.pages_dir
        start_dir = root / definition.name if definition.template else root
        return lambda link: rewrite_link(link, root, start_dir)

    def _report(self, exc: ParseError, path: Path) -> None:
        self.errors.append(exc)
        print(f"Invalid file {path}: {exc.message}")
