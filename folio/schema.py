"""Object schema for Folio.

objects.toml declares one table per object type. Each key of a type table is
either a field (its value names the field type), ``template`` (the page that
renders one output file per object), an array of strings (an enum field) or a
sub-table (a nested child definition)::

    [post]
    title = "string"
    body = "markdown"
    category = ["news", "release"]
    template = "post"

    [post.links]
    url = "string"

Key classes:
- FieldKind: The closed set of field kinds.
- FieldType: A field kind plus the data some kinds carry (enum options, alias).
- ObjectTypeDefinition: Name, ordered fields, template binding and children.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .config import Config, read_toml
from .errors import ParseError, SchemaError

TEMPLATE = "template"
ORDER = "order"
RESERVED_FIELDS = frozenset(
    {TEMPLATE, ORDER, "objects", "object_name", "page", "page_name"}
)


class FieldKind(Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    ENUM = "enum"
    MARKDOWN = "markdown"
    BOOLEAN = "boolean"
    IMAGE = "image"
    VIDEO = "video"
    UPLOAD = "upload"
    AUDIO = "audio"
    META = "meta"
    ALIAS = "alias"


FILE_KINDS = frozenset({FieldKind.IMAGE, FieldKind.VIDEO, FieldKind.UPLOAD, FieldKind.AUDIO})

# Kinds that can be named directly in objects.toml.
_NAMED_KINDS = {
    kind.value: kind for kind in FieldKind if kind not in (FieldKind.ENUM, FieldKind.ALIAS)
}


@dataclass(frozen=True)
class FieldType:
    """A field's type.

    Attributes:
        kind: Which variant this is.
        options: Allowed values for ENUM fields.
        alias_of: Underlying type for ALIAS fields.
        alias_name: The alternate name an ALIAS field was declared with.
    """

    kind: FieldKind
    options: tuple[str, ...] = ()
    alias_of: FieldType | None = None
    alias_name: str | None = None

    @classmethod
    def from_name(cls, name: str, editor_types: dict[str, str] | None = None) -> FieldType:
        """Resolve a type name, following editor type aliases.

        Raises:
            SchemaError: If the name is not a known type or alias.
        """
        kind = _NAMED_KINDS.get(name)
        if kind is not None:
            return cls(kind)
        editor_types = editor_types or {}
        if name in editor_types:
            underlying = editor_types[name]
            if underlying == name:
                raise SchemaError(f"type alias {name} refers to itself")
            remaining = {k: v for k, v in editor_types.items() if k != name}
            return cls(
                FieldKind.ALIAS,
                alias_of=cls.from_name(underlying, remaining),
                alias_name=name,
            )
        raise SchemaError(f"unrecognized type {name}")

    @classmethod
    def enum(cls, options: list[Any]) -> FieldType:
        if not all(isinstance(o, str) for o in options):
            raise SchemaError(f"invalid enum {options!r} - only string enums supported.")
        return cls(FieldKind.ENUM, options=tuple(options))

    @property
    def resolved(self) -> FieldType:
        """The concrete type behind any chain of aliases."""
        current = self
        while current.kind is FieldKind.ALIAS and current.alias_of is not None:
            current = current.alias_of
        return current

    @property
    def is_file(self) -> bool:
        return self.resolved.kind in FILE_KINDS

    def __str__(self) -> str:
        if self.kind is FieldKind.ENUM:
            return f"[{','.join(self.options)}]"
        if self.kind is FieldKind.ALIAS:
            return self.alias_name or str(self.alias_of)
        return self.kind.value


@dataclass
class ObjectTypeDefinition:
    """Schema for one object type.

    Attributes:
        name: Type name (also the objects/<name>/ directory).
        fields: Field name -> FieldType, in declaration order.
        template: Page template rendered once per object, if any.
        children: Nested child definitions, keyed by field name.
    """

    name: str
    fields: dict[str, FieldType] = field(default_factory=dict)
    template: str | None = None
    children: dict[str, ObjectTypeDefinition] = field(default_factory=dict)

    @classmethod
    def from_table(
        cls,
        name: str,
        table: dict[str, Any],
        editor_types: dict[str, str] | None = None,
    ) -> ObjectTypeDefinition:
        """Build a definition from its objects.toml table.

        Raises:
            SchemaError: On reserved names, unknown types or unsupported values.
        """
        if name in RESERVED_FIELDS:
            raise SchemaError(f"cannot define an object with reserved name {name}")
        definition = cls(name=name)
        for key, value in table.items():
            if key == TEMPLATE and isinstance(value, str):
                definition.template = value
                continue
            if key in RESERVED_FIELDS:
                raise SchemaError(f"{key} is a reserved field ({name})")
            if isinstance(value, dict):
                definition.children[key] = cls.from_table(key, value, editor_types)
            elif isinstance(value, list):
                definition.fields[key] = FieldType.enum(value)
            elif isinstance(value, str):
                definition.fields[key] = FieldType.from_name(value, editor_types)
            else:
                raise SchemaError(f"invalid definition for {name}.{key}: {value!r}")
        return definition


def parse_schema(
    table: dict[str, Any], editor_types: dict[str, str] | None = None
) -> dict[str, ObjectTypeDefinition]:
    """Parse every top-level table of objects.toml into definitions."""
    definitions: dict[str, ObjectTypeDefinition] = {}
    for name, value in table.items():
        if not isinstance(value, dict):
            raise SchemaError(f"object type {name} must be a table")
        definitions[name] = ObjectTypeDefinition.from_table(name, value, editor_types)
    return definitions


def load_schema(config: Config) -> dict[str, ObjectTypeDefinition]:
    """Load objects.toml for a site.

    A site without objects.toml simply has no object types.

    Raises:
        SchemaError: If the file cannot be parsed or declares invalid types.
    """
    path: Path = config.schema_file
    if not path.is_file():
        return {}
    try:
        table = read_toml(path)
    except ParseError as exc:
        raise SchemaError(str(exc)) from exc
    return parse_schema(table, config.editor_types)
