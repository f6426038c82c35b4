"""Custom template tags for Folio.

Two Jinja2 extensions give page templates the tags they share with the
editor:

``{% layout 'name'[, key: expr]* %}``
    Wraps everything after the tag, up to the end of the template, in the
    layout named ``name``. The rendered body is available to the layout as
    ``page_content`` and each attribute as a variable.

``{% asset 'path'[, serve: true] %}``
    Rewrites a path under the asset root so it is relative to the page being
    rendered (the ``template_path`` render variable). With ``serve: true`` in
    dev mode the dev server URL is emitted instead.

Tag errors do not abort the page: the error message is written in place of
the tag output and recorded on the render scope.

Key classes:
- LayoutCache: Parsed layouts for the current build generation.
- RenderScope: Render metadata saved and restored around nested renders.
- LayoutExtension, AssetExtension: The tags themselves.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from jinja2 import Environment, Template, TemplateSyntaxError, nodes, pass_context
from jinja2.ext import Extension
from jinja2.lexer import Token, TokenStream
from jinja2.parser import Parser
from jinja2.runtime import Context, Undefined

from .errors import AssetError, FolioError, LayoutError
from .utils import relative_link

SCOPE_KEY = "_folio_scope"
LAYOUT_DIR_NAME = "layout"
_END_LAYOUT = "endlayout"


class LayoutCache:
    """Parsed layouts, keyed by name.

    A layout is located on first use and kept until ``clear()``, which the
    builder calls only on a full rebuild.

    Attributes:
        layout_dir: Directory searched for layouts (``./layout`` when unset).
    """

    def __init__(self, layout_dir: Path | None = None):
        self.layout_dir = layout_dir
        self._templates: dict[str, Template] = {}
        self._lock = threading.RLock()

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def clear(self) -> None:
        with self._lock:
            self._templates.clear()

    def get(self, name: str, environment: Environment) -> Template:
        """Return the parsed layout called name.

        Raises:
            LayoutError: If no layout or more than one layout has that name,
                or the layout does not parse.
        """
        with self._lock:
            cached = self._templates.get(name)
            if cached is not None:
                return cached
            path = self.locate(name)
            try:
                template = environment.from_string(path.read_text(encoding="utf-8"))
            except TemplateSyntaxError as exc:
                raise LayoutError(
                    f"Layout {name} has a syntax error on line {exc.lineno}: {exc.message}"
                ) from exc
            self._templates[name] = template
            return template

    def locate(self, name: str) -> Path:
        """Find the single file in the layout directory whose stem is name.

        Raises:
            LayoutError: If the directory is missing, or zero or several
                files match.
        """
        layout_dir = self.layout_dir or Path.cwd() / LAYOUT_DIR_NAME
        if not layout_dir.is_dir():
            raise LayoutError(f"Layout dir {layout_dir} not found")
        found: Path | None = None
        for entry in sorted(layout_dir.iterdir()):
            if not entry.is_file() or entry.stem != name:
                continue
            if found is not None:
                raise LayoutError(f"More than one layout named {name} found.")
            found = entry
        if found is None:
            raise LayoutError(f"No layouts named {name} found.")
        return found


class RenderScope:
    """Render metadata for one page render.

    Nested renders (a layout inside a page, a layout inside a layout) push a
    frame; the previous template name and partial flag come back when the
    frame is left, whether rendering succeeded or raised.

    Attributes:
        template_name: Name of the template currently being rendered.
        partial: Whether the current template is rendered inside another.
        errors: Tag errors rendered inline during this render.
    """

    def __init__(self, template_name: str | None = None):
        self.template_name = template_name
        self.partial = False
        self.errors: list[FolioError] = []
        self._frames: list[dict[str, Any]] = [{}]

    @property
    def depth(self) -> int:
        return len(self._frames) - 1

    @contextmanager
    def nested(self, template_name: str, /, **variables: Any) -> Iterator[RenderScope]:
        saved = (self.template_name, self.partial)
        self.template_name = template_name
        self.partial = True
        self._frames.append(dict(variables))
        try:
            yield self
        finally:
            self._frames.pop()
            self.template_name, self.partial = saved

    def assign(self, key: str, value: Any) -> None:
        self._frames[-1][key] = value

    def variables(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for frame in self._frames:
            merged.update(frame)
        return merged


def scope_for(context: Context) -> RenderScope:
    scope = context.get(SCOPE_KEY)
    if isinstance(scope, RenderScope):
        return scope
    return RenderScope(context.name)


def _inline_error(scope: RenderScope, exc: FolioError) -> str:
    scope.errors.append(exc)
    return str(exc)


def _parse_attributes(parser: Parser, tag: str, lineno: int) -> list[tuple[str, nodes.Expr]]:
    """Parse ``, key: expr`` pairs up to the end of the tag."""
    attributes: list[tuple[str, nodes.Expr]] = []
    while parser.stream.skip_if("comma"):
        key = parser.stream.expect("name")
        if not (parser.stream.skip_if("colon") or parser.stream.skip_if("assign")):
            parser.fail(f"Invalid {tag} attribute {key.value}", key.lineno)
        attributes.append((key.value, parser.parse_expression()))
    if not parser.stream.current.test("block_end"):
        parser.fail(f"Bad {tag} name argument", lineno)
    return attributes


class LayoutExtension(Extension):
    """The ``{% layout %}`` tag.

    The tag has no closing marker: the stream filter appends a hidden
    ``{% endlayout %}`` at the end of the template for every layout tag, so
    the body runs to the end of the enclosing template.
    """

    tags = {"layout"}

    def __init__(self, environment: Environment):
        super().__init__(environment)
        environment.extend(layout_cache=LayoutCache())

    def filter_stream(self, stream: TokenStream) -> Iterator[Token]:
        opened = 0
        lineno = 1
        after_block_begin = False
        for token in stream:
            if after_block_begin and token.test("name:layout"):
                opened += 1
            after_block_begin = token.type == "block_begin"
            lineno = token.lineno
            yield token
        for _ in range(opened):
            yield Token(lineno, "block_begin", "{%")
            yield Token(lineno, "name", _END_LAYOUT)
            yield Token(lineno, "block_end", "%}")

    def parse(self, parser: Parser) -> nodes.Node:
        lineno = next(parser.stream).lineno
        if parser.stream.current.test("block_end"):
            parser.fail("Bad layout name argument", lineno)
        name = parser.parse_expression()
        attributes = _parse_attributes(parser, "layout", lineno)
        body = parser.parse_statements((f"name:{_END_LAYOUT}",), drop_needle=True)
        keys = [key for key, _ in attributes]
        call = self.call_method(
            "_render_layout",
            [
                name,
                nodes.Dict([nodes.Pair(nodes.Const(k), nodes.Name(k, "load")) for k in keys]),
            ],
            lineno=lineno,
        )
        block = nodes.CallBlock(call, [], [], body).set_lineno(lineno)
        if not attributes:
            return block
        # Attributes are evaluated once and are visible to the body as well
        # as to the layout.
        return nodes.With(
            [nodes.Name(k, "store") for k in keys],
            [value for _, value in attributes],
            [block],
        ).set_lineno(lineno)

    @pass_context
    def _render_layout(
        self, context: Context, name: Any, attributes: dict[str, Any], caller
    ) -> str:
        scope = scope_for(context)
        if isinstance(name, Undefined) or not name:
            return _inline_error(scope, LayoutError("Bad layout name argument"))
        name = str(name)
        try:
            layout = self.environment.layout_cache.get(name, self.environment)
        except LayoutError as exc:
            return _inline_error(scope, exc)
        with scope.nested(name, **attributes):
            scope.assign("page_content", caller())
            variables = {**context.get_all(), **scope.variables(), SCOPE_KEY: scope}
            return layout.render(variables)


class AssetExtension(Extension):
    """The ``{% asset %}`` tag."""

    tags = {"asset"}

    def __init__(self, environment: Environment):
        super().__init__(environment)
        environment.extend(asset_root=None, helper_port=2701, dev_mode=False)

    def parse(self, parser: Parser) -> nodes.Node:
        lineno = next(parser.stream).lineno
        if parser.stream.current.test("block_end"):
            parser.fail("Invalid asset syntax", lineno)
        path = parser.parse_expression()
        attributes = _parse_attributes(parser, "asset", lineno)
        call = self.call_method(
            "_render_asset",
            [path, nodes.Dict([nodes.Pair(nodes.Const(k), v) for k, v in attributes])],
            lineno=lineno,
        )
        return nodes.Output([call]).set_lineno(lineno)

    @pass_context
    def _render_asset(self, context: Context, path: Any, attributes: dict[str, Any]) -> str:
        try:
            return self.resolve(context.get("template_path"), str(path), attributes.get("serve") is True)
        except AssetError as exc:
            return _inline_error(scope_for(context), exc)

    def resolve(self, template_path: Any, path: str, serve: bool = False) -> str:
        """Rewrite path (relative to the asset root) for a page at template_path.

        Raises:
            AssetError: If template_path or the asset root is missing.
        """
        if not template_path or isinstance(template_path, Undefined):
            raise AssetError("template_path must be provided to parse when using assets")
        root = self.environment.asset_root
        if root is None:
            raise AssetError("asset root must be set to render assets")
        asset = Path(root) / path
        if serve and self.environment.dev_mode:
            return f"http://localhost:{self.environment.helper_port}/{relative_link(asset, root)}"
        return relative_link(asset, Path(str(template_path)).parent)
