"""Template rendering engine for Folio.

This module uses Jinja2 to parse and render ``.liquid`` page templates.
It configures the environment with the layout and asset tags and resolves
``{% include %}`` names to underscore-prefixed partials.

Key classes:
- PartialLoader: File loader that finds ``_name.liquid`` partials by name.
- PageTemplate: A parsed page bound to its output location.
- TemplateEngine: Owns the Jinja2 environment for one build.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from jinja2 import Environment, FileSystemLoader, Template, TemplateNotFound

from .config import Config
from .schema import ObjectTypeDefinition
from .tags import SCOPE_KEY, AssetExtension, LayoutCache, LayoutExtension, RenderScope
from .utils import TEMPLATE_SUFFIX


DEFAULT_EXTENSION = ".html"


def output_extension(name: str) -> str:
    """Output extension for a page name (``feed.rss`` -> ``.rss``)."""
    return PurePosixPath(name).suffix or DEFAULT_EXTENSION


def strip_type_extension(name: str) -> str:
    """Page name without its output type (``blog/feed.rss`` -> ``blog/feed``)."""
    path = PurePosixPath(name)
    return path.with_suffix("").as_posix() if path.suffix else name


class PartialLoader(FileSystemLoader):
    """Template loader that understands partial names.

    ``{% include 'nav' %}`` tries ``nav``, then ``_nav.liquid``, then
    ``nav.liquid`` in each search directory.
    """

    def get_source(self, environment: Environment, template: str):
        for candidate in self._candidates(template):
            try:
                return super().get_source(environment, candidate)
            except TemplateNotFound:
                continue
        raise TemplateNotFound(template)

    @staticmethod
    def _candidates(name: str) -> Iterator[str]:
        yield name
        path = PurePosixPath(name)
        stem = path.name if path.suffix == TEMPLATE_SUFFIX else f"{path.name}{TEMPLATE_SUFFIX}"
        if not path.name.startswith("_"):
            yield str(path.with_name(f"_{stem}"))
        yield str(path.with_name(stem))


@dataclass
class PageTemplate:
    """A parsed page template.

    Attributes:
        name: Path of the template relative to the pages directory, without
            the suffix (``index``, ``blog/archive``).
        source: Template file.
        template: Parsed template, or None if it failed to parse.
        object_type: Set when the page renders once per object of a type.
        error: Parse error message, if the template failed to parse.
    """

    name: str
    source: Path
    template: Template | None
    object_type: ObjectTypeDefinition | None = None
    error: str | None = None

    @property
    def is_dynamic(self) -> bool:
        return self.object_type is not None

    @property
    def extension(self) -> str:
        return output_extension(self.name)

    def output_path(self, build_dir: Path, object_name: str | None = None) -> Path:
        """Where the page (or one of its objects) is written.

        ``feed.rss.liquid`` is written to ``feed.rss``; a plain ``.liquid``
        template gets ``.html``.
        """
        if self.object_type is not None:
            if object_name is None:
                raise ValueError(f"dynamic page {self.name} needs an object name")
            return build_dir / self.object_type.name / f"{object_name}{self.extension}"
        return build_dir / f"{strip_type_extension(self.name)}{self.extension}"

    def template_path(self, pages_dir: Path, object_name: str | None = None) -> Path:
        """The render location in pages-directory coordinates.

        Assets and links are rewritten relative to the directory of this
        path, which mirrors where the output file lands.
        """
        if self.object_type is not None:
            return pages_dir / self.object_type.name / f"{object_name}{TEMPLATE_SUFFIX}"
        return pages_dir / f"{self.name}{TEMPLATE_SUFFIX}"


class TemplateEngine:
    """Template engine using Jinja2.

    Attributes:
        config: Site configuration.
        layout_cache: Layouts shared across renders of a build generation.
        env: Jinja2 environment.
    """

    def __init__(
        self,
        config: Config,
        layout_cache: LayoutCache | None = None,
        globals: dict[str, Any] | None = None,
    ):
        """Initialize the template engine.

        Args:
            config: Site configuration.
            layout_cache: Cache the layout tag reads from.
            globals: Variables available to every template.
        """
        self.config = config
        self.layout_cache = layout_cache if layout_cache is not None else LayoutCache(config.layout_dir)
        self.env = Environment(
            loader=PartialLoader([config.pages_dir, config.root]),
            extensions=[LayoutExtension, AssetExtension],
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.env.layout_cache = self.layout_cache
        self.env.asset_root = config.pages_dir
        self.env.helper_port = config.helper_port
        self.env.dev_mode = config.dev_mode
        self.env.globals.update(globals or {})

    def parse(self, path: Path) -> Template:
        """Parse a template file.

        Raises:
            jinja2.TemplateSyntaxError: If the template does not parse.
        """
        source = path.read_text(encoding="utf-8")
        code = self.env.compile(source, name=path.name, filename=str(path))
        return self.env.template_class.from_code(
            self.env, code, self.env.make_globals(None), None
        )

    def render(self, template: Template, context: dict[str, Any]) -> tuple[str, RenderScope]:
        """Render a template with a fresh render scope.

        Returns:
            The rendered string and the scope, which holds any tag errors.
        """
        scope = RenderScope(context.get("template_path") and str(context["template_path"]))
        rendered = template.render({**context, SCOPE_KEY: scope})
        return rendered, scope

    def render_string(self, source: str, context: dict[str, Any]) -> str:
        """Render a template string.

        Args:
            source: Template source to render.
            context: Variables to make available in the template.

        Returns:
            Rendered string.
        """
        rendered, _ = self.render(self.env.from_string(source), context)
        return rendered
