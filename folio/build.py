"""Site building functionality for Folio.

The Builder loads the schema, objects and page templates of a site, renders
every page and writes the result into the build directory. It keeps its
tables between builds so the dev loop can re-parse only what changed.

Key classes:
- Builder: Owns the page and object tables for one build generation.
- BuildResult: What a call to write_all produced.
"""

from __future__ import annotations

import shutil
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jinja2 import TemplateSyntaxError

from .config import Config
from .content import ContentObject, ContentStore, ObjectCollection, sort_objects
from .errors import BuildError, FolioError, ParseError
from .renderers import MarkdownRenderer
from .schema import ObjectTypeDefinition, load_schema
from .tags import LayoutCache
from .templates import DEFAULT_EXTENSION, PageTemplate, TemplateEngine, strip_type_extension
from .utils import (
    TEMPLATE_SUFFIX,
    content_hash,
    is_partial,
    is_template,
    is_within,
    relative_link,
    walk_files,
)


@dataclass
class BuildResult:
    """Result of a write_all call.

    Attributes:
        build_dir: Directory the site was written to.
        written: Files whose content changed in this pass.
        errors: Pages or objects that failed without stopping the build.
    """

    build_dir: Path
    written: list[Path] = field(default_factory=list)
    errors: list[FolioError] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.written)


@dataclass
class _Generation:
    definitions: dict[str, ObjectTypeDefinition]
    engine: TemplateEngine
    store: ContentStore
    objects: dict[str, ObjectCollection]
    pages: dict[str, PageTemplate]


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if isinstance(exc, TemplateSyntaxError):
        return f"Template syntax error on line {exc.lineno}: {exc.message}"
    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if isinstance(exc, FolioError):
        return error_msg

    return f"{error_type}: {error_msg}"


class Builder:
    """Builds a site from its pages, objects and layouts.

    Schema and configuration are loaded when the builder is created. The
    page and object tables are replaced wholesale by ``full_rebuild`` and
    selectively by ``update_pages`` / ``update_objects``; the layout cache is
    only cleared by ``full_rebuild``.

    Attributes:
        config: Site configuration for this generation.
        layout_cache: Parsed layouts, shared by every render.
        variables: Global template variables.
        errors: Failures recorded since the last full load.
    """

    def __init__(
        self,
        config: Config,
        layout_cache: LayoutCache | None = None,
        markdown_renderer: MarkdownRenderer | None = None,
    ):
        """Load a site.

        Raises:
            BuildError: If the pages or objects directory is missing.
            SchemaError: If objects.toml is malformed.
            DuplicateKeyError: If two objects of a type share a name.
        """
        self.config = config
        self.layout_cache = layout_cache if layout_cache is not None else LayoutCache(config.layout_dir)
        self.markdown_renderer = markdown_renderer
        self.variables: dict[str, Any] = {}
        self.errors: list[FolioError] = []
        self._lock = threading.RLock()
        self._static_hashes: dict[Path, str] = {}
        self._generation = self._load()

    @property
    def definitions(self) -> dict[str, ObjectTypeDefinition]:
        return self._generation.definitions

    @property
    def objects(self) -> dict[str, ObjectCollection]:
        return self._generation.objects

    @property
    def page_templates(self) -> dict[str, PageTemplate]:
        return self._generation.pages

    def set_var(self, name: str, value: Any) -> None:
        self.variables[name] = value

    # Loading

    def _check_dirs(self) -> None:
        for label, path in (("Pages", self.config.pages_dir), ("Objects", self.config.objects_dir)):
            if not path.is_dir():
                raise BuildError(path, f"{label} dir {path} does not exist")

    def _load(self) -> _Generation:
        self._check_dirs()
        self.errors = []
        definitions = load_schema(self.config)
        engine = TemplateEngine(self.config, self.layout_cache)
        store = ContentStore(self.config, definitions, self.markdown_renderer)
        objects = store.load()
        self.errors.extend(store.errors)
        generation = _Generation(definitions, engine, store, objects, {})
        generation.pages = self._scan_pages(generation)
        return generation

    def _dynamic_types(self, definitions: Mapping[str, ObjectTypeDefinition]) -> dict[str, ObjectTypeDefinition]:
        return {d.template: d for d in definitions.values() if d.template}

    def _scan_pages(self, generation: _Generation) -> dict[str, PageTemplate]:
        pages: dict[str, PageTemplate] = {}
        for path in walk_files(self.config.pages_dir):
            page = self._parse_page(generation, path)
            if page is not None:
                pages[page.name] = page
        found = {strip_type_extension(name) for name in pages}
        for template in self._dynamic_types(generation.definitions):
            if template not in found:
                missing = self.config.pages_dir / f"{template}{TEMPLATE_SUFFIX}"
                self._report(ParseError(f"template file {missing} does not exist.", missing))
        return pages

    def _page_name(self, path: Path) -> str:
        return path.relative_to(self.config.pages_dir).with_suffix("").as_posix()

    def _parse_page(self, generation: _Generation, path: Path) -> PageTemplate | None:
        if not is_template(path) or is_partial(path):
            return None
        name = self._page_name(path)
        object_type = self._dynamic_types(generation.definitions).get(strip_type_extension(name))
        try:
            template = generation.engine.parse(path)
        except TemplateSyntaxError as exc:
            message = _format_error_message(exc)
            self._report(ParseError(message, path))
            return PageTemplate(name, path, None, object_type, error=message)
        return PageTemplate(name, path, template, object_type)

    def _object_page(self, type_name: str, object_name: str) -> Path:
        """Output path of the dynamic page rendered for one object."""
        for page in self.page_templates.values():
            if page.object_type is not None and page.object_type.name == type_name:
                return page.output_path(self.config.build_dir, object_name)
        return self.config.build_dir / type_name / f"{object_name}{DEFAULT_EXTENSION}"

    def _report(self, exc: FolioError) -> None:
        self.errors.append(exc)
        print(f"Warning: {exc}")

    # Rendering

    def _objects_for(self, render_dir: Path) -> dict[str, ObjectCollection]:
        """The object graph as seen from a page written into render_dir."""
        graph: dict[str, ObjectCollection] = {}
        for name, collection in self.objects.items():
            definition = self.definitions.get(name)
            if definition is None or not definition.template:
                graph[name] = collection
                continue
            graph[name] = collection.map(
                lambda o, n=name: o.with_path(
                    relative_link(self._object_page(n, o.name), render_dir)
                )
            )
        return graph

    def render(self, page: str | PageTemplate, obj: ContentObject | None = None) -> str:
        """Render a page.

        Args:
            page: Page name (path under pages/ without suffix) or template.
            obj: For dynamic pages, the object to render the page for.

        Returns:
            Rendered HTML.

        Raises:
            KeyError: If the page name is unknown.
            BuildError: If the page failed to parse or to render.
        """
        if isinstance(page, str):
            page = self.page_templates[page]
        if page.template is None:
            raise BuildError(page.source, page.error or "template failed to parse")
        object_name = obj.name if obj is not None else None
        output_path = page.output_path(self.config.build_dir, object_name)
        render_dir = output_path.parent
        context: dict[str, Any] = {
            **self.variables,
            "objects": self._objects_for(render_dir),
            "template_path": str(page.template_path(self.config.pages_dir, object_name)),
        }
        if obj is not None:
            context[obj.type_name] = obj.with_path(relative_link(output_path, render_dir))
        try:
            rendered, scope = self._generation.engine.render(page.template, context)
        except Exception as exc:
            raise BuildError(page.source, _format_error_message(exc), exc) from exc
        for error in scope.errors:
            print(f"Warning: {page.name}: {error}")
        return rendered

    def _render_or_error(self, page: PageTemplate, obj: ContentObject | None, result: BuildResult) -> str:
        try:
            return self.render(page, obj)
        except BuildError as exc:
            label = f"{page.name} ({obj.name})" if obj is not None else page.name
            print(f"Failed rendering {label}: {exc.message}")
            result.errors.append(exc)
            return exc.message

    # Writing

    def write_all(self) -> BuildResult:
        """Render every page and copy assets into the build directory.

        Static pages are written to ``<page>.html``; dynamic pages once per
        object to ``<type>/<name>.html``. A typed template such as
        ``feed.rss.liquid`` keeps its own extension (``feed.rss``). Asset directories are copied
        verbatim except in dev mode, where they are pushed incrementally.

        Returns:
            BuildResult listing the files that changed.
        """
        with self._lock:
            build_dir = self.config.build_dir
            build_dir.mkdir(parents=True, exist_ok=True)
            result = BuildResult(build_dir=build_dir, errors=list(self.errors))
            for page in self.page_templates.values():
                if page.object_type is not None:
                    for obj in self.objects.get(page.object_type.name, ()):
                        rendered = self._render_or_error(page, obj, result)
                        self._write(page.output_path(build_dir, obj.name), rendered, result)
                else:
                    rendered = self._render_or_error(page, None, result)
                    self._write(page.output_path(build_dir), rendered, result)
            if not self.config.dev_mode:
                for asset_dir in self.config.assets_dirs:
                    self._copy_tree(asset_dir, build_dir / asset_dir.name, result)
            self.sync_static(result)
            return result

    def _write(self, path: Path, content: str, result: BuildResult) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        encoded = content.encode("utf-8")
        if path.is_file() and path.read_bytes() == encoded:
            return
        path.write_bytes(encoded)
        result.written.append(path)

    def _copy_file(self, source: Path, dest: Path, result: BuildResult) -> None:
        data = source.read_bytes()
        if dest.is_file() and dest.read_bytes() == data:
            return
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        result.written.append(dest)

    def _copy_tree(self, source: Path, dest: Path, result: BuildResult) -> None:
        for path in walk_files(source):
            self._copy_file(path, dest / path.relative_to(source), result)

    def sync_static(self, result: BuildResult | None = None) -> BuildResult:
        """Copy the static directory into the build directory.

        Unchanged files (by content hash) are skipped and files that left the
        static directory since the last sync are removed from the output.
        """
        build_dir = self.config.build_dir
        result = result or BuildResult(build_dir=build_dir)
        static_dir = self.config.static_dir
        current: dict[Path, str] = {}
        for path in walk_files(static_dir):
            rel = path.relative_to(static_dir)
            digest = content_hash(path.read_bytes())
            current[rel] = digest
            dest = build_dir / rel
            if self._static_hashes.get(rel) == digest and dest.is_file():
                continue
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, dest)
            result.written.append(dest)
        for rel in set(self._static_hashes) - set(current):
            stale = build_dir / rel
            if stale.is_file():
                stale.unlink()
                result.written.append(stale)
        self._static_hashes = current
        return result

    # Partial updates

    def update_pages(
        self,
        changed_pages: Iterable[Path] = (),
        changed_objects: Iterable[Path] = (),
    ) -> None:
        """Re-parse only the pages (and objects) that changed.

        Removed page files leave the table and their output is deleted.
        """
        with self._lock:
            generation = self._generation
            pages = dict(generation.pages)
            for path in changed_pages:
                if not is_within(path, self.config.pages_dir) or not is_template(path):
                    continue
                name = self._page_name(path)
                if path.is_file():
                    page = self._parse_page(generation, path)
                    if page is not None:
                        pages[name] = page
                elif name in pages:
                    removed = pages.pop(name)
                    if removed.object_type is None:
                        removed.output_path(self.config.build_dir).unlink(missing_ok=True)
                        continue
                    for obj in generation.objects.get(removed.object_type.name, ()):
                        removed.output_path(self.config.build_dir, obj.name).unlink(missing_ok=True)
            self._generation = _Generation(
                generation.definitions, generation.engine, generation.store, generation.objects, pages
            )
            changed_objects = list(changed_objects)
            if changed_objects:
                self.update_objects(changed_objects)

    def update_objects(self, changed: Iterable[Path]) -> None:
        """Reload only the object files that changed.

        Raises:
            DuplicateKeyError: If a change makes two objects share a name.
        """
        with self._lock:
            generation = self._generation
            store = generation.store
            touched: dict[str, dict[str, ContentObject]] = {}
            for path in changed:
                definition = store.type_for_path(path)
                if definition is None:
                    continue
                members = touched.setdefault(
                    definition.name,
                    {o.name: o for o in generation.objects.get(definition.name, ())},
                )
                name = path.stem
                previous = members.pop(name, None)
                if store.is_object_file(path):
                    try:
                        members[name] = store.load_object(definition, path)
                    except ParseError as exc:
                        self._report(ParseError(exc.message, path))
                elif previous is not None and definition.template:
                    self._object_page(definition.name, name).unlink(missing_ok=True)
            objects = dict(generation.objects)
            for type_name, members in touched.items():
                objects[type_name] = sort_objects(members.values(), type_name)
            self._generation = _Generation(
                generation.definitions, generation.engine, store, objects, generation.pages
            )

    def update_assets(self, changes: Iterable[Path]) -> BuildResult:
        """Copy changed asset files into the build directory, or remove them."""
        with self._lock:
            build_dir = self.config.build_dir
            result = BuildResult(build_dir=build_dir)
            for path in changes:
                if is_within(path, self.config.static_dir):
                    continue
                for asset_dir in self.config.assets_dirs:
                    if not is_within(path, asset_dir):
                        continue
                    dest = build_dir / asset_dir.name / path.relative_to(asset_dir)
                    if path.is_file():
                        self._copy_file(path, dest, result)
                    elif dest.is_file():
                        dest.unlink()
                        result.written.append(dest)
                    break
            self.sync_static(result)
            return result

    def full_rebuild(self, config: Config | None = None) -> None:
        """Reload everything, clearing the layout cache first.

        Needed after layout, schema or manifest changes, which can affect
        every page.

        Args:
            config: Replacement configuration (after a manifest change).
        """
        with self._lock:
            if config is not None:
                self.config = config
                self.layout_cache.layout_dir = config.layout_dir
            self.layout_cache.clear()
            self._generation = self._load()
