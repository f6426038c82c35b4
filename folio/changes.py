"""Change classification for the dev loop.

A changed path is mapped to the part of the site it affects, which decides
whether the builder can update incrementally or has to reload everything:

- page changed -> re-parse that page
- object changed -> reload that object
- asset or static file changed -> copy or remove that file
- layout, schema or manifest changed -> full rebuild

Key classes:
- ChangeEvent: A changed path tagged with its kind and target.
- ChangeSet: One debounced batch of events, grouped by target.

Key functions:
- classify_change: Map a path to its ChangeTarget.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import MANIFEST_FILE_NAME, SCHEMA_FILE_NAME, Config
from .utils import is_within, normalize


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class ChangeTarget(str, Enum):
    PAGES = "pages"
    OBJECTS = "objects"
    ASSETS = "assets"
    LAYOUT = "layout"
    CONFIG = "config"
    NONE = "none"


FULL_REBUILD_TARGETS = frozenset({ChangeTarget.LAYOUT, ChangeTarget.CONFIG})


@dataclass(frozen=True)
class ChangeEvent:
    """A file change seen by the watcher.

    Attributes:
        path: Absolute path of the changed file.
        kind: Whether the file was added, modified or removed.
        target: What part of the site the change affects.
    """

    path: Path
    kind: ChangeKind
    target: ChangeTarget = ChangeTarget.NONE


def classify_change(path: Path | str, config: Config) -> ChangeTarget:
    """Determine which part of the site a changed path belongs to.

    Directories are checked in priority order (pages, objects, each asset
    directory, static, layout) and the first that contains the path wins.
    Otherwise a file named like the manifest or schema is a config change.

    Returns:
        The target, ChangeTarget.NONE for paths the build does not read.
    """
    path = normalize(path)
    if is_within(path, config.pages_dir):
        return ChangeTarget.PAGES
    if is_within(path, config.objects_dir):
        return ChangeTarget.OBJECTS
    for asset_dir in config.assets_dirs:
        if is_within(path, asset_dir):
            return ChangeTarget.ASSETS
    if is_within(path, config.static_dir):
        return ChangeTarget.ASSETS
    if is_within(path, config.layout_dir):
        return ChangeTarget.LAYOUT
    if path.name in (MANIFEST_FILE_NAME, SCHEMA_FILE_NAME):
        return ChangeTarget.CONFIG
    return ChangeTarget.NONE


def requires_full_rebuild(target: ChangeTarget) -> bool:
    return target in FULL_REBUILD_TARGETS


@dataclass
class ChangeSet:
    """A batch of classified changes.

    Attributes:
        events: Every event in the batch that the build reads.
    """

    events: list[ChangeEvent] = field(default_factory=list)

    def paths(self, target: ChangeTarget) -> list[Path]:
        return [e.path for e in self.events if e.target is target]

    @property
    def full_rebuild(self) -> bool:
        return any(requires_full_rebuild(e.target) for e in self.events)

    @property
    def config_changed(self) -> bool:
        return any(e.target is ChangeTarget.CONFIG for e in self.events)

    def __bool__(self) -> bool:
        return bool(self.events)


def classify_batch(changes: Iterable[tuple[Path | str, ChangeKind]], config: Config) -> ChangeSet:
    """Classify a batch of raw watcher changes.

    Later changes to the same path replace earlier ones; untracked paths are
    dropped.
    """
    latest: dict[Path, ChangeKind] = {}
    for path, kind in changes:
        path = normalize(path)
        latest.pop(path, None)
        latest[path] = kind
    events = []
    for path, kind in latest.items():
        target = classify_change(path, config)
        if target is not ChangeTarget.NONE:
            events.append(ChangeEvent(path, kind, target))
    return ChangeSet(events)
