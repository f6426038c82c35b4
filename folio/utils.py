"""Utility functions for Folio.

Path handling shared by the builder, the change classifier and the dev server.

Key functions:
    is_within: Containment test on normalized path components.
    relative_link: Rewrite a target path relative to a directory.
    walk_files: Iterative directory walk that survives symlink cycles.
    is_partial: Check if a template is a private partial.
    content_hash: Hash file content for change detection.
"""

from __future__ import annotations

import hashlib
import os
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

TEMPLATE_SUFFIX = ".liquid"

# Links that point outside the site and are never rewritten.
_EXTERNAL_PREFIXES = (
    "http://",
    "https://",
    "//",
    "mailto:",
    "tel:",
    "www.",
    "#",
    "data:",
    "javascript:",
)

MAX_WALK_DEPTH = 64


def normalize(path: Path | str) -> Path:
    """Return an absolute, lexically normalized path."""
    return Path(os.path.normpath(os.path.abspath(path)))


def is_within(path: Path | str, parent: Path | str) -> bool:
    """Check whether path is parent or lives below it.

    Comparison is done on path components, so ``site/pages-old/a`` is not
    inside ``site/pages``.

    Args:
        path: Path to test.
        parent: Directory that may contain it.

    Returns:
        True if every component of parent prefixes path.
    """
    child_parts = normalize(path).parts
    parent_parts = normalize(parent).parts
    return child_parts[: len(parent_parts)] == parent_parts


def relative_link(target: Path | str, start_dir: Path | str) -> str:
    """Express target as a POSIX path relative to start_dir.

    Examples:
        >>> relative_link("/site/pages/foo/bar.thing", "/site/pages")
        'foo/bar.thing'

        >>> relative_link("/site/pages/foo/bar.thing", "/site/pages/subdir")
        '../foo/bar.thing'
    """
    rel = os.path.relpath(normalize(target), normalize(start_dir))
    return PurePosixPath(*Path(rel).parts).as_posix()


def is_external_link(link: str) -> bool:
    """Check if a link points outside the site (or is a fragment)."""
    return not link or link.startswith(_EXTERNAL_PREFIXES) or "{{" in link


def rewrite_link(link: str, root: Path, start_dir: Path) -> str:
    """Rewrite a root-relative source link so it works from start_dir.

    Args:
        link: Link as written in the source (``/img/a.png`` or ``img/a.png``).
        root: Directory that root-relative links are resolved against.
        start_dir: Directory the output file is written to.

    Returns:
        The rewritten link, or the original link when it is external.
    """
    if is_external_link(link):
        return link
    path, sep, fragment = link.partition("#")
    rewritten = relative_link(root / path.lstrip("/"), start_dir)
    return f"{rewritten}{sep}{fragment}"


def is_partial(path: Path) -> bool:
    """Check if a template is a private partial (name starts with _)."""
    return path.name.startswith("_")


def is_template(path: Path) -> bool:
    """Check if a path is a page template file."""
    return path.suffix == TEMPLATE_SUFFIX


def walk_files(root: Path, max_depth: int = MAX_WALK_DEPTH) -> Iterator[Path]:
    """Yield every file under root, in sorted order.

    The walk is iterative and remembers each directory it has entered by
    device and inode, so a symlink pointing back up the tree is visited once.
    Hidden entries (starting with a dot) are skipped.

    Args:
        root: Directory to walk.
        max_depth: Directories deeper than this are not entered.

    Yields:
        Paths of regular files.
    """
    if not root.is_dir():
        return
    seen: set[tuple[int, int]] = set()
    stack: list[tuple[Path, int]] = [(root, 0)]
    while stack:
        directory, depth = stack.pop()
        try:
            stat = directory.stat()
        except OSError:
            continue
        key = (stat.st_dev, stat.st_ino)
        if key in seen:
            continue
        seen.add(key)
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            continue
        subdirs: list[Path] = []
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                if depth + 1 <= max_depth:
                    subdirs.append(entry)
            elif entry.is_file():
                yield entry
        stack.extend((d, depth + 1) for d in reversed(subdirs))


def content_hash(data: bytes) -> str:
    """Return a stable digest for file content."""
    return hashlib.sha1(data).hexdigest()
