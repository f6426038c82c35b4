"""Watch-and-rebuild loop for ``folio run``.

Filesystem events from watchdog are queued, coalesced for a short debounce
window and handed to the builder as one batch. Each batch runs exactly one
classify -> rebuild -> notify cycle; a failed rebuild is reported and the
loop waits for the next change.

Key classes:
- DevLoop: Couples the watcher, the builder and the dev server.
- _ChangeHandler: watchdog handler that feeds events into a DevLoop.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .build import Builder, BuildResult
from .changes import ChangeKind, ChangeSet, ChangeTarget, classify_batch
from .config import Config, load_config
from .server import DevServer
from .utils import is_within, walk_files

DEBOUNCE_SECONDS = 0.2

_EVENT_KINDS = {
    "created": ChangeKind.ADDED,
    "modified": ChangeKind.MODIFIED,
    "deleted": ChangeKind.REMOVED,
}


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, loop: DevLoop):
        super().__init__()
        self.loop = loop

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory:
            return
        if event.event_type == "moved":
            self.loop.queue(Path(event.src_path), ChangeKind.REMOVED)
            self.loop.queue(Path(event.dest_path), ChangeKind.ADDED)
            return
        kind = _EVENT_KINDS.get(event.event_type)
        if kind is not None:
            self.loop.queue(Path(event.src_path), kind)


class DevLoop:
    """Development loop: build once, then rebuild on every change.

    Attributes:
        root: Site root directory.
        config: Current configuration (replaced when the manifest changes).
        builder: Builder for the site.
        server: Dev server, or None when running without one.
        debounce: Seconds to wait for more events before rebuilding.
    """

    def __init__(
        self,
        root: Path,
        port: int | None = None,
        serve: bool = True,
        debounce: float = DEBOUNCE_SECONDS,
    ):
        self.root = root
        self._overrides = {"helper_port": port}
        self.config = load_config(root, overrides=self._overrides, dev_mode=True)
        self.builder = Builder(self.config)
        self.server = DevServer(self.config.build_dir, self.config.helper_port) if serve else None
        self.debounce = debounce
        self._pending: list[tuple[Path, ChangeKind]] = []
        self._pending_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stopping = threading.Event()
        self._rebuild_lock = threading.Lock()
        self._observer: Observer | None = None
        self._worker: threading.Thread | None = None

    def queue(self, path: Path, kind: ChangeKind) -> None:
        """Queue a raw change; it is processed with the next batch."""
        if is_within(path, self.config.build_dir):
            return
        with self._pending_lock:
            self._pending.append((path, kind))
        self._wakeup.set()

    def drain(self) -> ChangeSet:
        """Take every queued change and classify it as one batch."""
        with self._pending_lock:
            pending, self._pending = self._pending, []
            self._wakeup.clear()
        return classify_batch(pending, self.config)

    def start(self) -> None:
        """Build the site, then start the server, the watcher and the worker."""
        with self._rebuild_lock:
            result = self.builder.write_all()
            # Dev builds skip asset directories in write_all; publish them once here.
            assets = self.builder.update_assets(self._asset_files())
            result.written.extend(p for p in assets.written if p not in result.written)
        print(f"Built {len(result.written)} files into {result.build_dir}")
        if self.server is not None:
            self.server.start()
        self._stopping.clear()
        self._start_watcher()
        self._worker = threading.Thread(target=self._run, name="folio-rebuild", daemon=True)
        self._worker.start()

    def run_forever(self) -> None:  # pragma: no cover - integration path
        self.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        """Stop watching and serving; an in-flight rebuild finishes first."""
        self._stopping.set()
        self._wakeup.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._worker is not None:
            self._worker.join()
            self._worker = None
        with self._rebuild_lock:
            if self.server is not None:
                self.server.stop()

    def _asset_files(self) -> list[Path]:
        return [path for asset_dir in self.config.assets_dirs for path in walk_files(asset_dir)]

    def _start_watcher(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        observer.schedule(handler, str(self.config.root), recursive=True)
        for path in self.config.watched_paths():
            if path.is_dir() and not is_within(path, self.config.root):
                observer.schedule(handler, str(path), recursive=True)
        observer.start()
        self._observer = observer

    def _run(self) -> None:
        while not self._stopping.is_set():
            if not self._wakeup.wait(timeout=0.5):
                continue
            if self._stopping.is_set():
                return
            # Let a burst of saves settle into a single batch.
            time.sleep(self.debounce)
            changes = self.drain()
            if changes:
                self.process(changes)

    def process(self, changes: ChangeSet) -> BuildResult | None:
        """Run one classify -> rebuild -> notify cycle.

        Returns:
            The build result, or None if the rebuild failed.
        """
        with self._rebuild_lock:
            print("Change detected; rebuilding...")
            started = time.perf_counter()
            try:
                result = self._rebuild(changes)
            except Exception as exc:
                print(f"Build failed: {exc}")
                return None
            print(f"Rebuilt in {time.perf_counter() - started:.2f}s")
            if result.changed and self.server is not None:
                self.server.broadcast_refresh()
            return result

    def _rebuild(self, changes: ChangeSet) -> BuildResult:
        builder = self.builder
        if changes.full_rebuild:
            config: Config | None = None
            if changes.config_changed:
                config = load_config(self.root, overrides=self._overrides, dev_mode=True)
                self.config = config
            builder.full_rebuild(config)
        else:
            pages = changes.paths(ChangeTarget.PAGES)
            objects = changes.paths(ChangeTarget.OBJECTS)
            if pages or objects:
                builder.update_pages(pages, objects)
        assets = list(changes.paths(ChangeTarget.ASSETS))
        if changes.config_changed:
            assets.extend(self._asset_files())
        asset_result = builder.update_assets(assets)
        result = builder.write_all()
        result.written.extend(p for p in asset_result.written if p not in result.written)
        return result
