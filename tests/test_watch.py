import threading
from pathlib import Path

from folio.changes import ChangeKind
from folio.watch import DevLoop, _ChangeHandler


class DummyEvent:
    def __init__(self, path, event_type="modified", is_directory=False, dest_path=None):
        self.src_path = str(path)
        self.event_type = event_type
        self.is_directory = is_directory
        self.dest_path = str(dest_path) if dest_path else ""


class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append(path)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self):
        pass


class FakeServer:
    def __init__(self):
        self.refreshes = 0
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def broadcast_refresh(self):
        self.refreshes += 1
        return 1


def create_project(tmp_path: Path) -> Path:
    root = tmp_path / "site"
    for folder in ("pages", "objects/post", "layout"):
        (root / folder).mkdir(parents=True)
    (root / "objects.toml").write_text('[post]\ntitle = "string"\n', encoding="utf-8")
    (root / "objects" / "post" / "a.toml").write_text('title = "A"\n', encoding="utf-8")
    (root / "layout" / "main.liquid").write_text("[{{ page_content }}]", encoding="utf-8")
    (root / "pages" / "index.liquid").write_text(
        "{% layout 'main' %}{% for p in objects.post %}{{ p.title }}{% endfor %}", encoding="utf-8"
    )
    return root


def create_loop(tmp_path: Path) -> tuple[DevLoop, FakeServer]:
    loop = DevLoop(create_project(tmp_path), serve=False, debounce=0)
    server = FakeServer()
    loop.server = server
    loop.builder.write_all()
    return loop, server


def test_change_handler_queues_events(tmp_path):
    loop, _ = create_loop(tmp_path)
    handler = _ChangeHandler(loop)
    root = loop.config.root
    handler.on_any_event(DummyEvent(root / "pages", is_directory=True))
    handler.on_any_event(DummyEvent(root / "pages" / "index.liquid"))
    handler.on_any_event(DummyEvent(root / "dist" / "index.html"))
    handler.on_any_event(
        DummyEvent(root / "pages" / "old.liquid", "moved", dest_path=root / "pages" / "new.liquid")
    )
    handler.on_any_event(DummyEvent(root / "pages" / "index.liquid", "opened"))
    changes = loop.drain()
    assert [(e.path.name, e.kind) for e in changes.events] == [
        ("index.liquid", ChangeKind.MODIFIED),
        ("old.liquid", ChangeKind.REMOVED),
        ("new.liquid", ChangeKind.ADDED),
    ]
    assert not loop.drain()


def test_burst_of_events_is_one_rebuild(tmp_path, monkeypatch):
    loop, server = create_loop(tmp_path)
    root = loop.config.root
    calls = []
    original = loop._rebuild

    def counting_rebuild(changes):
        calls.append(len(changes.events))
        return original(changes)

    monkeypatch.setattr(loop, "_rebuild", counting_rebuild)
    (root / "objects" / "post" / "b.toml").write_text('title = "B"\n', encoding="utf-8")
    for _ in range(5):
        loop.queue(root / "objects" / "post" / "b.toml", ChangeKind.ADDED)
        loop.queue(root / "pages" / "index.liquid", ChangeKind.MODIFIED)
    loop.process(loop.drain())
    assert calls == [2]
    assert server.refreshes == 1
    assert (root / "dist" / "index.html").read_text() == "[AB]"


def test_no_refresh_when_output_unchanged(tmp_path):
    loop, server = create_loop(tmp_path)
    loop.queue(loop.config.root / "pages" / "index.liquid", ChangeKind.MODIFIED)
    result = loop.process(loop.drain())
    assert result is not None
    assert not result.changed
    assert server.refreshes == 0


def test_layout_change_triggers_full_rebuild(tmp_path):
    loop, server = create_loop(tmp_path)
    layout = loop.config.root / "layout" / "main.liquid"
    layout.write_text("<{{ page_content }}>", encoding="utf-8")
    loop.queue(layout, ChangeKind.MODIFIED)
    loop.process(loop.drain())
    assert (loop.config.build_dir / "index.html").read_text() == "<A>"
    assert server.refreshes == 1


def test_manifest_change_reloads_config(tmp_path):
    loop, _ = create_loop(tmp_path)
    manifest = loop.config.root / "manifest.toml"
    manifest.write_text('build_dir = "out"\n', encoding="utf-8")
    loop.queue(manifest, ChangeKind.ADDED)
    loop.process(loop.drain())
    assert loop.config.build_dir.name == "out"
    assert (loop.config.root / "out" / "index.html").exists()


def test_failed_rebuild_keeps_loop_alive(tmp_path, capsys):
    loop, server = create_loop(tmp_path)
    root = loop.config.root
    schema = root / "objects.toml"
    schema.write_text("[post\n", encoding="utf-8")
    loop.queue(schema, ChangeKind.MODIFIED)
    assert loop.process(loop.drain()) is None
    assert "Build failed" in capsys.readouterr().out

    schema.write_text('[post]\ntitle = "string"\n', encoding="utf-8")
    (root / "objects" / "post" / "c.toml").write_text('title = "C"\n', encoding="utf-8")
    loop.queue(schema, ChangeKind.MODIFIED)
    assert loop.process(loop.drain()) is not None
    assert (root / "dist" / "index.html").read_text() == "[AC]"


def test_start_and_stop(tmp_path, monkeypatch):
    observer = FakeObserver()
    monkeypatch.setattr("folio.watch.Observer", lambda: observer)
    loop = DevLoop(create_project(tmp_path), serve=False, debounce=0)
    server = FakeServer()
    loop.server = server
    loop.start()
    assert observer.started
    assert server.started
    assert str(loop.config.root) in observer.scheduled
    assert (loop.config.build_dir / "index.html").read_text() == "[A]"

    done = threading.Event()
    original = loop.process

    def process(changes):
        result = original(changes)
        done.set()
        return result

    monkeypatch.setattr(loop, "process", process)
    (loop.config.root / "objects" / "post" / "b.toml").write_text('title = "B"\n', encoding="utf-8")
    loop.queue(loop.config.root / "objects" / "post" / "b.toml", ChangeKind.ADDED)
    assert done.wait(timeout=5)
    loop.stop()
    assert observer.stopped
    assert server.stopped
    assert (loop.config.build_dir / "index.html").read_text() == "[AB]"


def test_start_publishes_asset_dirs(tmp_path, monkeypatch):
    monkeypatch.setattr("folio.watch.Observer", FakeObserver)
    root = create_project(tmp_path)
    (root / "manifest.toml").write_text('assets = ["styles"]\n', encoding="utf-8")
    (root / "styles" / "fonts").mkdir(parents=True)
    (root / "styles" / "main.css").write_text("body {}", encoding="utf-8")
    (root / "styles" / "fonts" / "face.woff").write_bytes(b"\x00\x01")
    loop = DevLoop(root, serve=False, debounce=0)
    loop.start()
    loop.stop()
    assert (loop.config.build_dir / "styles" / "main.css").read_text() == "body {}"
    assert (loop.config.build_dir / "styles" / "fonts" / "face.woff").read_bytes() == b"\x00\x01"
