import pytest

from folio.changes import (
    ChangeEvent,
    ChangeKind,
    ChangeTarget,
    classify_batch,
    classify_change,
    requires_full_rebuild,
)
from folio.config import load_config


@pytest.fixture
def config(tmp_path):
    (tmp_path / "manifest.toml").write_text('assets = ["styles"]\n', encoding="utf-8")
    return load_config(tmp_path)


@pytest.mark.parametrize(
    "rel,target",
    [
        ("pages/index.liquid", ChangeTarget.PAGES),
        ("pages/blog/_nav.liquid", ChangeTarget.PAGES),
        ("objects/post/a.toml", ChangeTarget.OBJECTS),
        ("styles/main.css", ChangeTarget.ASSETS),
        ("public/img/a.png", ChangeTarget.ASSETS),
        ("layout/theme.liquid", ChangeTarget.LAYOUT),
        ("manifest.toml", ChangeTarget.CONFIG),
        ("objects.toml", ChangeTarget.CONFIG),
        ("README.md", ChangeTarget.NONE),
        ("pages-old/index.liquid", ChangeTarget.NONE),
        ("objects2/post/a.toml", ChangeTarget.NONE),
    ],
)
def test_classify_change(config, rel, target):
    assert classify_change(config.root / rel, config) is target


def test_directory_priority(tmp_path):
    (tmp_path / "manifest.toml").write_text('layout_dir = "pages/layout"\n', encoding="utf-8")
    config = load_config(tmp_path)
    assert classify_change(config.root / "pages" / "layout" / "a.liquid", config) is ChangeTarget.PAGES


def test_relative_segments_are_normalized(config):
    path = config.root / "pages" / ".." / "layout" / "theme.liquid"
    assert classify_change(path, config) is ChangeTarget.LAYOUT


def test_full_rebuild_targets():
    assert requires_full_rebuild(ChangeTarget.LAYOUT)
    assert requires_full_rebuild(ChangeTarget.CONFIG)
    assert not requires_full_rebuild(ChangeTarget.PAGES)
    assert not requires_full_rebuild(ChangeTarget.OBJECTS)
    assert not requires_full_rebuild(ChangeTarget.ASSETS)


def test_classify_batch(config):
    page = config.root / "pages" / "index.liquid"
    obj = config.root / "objects" / "post" / "a.toml"
    changes = classify_batch(
        [
            (page, ChangeKind.MODIFIED),
            (obj, ChangeKind.ADDED),
            (config.root / "notes.txt", ChangeKind.MODIFIED),
            (page, ChangeKind.REMOVED),
        ],
        config,
    )
    assert changes.events == [
        ChangeEvent(obj, ChangeKind.ADDED, ChangeTarget.OBJECTS),
        ChangeEvent(page, ChangeKind.REMOVED, ChangeTarget.PAGES),
    ]
    assert changes.paths(ChangeTarget.PAGES) == [page]
    assert not changes.full_rebuild


def test_batch_with_layout_change_needs_full_rebuild(config):
    changes = classify_batch(
        [
            (config.root / "pages" / "index.liquid", ChangeKind.MODIFIED),
            (config.root / "layout" / "theme.liquid", ChangeKind.MODIFIED),
        ],
        config,
    )
    assert changes.full_rebuild
    assert not changes.config_changed


def test_empty_batch_is_falsy(config):
    assert not classify_batch([], config)
