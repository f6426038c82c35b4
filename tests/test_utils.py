import os
from pathlib import Path

import pytest

from folio.renderers import MarkdownRenderer
from folio.templates import PartialLoader
from folio.utils import (
    content_hash,
    is_external_link,
    is_partial,
    is_within,
    relative_link,
    rewrite_link,
    walk_files,
)


def test_is_within_compares_components(tmp_path):
    assert is_within(tmp_path / "pages" / "a.liquid", tmp_path / "pages")
    assert is_within(tmp_path / "pages", tmp_path / "pages")
    assert not is_within(tmp_path / "pages-old" / "a.liquid", tmp_path / "pages")
    assert is_within(tmp_path / "x" / ".." / "pages" / "a", tmp_path / "pages")


def test_relative_link():
    assert relative_link("/site/pages/foo/bar.thing", "/site/pages") == "foo/bar.thing"
    assert relative_link("/site/pages/foo/bar.thing", "/site/pages/subdir") == "../foo/bar.thing"


@pytest.mark.parametrize(
    "link,expected",
    [
        ("/img/a.png", "../img/a.png"),
        ("img/a.png", "../img/a.png"),
        ("/about.html#team", "../about.html#team"),
        ("https://example.com", "https://example.com"),
        ("#top", "#top"),
        ("mailto:me@example.com", "mailto:me@example.com"),
    ],
)
def test_rewrite_link(link, expected):
    root = Path("/site/pages")
    assert rewrite_link(link, root, root / "post") == expected


def test_is_external_link():
    assert is_external_link("")
    assert is_external_link("//cdn.example.com/a.js")
    assert not is_external_link("/a.html")


def test_is_partial():
    assert is_partial(Path("pages/_nav.liquid"))
    assert not is_partial(Path("pages/nav.liquid"))


def test_walk_files_sorted_and_skips_hidden(tmp_path):
    (tmp_path / "b").mkdir()
    (tmp_path / "a.txt").write_text("a")
    (tmp_path / "b" / "c.txt").write_text("c")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("x")
    (tmp_path / ".hidden").write_text("x")
    assert [p.relative_to(tmp_path).as_posix() for p in walk_files(tmp_path)] == ["a.txt", "b/c.txt"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
def test_walk_files_survives_symlink_cycle(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "f.txt").write_text("f")
    os.symlink(tmp_path, tmp_path / "a" / "loop")
    files = list(walk_files(tmp_path))
    assert files == [tmp_path / "a" / "f.txt"]


def test_walk_files_depth_limit(tmp_path):
    deep = tmp_path / "1" / "2" / "3"
    deep.mkdir(parents=True)
    (deep / "f.txt").write_text("f")
    assert list(walk_files(tmp_path, max_depth=2)) == []
    assert list(walk_files(tmp_path, max_depth=3)) == [deep / "f.txt"]


def test_walk_files_missing_root(tmp_path):
    assert list(walk_files(tmp_path / "missing")) == []


def test_content_hash_is_stable():
    assert content_hash(b"abc") == content_hash(b"abc")
    assert content_hash(b"abc") != content_hash(b"abd")


def test_markdown_renderer_rewrites_links_and_images():
    html = MarkdownRenderer().render(
        "[a](/a.html) ![b](/img/b.png)", rewrite=lambda link: f"../{link.lstrip('/')}"
    )
    assert 'href="../a.html"' in html
    assert 'src="../img/b.png"' in html


def test_markdown_renderer_without_rewrite():
    assert 'href="/a.html"' in MarkdownRenderer().render("[a](/a.html)")


def test_partial_loader_candidates():
    assert list(PartialLoader._candidates("nav")) == ["nav", "_nav.liquid", "nav.liquid"]
    assert list(PartialLoader._candidates("blog/_nav.liquid")) == ["blog/_nav.liquid", "blog/_nav.liquid"]
    assert list(PartialLoader._candidates("blog/nav.liquid")) == [
        "blog/nav.liquid",
        "blog/_nav.liquid",
        "blog/nav.liquid",
    ]
