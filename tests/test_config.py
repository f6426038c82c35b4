from pathlib import Path

import pytest

from folio.config import DEFAULT_CONFIG, load_config, read_toml
from folio.errors import ParseError


def test_defaults_without_manifest(tmp_path):
    config = load_config(tmp_path)
    assert config.root == tmp_path.resolve()
    assert config.pages_dir == tmp_path.resolve() / "pages"
    assert config.objects_dir == tmp_path.resolve() / "objects"
    assert config.build_dir == tmp_path.resolve() / "dist"
    assert config.static_dir == tmp_path.resolve() / "public"
    assert config.layout_dir == tmp_path.resolve() / "layout"
    assert config.assets_dirs == ()
    assert config.helper_port == DEFAULT_CONFIG["helper_port"] == 2701
    assert config.dev_mode is False
    assert config.schema_file.name == "objects.toml"
    assert config.manifest_file.name == "manifest.toml"


def test_manifest_overrides_defaults(tmp_path):
    (tmp_path / "manifest.toml").write_text(
        'build_dir = "out"\nassets = ["styles"]\nhelper_port = 3000\n'
        'site_url = "https://example.com"\ncdn_url = "https://cdn.example.com"\n'
        '[editor_types.day]\nalias_of = "date"\n',
        encoding="utf-8",
    )
    config = load_config(tmp_path)
    assert config.build_dir == tmp_path.resolve() / "out"
    assert config.assets_dirs == (tmp_path.resolve() / "styles",)
    assert config.helper_port == 3000
    assert config.site_url == "https://example.com"
    assert config.cdn_url == "https://cdn.example.com"
    assert config.editor_types == {"day": "date"}


def test_explicit_overrides_win_and_none_is_ignored(tmp_path):
    (tmp_path / "manifest.toml").write_text("helper_port = 3000\n", encoding="utf-8")
    assert load_config(tmp_path, overrides={"helper_port": 4500}).helper_port == 4500
    assert load_config(tmp_path, overrides={"helper_port": None}).helper_port == 3000


def test_bad_manifest_field_falls_back_to_default(tmp_path, capsys):
    (tmp_path / "manifest.toml").write_text(
        'helper_port = "soon"\nbuild_dir = 12\n', encoding="utf-8"
    )
    config = load_config(tmp_path)
    assert config.helper_port == 2701
    assert config.build_dir.name == "dist"
    out = capsys.readouterr().out
    assert "helper_port" in out
    assert "build_dir" in out


def test_broken_manifest_is_ignored(tmp_path, capsys):
    (tmp_path / "manifest.toml").write_text("build_dir = [", encoding="utf-8")
    config = load_config(tmp_path)
    assert config.build_dir.name == "dist"
    assert "ignoring" in capsys.readouterr().out


def test_absolute_paths_are_kept(tmp_path):
    elsewhere = tmp_path / "elsewhere"
    (tmp_path / "manifest.toml").write_text(f'build_dir = "{elsewhere.as_posix()}"\n', encoding="utf-8")
    assert load_config(tmp_path).build_dir == elsewhere


def test_watched_paths_only_lists_existing(tmp_path):
    (tmp_path / "pages").mkdir()
    (tmp_path / "objects.toml").write_text("", encoding="utf-8")
    config = load_config(tmp_path)
    assert config.watched_paths() == [config.pages_dir, config.schema_file]


def test_read_toml_raises_parse_error(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("title = ", encoding="utf-8")
    with pytest.raises(ParseError) as excinfo:
        read_toml(path)
    assert excinfo.value.source_path == path


def test_config_is_frozen(tmp_path):
    config = load_config(tmp_path)
    with pytest.raises(AttributeError):
        config.build_dir = Path("x")
