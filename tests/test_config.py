"""Tests for configuration loading."""

from __future__ import annotations

import os

import pytest
import yaml

from ipfs_sync.config import (
    SAMPLE_CONFIG,
    ConfigError,
    apply_overrides,
    load_config,
    normalize_dir,
    validate,
)
from ipfs_sync.models import DEFAULT_IGNORE, DirKey, SyncConfig, parse_duration


class TestParseDuration:
    @pytest.mark.parametrize(
        "text,seconds",
        [("10s", 10.0), ("1m30s", 90.0), ("500ms", 0.5), ("2h", 7200.0), ("15", 15.0)],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text) == pytest.approx(seconds)

    def test_number(self):
        assert parse_duration(3) == 3.0

    @pytest.mark.parametrize("text", ["", "ten seconds", "10x", "s10"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


class TestDefaults:
    def test_defaults(self):
        config = SyncConfig()
        assert config.base_path == "/ipfs-sync/"
        assert config.endpoint == "http://127.0.0.1:5001"
        assert config.sync == 10.0
        assert config.timeout == 30.0
        assert config.ignore == DEFAULT_IGNORE
        assert config.dirs == []

    def test_base_path_slashed(self):
        assert SyncConfig(BasePath="mirror").base_path == "/mirror/"

    def test_empty_values_fall_back(self):
        config = SyncConfig(Sync="", Timeout="", Ignore=[])
        assert config.sync == 10.0
        assert config.timeout == 30.0
        assert config.ignore == DEFAULT_IGNORE


class TestLoadConfig:
    def test_camel_case_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "EndPoint": "http://10.0.0.2:5001",
                    "Dirs": [{"ID": "Docs", "Dir": "/srv/docs", "Nocopy": True, "DontHash": True}],
                    "Sync": "1m",
                    "DB": "/tmp/fp.db",
                    "IgnoreHidden": True,
                }
            )
        )
        config = load_config(path)
        assert config.endpoint == "http://10.0.0.2:5001"
        assert config.sync == 60.0
        assert config.ignore_hidden is True
        assert config.dirs[0].nocopy is True
        assert config.dirs[0].dont_hash is True
        assert config.db == "/tmp/fp.db"

    def test_missing_file_written_when_asked(self, tmp_path):
        path = tmp_path / "sub" / "config.yaml"
        config = load_config(path, create=True)
        assert path.read_text() == SAMPLE_CONFIG
        assert config.dirs[0].id == "Example1"
        assert config.ignore_hidden is True

    def test_missing_file_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        assert load_config(path) == SyncConfig()
        assert not path.exists()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("Dirs: [unclosed")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("Sync: forever\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)


class TestOverrides:
    def test_flags_win(self):
        config = apply_overrides(
            SyncConfig(EndPoint="http://a:5001"),
            {"endpoint": "http://b:5001", "sync": "30s", "db": None},
        )
        assert config.endpoint == "http://b:5001"
        assert config.sync == 30.0
        assert config.db is None

    def test_json_dirs_and_ignore(self):
        config = apply_overrides(
            SyncConfig(),
            {
                "dirs": '[{"ID": "Pics", "Dir": "/home/u/Pictures/", "Nocopy": true}]',
                "ignore": '["tmp"]',
            },
        )
        assert config.dirs[0].id == "Pics"
        assert config.dirs[0].nocopy is True
        assert config.ignore == ["tmp"]

    def test_bad_json(self):
        with pytest.raises(ConfigError):
            apply_overrides(SyncConfig(), {"dirs": "[{not json"})


class TestValidate:
    def test_requires_dirs(self):
        with pytest.raises(ConfigError):
            validate(SyncConfig())

    def test_empty_dir(self):
        with pytest.raises(ConfigError):
            validate(SyncConfig(Dirs=[DirKey(ID="x", Dir="")]))

    def test_duplicate_ids(self, tmp_path):
        dirs = [DirKey(ID="x", Dir=str(tmp_path)), DirKey(ID="x", Dir=str(tmp_path))]
        with pytest.raises(ConfigError):
            validate(SyncConfig(Dirs=dirs))

    def test_not_a_directory(self, tmp_path):
        with pytest.raises(ConfigError):
            validate(SyncConfig(Dirs=[DirKey(ID="x", Dir=str(tmp_path / "missing"))]))

    def test_normalizes_dir(self, tmp_path):
        config = validate(SyncConfig(Dirs=[DirKey(ID="x", Dir=str(tmp_path) + "//")]))
        assert config.dirs[0].dir == str(tmp_path) + os.sep

    def test_normalize_relative(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert normalize_dir("docs") == str(tmp_path / "docs") + os.sep
