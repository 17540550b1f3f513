"""Tests for config/loader.py module.

Covers:
- _load_yaml() function
- _deep_merge() function
- load_config() precedence: defaults < global YAML < explicit YAML < env < kwargs
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from forestindex.config import loader
from forestindex.config.loader import _deep_merge, _load_yaml, load_config
from forestindex.core.errors import ConfigError, ErrorCode


@pytest.fixture(autouse=True)
def isolated_global_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the global config file at an empty temp location and clear env overrides."""
    global_path = tmp_path / "global" / "config.yaml"
    monkeypatch.setattr(loader, "GLOBAL_CONFIG_PATH", global_path)
    for key in list(os.environ):
        if key.upper().startswith("FORESTINDEX__"):
            monkeypatch.delenv(key)
    return global_path


class TestLoadYaml:
    """Tests for _load_yaml function."""

    def test_returns_empty_dict_for_missing_file(self, tmp_path: Path) -> None:
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_loads_valid_yaml(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("logging:\n  level: DEBUG\n")

        assert _load_yaml(yaml_file) == {"logging": {"level": "DEBUG"}}

    def test_returns_empty_for_yaml_null(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "null.yaml"
        yaml_file.write_text("null\n")

        assert _load_yaml(yaml_file) == {}

    def test_invalid_yaml_raises_config_error(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "bad.yaml"
        yaml_file.write_text("index: [unclosed\n")

        with pytest.raises(ConfigError) as exc_info:
            _load_yaml(yaml_file)

        assert exc_info.value.code == ErrorCode.CONFIG_PARSE_ERROR

    def test_non_mapping_raises_config_error(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "list.yaml"
        yaml_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="mapping"):
            _load_yaml(yaml_file)


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_keys_merged(self) -> None:
        base = {"database": {"path": "a.db", "max_retries": 3}}
        override = {"database": {"path": "b.db"}}

        assert _deep_merge(base, override) == {"database": {"path": "b.db", "max_retries": 3}}

    def test_base_not_mutated(self) -> None:
        base = {"index": {"default_tree_type": "org"}}
        _deep_merge(base, {"index": {"default_tree_type": "menu"}})

        assert base == {"index": {"default_tree_type": "org"}}


class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults(self) -> None:
        config = load_config()

        assert config.index.default_tree_type == "default"
        assert config.index.lock_timeout_sec is None
        assert config.database.path == "forestindex.db"
        assert config.limits.page_size_default == 50

    def test_global_file_applies(self, isolated_global_config: Path) -> None:
        isolated_global_config.parent.mkdir(parents=True)
        isolated_global_config.write_text("index:\n  default_tree_type: org\n")

        assert load_config().index.default_tree_type == "org"

    def test_explicit_file_overrides_global(self, isolated_global_config: Path, tmp_path: Path) -> None:
        isolated_global_config.parent.mkdir(parents=True)
        isolated_global_config.write_text("index:\n  default_tree_type: org\n  lock_timeout_sec: 5\n")
        explicit = tmp_path / "forest.yaml"
        explicit.write_text("index:\n  default_tree_type: menu\n")

        config = load_config(explicit)

        assert config.index.default_tree_type == "menu"
        assert config.index.lock_timeout_sec == 5

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError) as exc_info:
            load_config(tmp_path / "missing.yaml")

        assert exc_info.value.code == ErrorCode.CONFIG_FILE_NOT_FOUND

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        explicit = tmp_path / "forest.yaml"
        explicit.write_text("logging:\n  level: INFO\n")
        monkeypatch.setenv("FORESTINDEX__LOGGING__LEVEL", "DEBUG")

        assert load_config(explicit).logging.level == "DEBUG"

    def test_kwargs_override_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FORESTINDEX__INDEX__DEFAULT_TREE_TYPE", "org")

        config = load_config(index={"default_tree_type": "menu"})

        assert config.index.default_tree_type == "menu"

    def test_invalid_value_raises_config_error(self, tmp_path: Path) -> None:
        explicit = tmp_path / "forest.yaml"
        explicit.write_text("limits:\n  page_size_default: 0\n")

        with pytest.raises(ConfigError) as exc_info:
            load_config(explicit)

        assert exc_info.value.code == ErrorCode.CONFIG_INVALID_VALUE
        assert exc_info.value.details["field"].startswith("limits")
