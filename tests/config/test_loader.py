"""Tests for config/loader.py module.

Covers:
- _load_yaml() function
- entity shorthand expansion
- load_config() precedence and error reporting
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from indexsync.config.loader import GLOBAL_CONFIG_PATH, _load_yaml, load_config
from indexsync.config.models import SearchConfig
from indexsync.core.errors import ConfigError, ErrorCode
from indexsync.models import UpdatePolicy


@pytest.fixture(autouse=True)
def _no_global_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("indexsync.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml")
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("INDEXSYNC__"):
            monkeypatch.delenv(key)


class TestLoadYaml:
    """Tests for _load_yaml function."""

    def test_returns_empty_dict_for_missing_file(self, tmp_path: Path) -> None:
        """Returns empty dict when file doesn't exist."""
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_loads_valid_yaml(self, tmp_path: Path) -> None:
        """Loads valid YAML content."""
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("logging:\n  level: DEBUG\n")

        assert _load_yaml(yaml_file) == {"logging": {"level": "DEBUG"}}

    def test_returns_empty_for_empty_file(self, tmp_path: Path) -> None:
        """Returns empty dict for empty file."""
        yaml_file = tmp_path / "empty.yaml"
        yaml_file.write_text("")

        assert _load_yaml(yaml_file) == {}

    def test_raises_config_error_for_invalid_yaml(self, tmp_path: Path) -> None:
        """Raises ConfigError for invalid YAML syntax."""
        yaml_file = tmp_path / "invalid.yaml"
        yaml_file.write_text("logging:\n  level:\n    - invalid: [unclosed")

        with pytest.raises(ConfigError):
            _load_yaml(yaml_file)

    def test_raises_config_error_for_non_mapping(self, tmp_path: Path) -> None:
        """A top-level list is not a config document."""
        yaml_file = tmp_path / "list.yaml"
        yaml_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigError) as exc_info:
            _load_yaml(yaml_file)
        assert exc_info.value.code == ErrorCode.CONFIG_PARSE_ERROR


class TestEntityShorthand:
    """Tests for bare-policy entity sections."""

    def test_bare_policy_expands_to_updates(self, tmp_path: Path) -> None:
        """``Article: enqueue`` is read as ``Article: {updates: enqueue}``."""
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("entities:\n  Article: enqueue\n  Draft: false\n  Page:\n")

        assert _load_yaml(yaml_file) == {
            "entities": {"Article": {"updates": "enqueue"}, "Draft": {"updates": False}, "Page": {}}
        }

    def test_full_sections_untouched(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("entities:\n  Article:\n    index_name: posts\n")

        assert _load_yaml(yaml_file) == {"entities": {"Article": {"index_name": "posts"}}}


class TestLoadConfig:
    """Tests for load_config function."""

    def test_returns_default_config_when_no_files(self) -> None:
        """Returns default config when no config files exist."""
        config = load_config()

        assert config.logging.level == "INFO"
        assert config.search.backend == "http"
        assert config.search.coarse_refresh is True
        assert config.queue.backend == "sql"
        assert config.entities == {}

    def test_loads_project_config_from_working_directory(self, tmp_path: Path) -> None:
        """indexsync.yaml in the working directory is picked up."""
        (tmp_path / "indexsync.yaml").write_text("worker:\n  bulk_size: 50\n")

        config = load_config()

        assert config.worker.bulk_size == 50

    def test_explicit_path_must_exist(self, tmp_path: Path) -> None:
        """A missing explicit config path is an error, not a silent default."""
        with pytest.raises(ConfigError) as exc_info:
            load_config(tmp_path / "missing.yaml")

        assert exc_info.value.code == ErrorCode.CONFIG_FILE_NOT_FOUND

    def test_global_config_underlies_project_config(self, tmp_path: Path) -> None:
        """Project YAML overrides global YAML key by key."""
        global_file = tmp_path / "global.yaml"
        global_file.write_text("search:\n  url: http://global:9200\n  timeout_sec: 3\n")
        project_file = tmp_path / "project.yaml"
        project_file.write_text("search:\n  url: http://project:9200\n")

        with patch("indexsync.config.loader.GLOBAL_CONFIG_PATH", global_file):
            config = load_config(project_file)

        assert config.search.url == "http://project:9200"
        assert config.search.timeout_sec == 3

    def test_env_vars_override_yaml(self, tmp_path: Path) -> None:
        """Environment variables override YAML config."""
        project_file = tmp_path / "project.yaml"
        project_file.write_text("worker:\n  concurrency: 2\n")

        with patch.dict(os.environ, {"INDEXSYNC__WORKER__CONCURRENCY": "4"}):
            config = load_config(project_file)

        assert config.worker.concurrency == 4

    def test_kwargs_override_all(self) -> None:
        """Keyword arguments override everything."""
        config = load_config(search=SearchConfig(backend="memory"))

        assert config.search.backend == "memory"

    def test_loads_entity_registrations(self, tmp_path: Path) -> None:
        """Entity sections are validated into EntityConfig."""
        project_file = tmp_path / "project.yaml"
        project_file.write_text(
            "entities:\n"
            "  Article:\n"
            "    updates: enqueue\n"
            "    mapping:\n"
            "      title: {type: text}\n"
            "  Draft:\n"
            "    updates: false\n"
        )

        config = load_config(project_file)

        assert config.entities["Article"].updates is UpdatePolicy.ENQUEUE
        assert config.entities["Article"].mapping == {"title": {"type": "text"}}
        assert config.entities["Draft"].updates is UpdatePolicy.DISABLED

    def test_entity_sections_merge_across_layers(self, tmp_path: Path) -> None:
        """Global and project YAML contribute different keys of one entity."""
        global_file = tmp_path / "global.yaml"
        global_file.write_text("entities:\n  Article:\n    index_name: posts\n")
        project_file = tmp_path / "project.yaml"
        project_file.write_text("entities:\n  Article: enqueue\n")

        with patch("indexsync.config.loader.GLOBAL_CONFIG_PATH", global_file):
            config = load_config(project_file)

        assert config.entities["Article"].index_name == "posts"
        assert config.entities["Article"].updates is UpdatePolicy.ENQUEUE

    def test_yaml_layers_do_not_outlive_the_load(self, tmp_path: Path) -> None:
        """A later load without files sees only defaults."""
        project_file = tmp_path / "project.yaml"
        project_file.write_text("worker:\n  bulk_size: 50\n")
        load_config(project_file)

        assert load_config().worker.bulk_size == 500

    def test_raises_config_error_for_invalid_policy(self, tmp_path: Path) -> None:
        """An unknown update policy fails with the field path."""
        project_file = tmp_path / "project.yaml"
        project_file.write_text("entities:\n  Article:\n    updates: sometimes\n")

        with pytest.raises(ConfigError) as exc_info:
            load_config(project_file)

        assert exc_info.value.code == ErrorCode.CONFIG_INVALID_VALUE
        assert exc_info.value.details["field"] == "entities.Article.updates"

    def test_raises_config_error_for_invalid_url(self, tmp_path: Path) -> None:
        """Search URL must be http(s)."""
        project_file = tmp_path / "project.yaml"
        project_file.write_text("search:\n  url: search:9200\n")

        with pytest.raises(ConfigError):
            load_config(project_file)


class TestGlobalConfigPath:
    """Tests for GLOBAL_CONFIG_PATH constant."""

    def test_is_in_user_config(self) -> None:
        """Path is in the user config directory."""
        assert isinstance(GLOBAL_CONFIG_PATH, Path)
        assert "indexsync" in str(GLOBAL_CONFIG_PATH)
