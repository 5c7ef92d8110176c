"""Tests for the isync CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog
from click.testing import CliRunner

from indexsync.cli.main import cli
from indexsync.config.models import IndexSyncConfig
from indexsync.runtime import Runtime, build_runtime

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


@pytest.fixture
def runtime() -> Iterator[Runtime]:
    config = IndexSyncConfig.model_validate(
        {
            "search": {"backend": "memory"},
            "queue": {"backend": "memory"},
            "worker": {"poll_interval_sec": 0.01, "retry_delay_sec": 0},
            "entities": {"Article": {"index_name": "articles", "doc_type": "article"}},
        }
    )
    rt = build_runtime(config)
    article = rt.registry.get("Article")
    for i in (1, 2, 3):
        rt.store.put(article, {"id": i, "title": f"t{i}"})  # type: ignore[attr-defined]
    yield rt
    rt.close()


def invoke(runtime: Runtime, *args: str) -> Any:
    return runner.invoke(cli, list(args), obj={"runtime": runtime})


class TestReindexCommand:
    def test_enqueues_by_default(self, runtime: Runtime) -> None:
        result = invoke(runtime, "reindex", "Article", "1", "2")

        assert result.exit_code == 0, result.output
        assert "Enqueued reindex of 2 Article id(s)" in result.output
        assert len(runtime.queue) == 1

    def test_now_applies_in_process(self, runtime: Runtime) -> None:
        result = invoke(runtime, "reindex", "Article", "1", "9", "--now")

        assert result.exit_code == 0, result.output
        assert "Article: 1 indexed, 1 deleted" in result.output
        assert len(runtime.queue) == 0

    def test_unknown_entity_fails(self, runtime: Runtime) -> None:
        result = invoke(runtime, "reindex", "Nope", "1")

        assert result.exit_code == 1
        assert "Nope" in result.output


class TestWorkerCommand:
    def test_drains_queue(self, runtime: Runtime) -> None:
        invoke(runtime, "reindex", "Article", "1", "2")
        invoke(runtime, "reindex", "Article", "3")

        result = invoke(runtime, "worker", "--drain")

        assert result.exit_code == 0, result.output
        assert "Processed: 2 job(s), 0 failed" in result.output

    def test_threaded_loops(self, runtime: Runtime) -> None:
        for i in ("1", "2", "3"):
            invoke(runtime, "reindex", "Article", i)

        result = invoke(runtime, "worker", "--drain", "--concurrency", "2")

        assert result.exit_code == 0, result.output
        assert "Processed: 3 job(s), 0 failed" in result.output


class TestRebuildCommand:
    def test_rebuild_prints_new_version(self, runtime: Runtime) -> None:
        result = invoke(runtime, "rebuild", "Article")

        assert result.exit_code == 0, result.output
        current = runtime.versions.current_version("Article")
        assert current is not None
        assert current.name in result.output

    def test_enqueue_rebuild(self, runtime: Runtime) -> None:
        result = invoke(runtime, "rebuild", "Article", "--enqueue")

        assert result.exit_code == 0, result.output
        assert "Enqueued rebuild of Article" in result.output
        assert len(runtime.queue) == 1


class TestVersionsCommands:
    def test_list_empty(self, runtime: Runtime) -> None:
        result = invoke(runtime, "versions", "list", "Article")

        assert result.exit_code == 0
        assert "No index versions for Article" in result.output

    def test_list_json(self, runtime: Runtime) -> None:
        invoke(runtime, "rebuild", "Article")
        runtime.versions.create_version("Article", promote=False)

        result = invoke(runtime, "versions", "list", "Article", "--json")

        assert result.exit_code == 0, result.output
        rows = json.loads(result.output.strip().splitlines()[-1])
        assert [row["status"] for row in rows] == ["building", "current"]

    def test_prune(self, runtime: Runtime) -> None:
        runtime.versions.create_version("Article")
        runtime.versions.create_version("Article")

        result = invoke(runtime, "versions", "prune", "Article")

        assert result.exit_code == 0, result.output
        assert "Pruned 1 version(s)" in result.output

    def test_drop_with_yes(self, runtime: Runtime) -> None:
        runtime.versions.create_version("Article")

        result = invoke(runtime, "versions", "drop", "Article", "--yes")

        assert result.exit_code == 0, result.output
        assert "Dropped 1 version(s) of Article" in result.output
        assert runtime.versions.list_versions("Article") == []

    def test_drop_cancelled(self, runtime: Runtime, monkeypatch: pytest.MonkeyPatch) -> None:
        class Declined:
            def ask(self) -> bool:
                return False

        monkeypatch.setattr("questionary.select", lambda *a, **k: Declined())
        runtime.versions.create_version("Article")

        result = invoke(runtime, "versions", "drop", "Article")

        assert "Cancelled" in result.output
        assert len(runtime.versions.list_versions("Article")) == 1

    def test_optimize(self, runtime: Runtime) -> None:
        runtime.versions.create_version("Article")

        result = invoke(runtime, "optimize", "Article")

        assert result.exit_code == 0, result.output
        assert "Optimized Article" in result.output


class TestConfigFile:
    def test_missing_config_file_fails(self, tmp_path: Path) -> None:
        result = runner.invoke(
            cli, ["--config", str(tmp_path / "absent.yaml"), "versions", "list", "Article"]
        )

        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_memory_config_from_file(self, tmp_path: Path) -> None:
        config = tmp_path / "indexsync.yaml"
        config.write_text(
            "search:\n  backend: memory\nqueue:\n  backend: memory\n"
            "entities:\n  Article:\n    updates: enqueue\n"
        )

        result = runner.invoke(cli, ["--config", str(config), "reindex", "Article", "5"])

        assert result.exit_code == 0, result.output
        assert "Enqueued reindex of 1 Article id(s)" in result.output

    def test_version(self) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "isync" in result.output
