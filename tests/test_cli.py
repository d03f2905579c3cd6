"""Tests for CLI commands."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from modfinder.cli import _setup_logging, app
from modfinder.etl.exclusions import EXCLUDED_PREFIXES
from modfinder.index.storage import SQLiteStore


runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for name in (
        "MODFINDER_DB",
        "MODFINDER_WORKERS",
        "MODFINDER_BUFFER_SIZE",
        "MODFINDER_TIMEOUT_MINUTES",
        "MODFINDER_TASK_QUEUE",
        "MODFINDER_DEPLOYMENT",
        "MODFINDER_PROXY_REMOVED",
        "MODFINDER_PROXY_ROOT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("USER", "tester")


def write_versions(path: Path, *module_paths: str) -> Path:
    path.write_text(
        json.dumps(
            [
                {
                    "module_path": module,
                    "version": "v1.0.0",
                    "commit_time": "2019-05-01T00:00:00Z",
                    "packages": [{"path": module, "name": module.rsplit("/", 1)[-1], "synopsis": "Parses things."}],
                }
                for module in module_paths
            ]
        )
    )
    return path


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        with patch("modfinder.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        with patch("modfinder.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestIndexCommand:
    """Tests for the index command."""

    def test_index_versions(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        source = write_versions(tmp_path / "versions.json", "github.com/a/yaml", "github.com/b/toml")

        result = runner.invoke(app, ["index", str(source), "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "Indexed: 2, excluded: 0, failed: 0" in result.output
        store = SQLiteStore(db_path)
        assert store.count_documents() == 2
        store.close()

    def test_index_skips_proxy_removed(self, tmp_path: Path) -> None:
        removed = tmp_path / "removed.txt"
        removed.write_text("github.com/b/toml@v1.0.0\n")
        source = write_versions(tmp_path / "versions.json", "github.com/a/yaml", "github.com/b/toml")

        result = runner.invoke(
            app,
            ["index", str(source), "--db", str(tmp_path / "test.db"), "--proxy-removed", str(removed)],
        )

        assert "Indexed: 1, excluded: 1, failed: 0" in result.output

    def test_index_reports_bad_file(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text("{")

        result = runner.invoke(app, ["index", str(bad), "--db", str(tmp_path / "test.db")])

        assert "failed: 1" in result.output


class TestSearchCommand:
    """Tests for the search command."""

    def test_search_database_not_found(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["search", "foo", "--db", str(tmp_path / "missing.db")])
        assert result.exit_code != 0

    def test_search_results(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        source = write_versions(tmp_path / "versions.json", "github.com/a/yaml", "github.com/b/toml")
        runner.invoke(app, ["index", str(source), "--db", str(db_path)])

        result = runner.invoke(app, ["search", "yaml", "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "1 matching packages" in result.output

    def test_search_no_matches(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        SQLiteStore(db_path).close()

        result = runner.invoke(app, ["search", "nothing", "--db", str(db_path)])

        assert "No matches found" in result.output

    def test_search_offset_past_results(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        source = write_versions(tmp_path / "versions.json", "github.com/a/yaml")
        runner.invoke(app, ["index", str(source), "--db", str(db_path)])

        result = runner.invoke(app, ["search", "yaml", "--offset", "5", "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "1 matching packages" in result.output

    def test_search_zero_limit(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        SQLiteStore(db_path).close()

        result = runner.invoke(app, ["search", "foo", "--limit", "0", "--db", str(db_path)])

        assert result.exit_code != 0


class TestExclusionCommands:
    """Tests for exclude and seed-excluded."""

    def test_exclude(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"

        first = runner.invoke(app, ["exclude", "github.com/x/y", "--reason", "spam", "--db", str(db_path)])
        second = runner.invoke(app, ["exclude", "github.com/x/y", "--reason", "spam", "--db", str(db_path)])

        assert "Excluded github.com/x/y" in first.output
        assert "already excluded" in second.output
        store = SQLiteStore(db_path)
        [row] = store.list_excluded_prefixes()
        assert row["created_by"] == "tester"
        store.close()

    def test_seed_excluded_twice(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"

        first = runner.invoke(app, ["seed-excluded", "--db", str(db_path)])
        second = runner.invoke(app, ["seed-excluded", "--db", str(db_path)])

        assert f"Added {len(EXCLUDED_PREFIXES)} excluded prefixes" in first.output
        assert "Added 0 excluded prefixes" in second.output


class TestServeCommand:
    """Tests for the serve command."""

    def test_serve_without_proxy_fails(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["serve", "--db", str(tmp_path / "test.db")])
        assert result.exit_code == 1
        assert "Startup failed" in result.output

    def test_serve_starts_uvicorn(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("MODFINDER_PROXY_ROOT", str(tmp_path / "proxy"))
        db_path = tmp_path / "test.db"

        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(app, ["serve", "--db", str(db_path), "--port", "9000"])

        assert result.exit_code == 0, result.output
        mock_run.assert_called_once()
        assert mock_run.call_args.kwargs["port"] == 9000
        store = SQLiteStore(db_path)
        assert len(store.list_excluded_prefixes()) == len(EXCLUDED_PREFIXES)
        store.close()
