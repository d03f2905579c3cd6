"""Tests for the fetch-and-index handler and the local proxy mirror."""

from __future__ import annotations

import json
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from modfinder.errors import ErrorKind, ModfinderError
from modfinder.etl.fetch import Deadline, FetchHandler
from modfinder.etl.proxy import DirectoryProxyClient

from conftest import make_package, make_version


def write_version(root: Path, data: dict) -> Path:
    path = root / data["module_path"] / "@v" / f"{data['version']}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


class TestDeadline:
    def test_remaining(self) -> None:
        deadline = Deadline(60)
        assert 0 < deadline.remaining() <= 60
        assert not deadline.expired()

    def test_expired(self) -> None:
        deadline = Deadline(0)
        time.sleep(0.001)
        assert deadline.expired()
        assert deadline.remaining() == 0.0


class TestDirectoryProxyClient:
    """Test the local mirror proxy client."""

    def test_get_version(self, tmp_path: Path) -> None:
        write_version(
            tmp_path,
            {
                "module_path": "github.com/foo/bar",
                "version": "v1.0.0",
                "packages": [{"path": "github.com/foo/bar", "name": "bar"}],
            },
        )

        version = DirectoryProxyClient(tmp_path).get_version("github.com/foo/bar", "v1.0.0", timeout=5)

        assert version.module_path == "github.com/foo/bar"
        assert version.packages[0].name == "bar"

    def test_missing_version_is_transient(self, tmp_path: Path) -> None:
        with pytest.raises(ModfinderError) as excinfo:
            DirectoryProxyClient(tmp_path).get_version("github.com/foo/bar", "v1.0.0", timeout=5)
        assert excinfo.value.kind is ErrorKind.TRANSIENT

    def test_malformed_json_is_invalid(self, tmp_path: Path) -> None:
        path = DirectoryProxyClient(tmp_path).version_path("github.com/foo/bar", "v1.0.0")
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        with pytest.raises(ModfinderError) as excinfo:
            DirectoryProxyClient(tmp_path).get_version("github.com/foo/bar", "v1.0.0", timeout=5)
        assert excinfo.value.kind is ErrorKind.INVALID_ARGUMENT

    def test_path_outside_mirror_is_invalid(self, tmp_path: Path) -> None:
        mirror = tmp_path / "mirror"
        outside = tmp_path / "secret" / "@v" / "v1.0.0.json"
        outside.parent.mkdir(parents=True)
        outside.write_text('{"module_path": "secret", "version": "v1.0.0"}')

        with pytest.raises(ModfinderError) as excinfo:
            DirectoryProxyClient(mirror).get_version("../secret", "v1.0.0", timeout=5)
        assert excinfo.value.kind is ErrorKind.INVALID_ARGUMENT

    def test_version_cannot_escape_module_directory(self, tmp_path: Path) -> None:
        with pytest.raises(ModfinderError) as excinfo:
            DirectoryProxyClient(tmp_path / "mirror").version_path("github.com/foo/bar", "../../../../../etc")
        assert excinfo.value.kind is ErrorKind.INVALID_ARGUMENT


class TestFetchHandler:
    """Test fetch-and-index."""

    def test_fetch_and_index(self, store) -> None:
        module = "github.com/foo/bar"
        proxy = MagicMock()
        proxy.get_version.return_value = make_version(
            module, packages=[make_package(module, module), make_package(f"{module}/baz", module)]
        )
        handler = FetchHandler(proxy, store, timeout=30)

        assert handler(module, "v1.0.0") == 2

        proxy.get_version.assert_called_once()
        assert proxy.get_version.call_args.kwargs["timeout"] <= 30
        assert store.get_stats()["versions"] == 1
        assert store.count_documents() == 2

    def test_repeated_delivery_is_harmless(self, store) -> None:
        proxy = MagicMock()
        proxy.get_version.return_value = make_version("github.com/foo/bar")
        handler = FetchHandler(proxy, store)

        handler("github.com/foo/bar", "v1.0.0")
        assert handler("github.com/foo/bar", "v1.0.0") == 0
        assert store.count_documents() == 1

    def test_proxy_failure_propagates(self, store) -> None:
        proxy = MagicMock()
        proxy.get_version.side_effect = ModfinderError(ErrorKind.TRANSIENT, "proxy down")

        with pytest.raises(ModfinderError) as excinfo:
            FetchHandler(proxy, store)("github.com/foo/bar", "v1.0.0")
        assert excinfo.value.kind is ErrorKind.TRANSIENT
        assert store.count_documents() == 0

    def test_mismatched_version_rejected(self, store) -> None:
        proxy = MagicMock()
        proxy.get_version.return_value = make_version("github.com/foo/bar", "v1.1.0")

        with pytest.raises(ModfinderError) as excinfo:
            FetchHandler(proxy, store)("github.com/foo/bar", "v1.0.0")
        assert excinfo.value.kind is ErrorKind.INVALID_ARGUMENT

    def test_deadline_exceeded(self, store) -> None:
        proxy = MagicMock()

        def slow_fetch(module_path, version, *, timeout):
            time.sleep(timeout + 0.01)
            return make_version(module_path, version)

        proxy.get_version.side_effect = slow_fetch

        with pytest.raises(ModfinderError) as excinfo:
            FetchHandler(proxy, store, timeout=0.05)("github.com/foo/bar", "v1.0.0")
        assert excinfo.value.kind is ErrorKind.TRANSIENT
        assert "deadline exceeded" in excinfo.value.message
        assert store.get_stats()["versions"] == 0

    def test_with_directory_proxy(self, store, tmp_path: Path) -> None:
        write_version(
            tmp_path,
            {
                "module_path": "github.com/foo/bar",
                "version": "v1.0.0",
                "packages": [{"path": "github.com/foo/bar", "name": "bar", "synopsis": "Bars."}],
            },
        )

        FetchHandler(DirectoryProxyClient(tmp_path), store)("github.com/foo/bar", "v1.0.0")

        assert [row["package_path"] for row in store.search_documents(["bars"])] == ["github.com/foo/bar"]
