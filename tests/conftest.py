"""Shared fixtures."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

import pytest

from modfinder.index.storage import SQLiteStore
from modfinder.models import Package, Version


@pytest.fixture
def store(tmp_path):
    """Create a temporary database for testing."""
    store = SQLiteStore(tmp_path / "test.db")
    yield store
    store.close()


def make_package(path: str, module_path: str, *, synopsis: str = "", imports: Iterable[str] = ()) -> Package:
    suffix = path[len(module_path) :].lstrip("/")
    return Package(
        path=path,
        suffix=suffix,
        name=path.rsplit("/", 1)[-1],
        synopsis=synopsis,
        imports=list(imports),
    )


def make_version(
    module_path: str,
    version: str = "v1.0.0",
    packages: Iterable[Package] | None = None,
    *,
    readme: str = "",
) -> Version:
    if packages is None:
        packages = [make_package(module_path, module_path)]
    return Version(
        module_path=module_path,
        version=version,
        series_path=module_path,
        commit_time=datetime(2019, 1, 30, tzinfo=timezone.utc),
        readme_contents=readme,
        packages=list(packages),
    )
