"""Sources of module version metadata."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from modfinder.errors import invalid_argument, transient
from modfinder.models import Version

LOGGER = logging.getLogger(__name__)


class ProxyClient(Protocol):
    def get_version(self, module_path: str, version: str, *, timeout: float) -> Version:
        """Return the metadata of ``module_path`` at ``version``."""


class DirectoryProxyClient:
    """Serves versions from a local mirror laid out as
    ``<root>/<module_path>/@v/<version>.json``.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def version_path(self, module_path: str, version: str) -> Path:
        """Locate the version file; paths escaping the mirror are rejected."""
        root = self.root.resolve()
        path = (root / module_path / "@v" / f"{version}.json").resolve()
        if not path.is_relative_to(root):
            raise invalid_argument(f"{module_path}@{version}: path escapes the proxy mirror")
        return path

    def get_version(self, module_path: str, version: str, *, timeout: float) -> Version:
        path = self.version_path(module_path, version)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise transient(f"get_version({module_path!r}, {version!r}): {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise invalid_argument(f"{path}: {exc}") from exc
        LOGGER.debug("Loaded %s@%s from %s", module_path, version, path)
        return Version.from_dict(data)
