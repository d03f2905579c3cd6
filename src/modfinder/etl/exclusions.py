"""Permanent prefix exclusions and the runtime proxy-removed skip list."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from modfinder.errors import fatal
from modfinder.index.storage import SQLiteStore

LOGGER = logging.getLogger(__name__)

# Permanent record of exclusions, reapplied at startup in case the
# database is wiped.
EXCLUDED_PREFIXES = (
    (
        "github.com/xvrzhao/site-monitor",
        "author requested https://groups.google.com/a/google.com/d/msg/go-discovery-feedback/oYtPw2Ob0fY/xxGikZK1AQAJ",
    ),
    (
        "gioui.org/ui",
        "author requested https://groups.google.com/a/google.com/d/msg/go-discovery-feedback/CeMEn2E1zwo/q5S8HPn6BgAJ",
    ),
    (
        "github.com/kortschak/unlicensable",
        "https://groups.google.com/g/golang-dev/c/mfiPCtJ1BGU/m/HDb3--vMEwAJk",
    ),
    (
        "github.com/clevergo/clevergo",
        "https://groups.google.com/a/google.com/g/go-discovery-feedback/c/IAHYXlstv-g/m/muE06-ECFgAJ",
    ),
)


class ProxyRemovedSet:
    """Immutable set of ``module@version`` entries no longer on the proxy."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[str] = ()) -> None:
        self._entries = frozenset(e.strip() for e in entries if e.strip())

    @classmethod
    def load(cls, path: Path | str | None) -> "ProxyRemovedSet":
        """Read one ``module@version`` per line; blank lines are ignored."""
        if not path:
            return cls()
        try:
            with open(path, encoding="utf-8") as handle:
                removed = cls(handle)
        except OSError as exc:
            raise fatal(f"reading proxy-removed list {path}: {exc}") from exc
        LOGGER.info("Read %d excluded module versions from %s", len(removed), path)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry: object) -> bool:
        return entry in self._entries

    def is_removed(self, module_path: str, version: str) -> bool:
        return f"{module_path}@{version}" in self._entries


class ExclusionRegistry:
    """Answers whether a module version must be kept out of the index."""

    def __init__(self, store: SQLiteStore, proxy_removed: ProxyRemovedSet | None = None) -> None:
        self.store = store
        self.proxy_removed = proxy_removed if proxy_removed is not None else ProxyRemovedSet()

    def is_excluded(self, module_path: str, version: str) -> bool:
        if self.proxy_removed.is_removed(module_path, version):
            LOGGER.info("%s@%s was removed from the proxy; skipping", module_path, version)
            return True
        # Covers both module prefixes and single excluded versions.
        if self.store.is_excluded(f"{module_path}@{version}"):
            LOGGER.info("%s@%s is excluded; skipping", module_path, version)
            return True
        return False

    def insert_excluded_prefix(self, prefix: str, submitted_by: str, reason: str) -> None:
        self.store.insert_excluded_prefix(prefix, submitted_by, reason)


def populate_excluded(store: SQLiteStore, user: str, prefixes=EXCLUDED_PREFIXES) -> int:
    """Insert each known prefix unless it is already excluded.

    Returns the number of prefixes newly recorded.
    """
    added = 0
    for prefix, reason in prefixes:
        if store.is_excluded(prefix):
            continue
        store.insert_excluded_prefix(prefix, user, reason)
        added += 1
    return added
