"""Fetch a module version from the proxy and index it."""

from __future__ import annotations

import logging
import time

from modfinder.etl.proxy import ProxyClient
from modfinder.errors import invalid_argument, transient
from modfinder.index.indexer import DocumentIndexer
from modfinder.index.storage import SQLiteStore

LOGGER = logging.getLogger(__name__)


class Deadline:
    """Point in monotonic time after which a request is abandoned."""

    def __init__(self, seconds: float) -> None:
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(self.expires_at - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class FetchHandler:
    """Fetch-and-index callback shared by every queue backend.

    Calling it again for a version that is already stored is harmless.
    """

    def __init__(
        self,
        proxy_client: ProxyClient,
        store: SQLiteStore,
        indexer: DocumentIndexer | None = None,
        *,
        timeout: float = 600.0,
    ) -> None:
        self.proxy_client = proxy_client
        self.store = store
        self.indexer = indexer or DocumentIndexer(store)
        self.timeout = timeout

    def __call__(self, module_path: str, version: str) -> int:
        if not module_path or not version:
            raise invalid_argument(f"fetch({module_path!r}, {version!r}): missing module path or version")
        deadline = Deadline(self.timeout)
        LOGGER.info("Fetching %s@%s", module_path, version)
        fetched = self.proxy_client.get_version(module_path, version, timeout=deadline.remaining())
        if (fetched.module_path, fetched.version) != (module_path, version):
            raise invalid_argument(
                f"fetch({module_path!r}, {version!r}): proxy returned {fetched.module_path}@{fetched.version}"
            )
        if deadline.expired():
            raise transient(f"fetch({module_path!r}, {version!r}): deadline exceeded")
        with self.store.interrupt_after(deadline):
            self.store.insert_version(fetched)
            return self.indexer.insert_documents(fetched)
