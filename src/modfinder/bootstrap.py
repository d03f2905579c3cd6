"""Process startup: wire storage, exclusions, the fetch handler and the queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from modfinder.config import AppConfig
from modfinder.errors import ModfinderError, fatal
from modfinder.etl.dispatch import FetchQueue, new_queue
from modfinder.etl.exclusions import ExclusionRegistry, ProxyRemovedSet, populate_excluded
from modfinder.etl.fetch import FetchHandler
from modfinder.etl.proxy import DirectoryProxyClient
from modfinder.index.indexer import DocumentIndexer
from modfinder.index.storage import SQLiteStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    config: AppConfig
    store: SQLiteStore
    registry: ExclusionRegistry
    handler: FetchHandler
    fetch_queue: FetchQueue | None = None

    def close(self) -> None:
        if self.fetch_queue is not None:
            self.fetch_queue.close()
        self.store.close()


def open_store(db_path: Path) -> SQLiteStore:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        return SQLiteStore(db_path)
    except Exception as exc:
        raise fatal(f"opening database {db_path}: {exc}") from exc


def start(config: AppConfig, *, base_dir: Path | None = None, with_queue: bool = True) -> Services:
    """Build every long-lived component; any failure here is fatal.

    The proxy-removed list is read and the permanent exclusions are seeded
    before the queue starts taking work.
    """
    proxy_removed = ProxyRemovedSet.load(config.proxy_removed_path)
    store = open_store(config.resolve_db_path(base_dir))
    try:
        populate_excluded(store, config.user)
        registry = ExclusionRegistry(store, proxy_removed)
        if config.proxy_root is None:
            raise fatal("no proxy configured; set MODFINDER_PROXY_ROOT")
        handler = FetchHandler(
            DirectoryProxyClient(config.proxy_root),
            store,
            DocumentIndexer(store),
            timeout=config.timeout_seconds,
        )
        fetch_queue = None
        if with_queue:
            fetch_queue = new_queue(
                config.deployment_mode,
                registry,
                handler,
                workers=config.workers,
                buffer_size=config.buffer_size,
                queue_name=config.queue_name,
                region=config.aws_region,
            )
    except ModfinderError:
        store.close()
        raise
    LOGGER.info("Started in %s mode with database %s", config.deployment_mode, store.db_path)
    return Services(config, store, registry, handler, fetch_queue)
