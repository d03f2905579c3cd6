"""FastAPI application: search, enqueue and the inbound fetch callback."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from modfinder.errors import ErrorKind, ModfinderError
from modfinder.etl.dispatch import FetchQueue
from modfinder.index.search import Searcher
from modfinder.index.storage import SQLiteStore

LOGGER = logging.getLogger(__name__)


class SearchHit(BaseModel):
    package_path: str
    name: str
    synopsis: str
    module_path: str
    version: str
    commit_time: datetime
    licenses: List[str]
    num_imported_by: int
    rank: float


class SearchResponse(BaseModel):
    num_results: int
    results: List[SearchHit]


def _http_error(exc: ModfinderError) -> HTTPException:
    if exc.kind is ErrorKind.INVALID_ARGUMENT:
        return HTTPException(status_code=400, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


def create_app(
    store: SQLiteStore,
    fetch_queue: FetchQueue | None = None,
    handler: Callable[[str, str], Any] | None = None,
) -> FastAPI:
    app = FastAPI(title="modfinder", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    searcher = Searcher(store)

    @app.get("/search")
    async def search(q: str = "", limit: int = 10, offset: int = 0) -> SearchResponse:
        try:
            results, total = await asyncio.to_thread(searcher.search_page, q.split(), limit, offset)
        except ModfinderError as exc:
            LOGGER.error("search(%r, %d, %d): %s", q, limit, offset, exc)
            raise _http_error(exc) from exc
        return SearchResponse(
            num_results=total,
            results=[
                SearchHit(
                    package_path=r.package.path,
                    name=r.package.name,
                    synopsis=r.package.synopsis,
                    module_path=r.version_info.module_path,
                    version=r.version_info.version,
                    commit_time=r.version_info.commit_time,
                    licenses=[lic.type for lic in r.package.licenses],
                    num_imported_by=r.num_imported_by,
                    rank=r.rank,
                )
                for r in results
            ],
        )

    @app.get("/stats")
    async def stats() -> dict[str, Any]:
        """Row counts of the stored corpus and the excluded prefixes."""
        counts = await asyncio.to_thread(store.get_stats)
        prefixes = await asyncio.to_thread(store.list_excluded_prefixes)
        return {"stats": counts, "excluded_prefixes": [row["prefix"] for row in prefixes]}

    @app.post("/enqueue/{module_path:path}/@v/{version}")
    async def enqueue(module_path: str, version: str) -> dict[str, str]:
        if fetch_queue is None:
            raise HTTPException(status_code=503, detail="No fetch queue configured")
        try:
            queued = await asyncio.to_thread(fetch_queue.enqueue, module_path, version)
        except ModfinderError as exc:
            LOGGER.error("enqueue(%s@%s): %s", module_path, version, exc)
            raise _http_error(exc) from exc
        return {"status": "queued" if queued else "excluded"}

    @app.post("/fetch/{module_path:path}/@v/{version}")
    async def fetch(module_path: str, version: str) -> dict[str, Any]:
        """Inbound callback for dispatched fetch tasks.

        Any 5xx response makes the dispatcher retry the task.
        """
        if handler is None:
            raise HTTPException(status_code=503, detail="No fetch handler configured")
        try:
            inserted = await asyncio.to_thread(handler, module_path, version)
        except ModfinderError as exc:
            LOGGER.error("fetch(%s@%s): %s", module_path, version, exc)
            raise _http_error(exc) from exc
        return {"status": "ok", "documents_inserted": inserted}

    return app
