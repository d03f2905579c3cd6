"""Ranked package search."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Sequence, Tuple

from modfinder.errors import invalid_argument
from modfinder.index import ranking
from modfinder.index.storage import SQLiteStore
from modfinder.models import License, Package, VersionInfo

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SearchResult:
    rank: float
    num_imported_by: int
    # Total matching packages before pagination.
    num_results: int
    package: Package
    version_info: VersionInfo


class Searcher:
    """High-level API to query indexed documents."""

    def __init__(self, store: SQLiteStore) -> None:
        self.store = store

    def search(self, terms: Sequence[str], limit: int, offset: int = 0) -> List[SearchResult]:
        """Return packages matching any of ``terms``, best first.

        Only the latest version of each module is considered. Every result
        carries the same ``num_results`` regardless of the page requested.
        """
        results, _ = self.search_page(terms, limit, offset)
        return results

    def search_page(
        self, terms: Sequence[str], limit: int, offset: int = 0
    ) -> Tuple[List[SearchResult], int]:
        """Like :meth:`search`, also returning the total number of matches.

        The total is reported even when ``offset`` is past the last match.
        """
        if limit == 0:
            raise invalid_argument("cannot search: limit cannot be 0")
        if limit < 0 or offset < 0:
            raise invalid_argument(f"cannot search: invalid limit {limit} or offset {offset}")
        terms = [term for term in terms if term]
        if not terms:
            raise invalid_argument("cannot search: no terms")

        doc_rows = self.store.search_documents(terms)
        relevance = ranking.best_relevance(doc_rows)
        if not relevance:
            return [], 0

        package_rows = self.store.packages_for_paths(relevance)
        latest = ranking.latest_versions(
            self.store.versions_for_modules(row["module_path"] for row in package_rows)
        )

        # Nested modules can share a package path; each keeps its own row.
        packages: Dict[str, List[Any]] = {}
        for row in package_rows:
            if latest.get(row["module_path"]) == row["version"]:
                packages.setdefault(row["path"], []).append(row)
        imported_by = self.store.imported_by_counts(packages)

        candidates = [
            ranking.Candidate(
                package_path=path,
                module_path=row["module_path"],
                version=row["version"],
                relevance=score,
                num_imported_by=imported_by.get(path, 0),
                row=row,
            )
            for path, score in relevance.items()
            for row in packages.get(path, [])
        ]
        page, total = ranking.rank_candidates(candidates, limit=limit, offset=offset)
        LOGGER.debug("search(%r, %d, %d): %d matches", terms, limit, offset, total)
        return [self._to_result(rank, candidate, total) for rank, candidate in page], total

    @staticmethod
    def _to_result(rank: float, candidate: ranking.Candidate, total: int) -> SearchResult:
        row = candidate.row
        licenses = [License(type=t, file_path=p) for t, p in json.loads(row["licenses"] or "[]")]
        return SearchResult(
            rank=rank,
            num_imported_by=candidate.num_imported_by,
            num_results=total,
            package=Package(
                path=row["path"],
                suffix=row["suffix"],
                name=row["name"],
                synopsis=row["synopsis"] or "",
                licenses=licenses,
            ),
            version_info=VersionInfo(
                module_path=row["module_path"],
                version=row["version"],
                commit_time=datetime.fromisoformat(row["commit_time"]),
            ),
        )
