"""Relevance and popularity ranking of search candidates.

Everything here works on plain rows so the ranking rules can be tested
without a database.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Tuple

import numpy as np

# Matches scoring at or below this are treated as noise.
RELEVANCE_FLOOR = 1e-10


@dataclass(slots=True)
class Candidate:
    package_path: str
    module_path: str
    version: str
    relevance: float
    num_imported_by: int
    row: Any = None


def best_relevance(rows: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    """Keep the highest relevance seen for each package path.

    Paths whose best score does not exceed :data:`RELEVANCE_FLOOR` are
    dropped. The result preserves first-seen order.
    """
    best: Dict[str, float] = {}
    for row in rows:
        path = row["package_path"]
        relevance = float(row["relevance"])
        if path not in best or relevance > best[path]:
            best[path] = relevance
    return {path: rel for path, rel in best.items() if rel > RELEVANCE_FLOOR}


def version_key(row: Mapping[str, Any]) -> Tuple[int, int, int, str]:
    return (row["major"], row["minor"], row["patch"], row["prerelease"])


def latest_versions(rows: Iterable[Mapping[str, Any]]) -> Dict[str, str]:
    """Pick one version per module path.

    Major, minor, patch and prerelease are compared in that order, higher
    values winning at each step. Prerelease strings compare as plain strings.
    """
    latest: Dict[str, Mapping[str, Any]] = {}
    for row in rows:
        current = latest.get(row["module_path"])
        if current is None or version_key(row) > version_key(current):
            latest[row["module_path"]] = row
    return {module: row["version"] for module, row in latest.items()}


def combined_rank(relevance: Any, popularity: Any) -> np.ndarray:
    """relevance * ln(e + popularity); zero importers leave relevance as is."""
    relevance = np.asarray(relevance, dtype="float64")
    popularity = np.asarray(popularity, dtype="float64")
    return relevance * np.log(np.e + popularity)


def rank_candidates(
    candidates: List[Candidate], *, limit: int, offset: int = 0
) -> Tuple[List[Tuple[float, Candidate]], int]:
    """Order candidates by combined rank and cut out one page.

    Ties keep the incoming order. Returns the page as ``(rank, candidate)``
    pairs together with the total number of candidates.
    """
    total = len(candidates)
    if total == 0:
        return [], 0
    ranks = combined_rank(
        [c.relevance for c in candidates],
        [c.num_imported_by for c in candidates],
    )
    order = np.argsort(-ranks, kind="stable")
    page = order[offset : offset + limit]
    return [(float(ranks[idx]), candidates[idx]) for idx in page], total
