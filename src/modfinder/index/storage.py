"""SQLite persistence for versions, documents and exclusions."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence

from modfinder.errors import ModfinderError, invalid_argument, transient
from modfinder.models import Document, Version, parse_semver, validate_version

LOGGER = logging.getLogger(__name__)

# Full-text columns of documents_fts and their importance tier.
DOCUMENT_COLUMNS = (
    ("package_path", "A"),
    ("name", "A"),
    ("path_tokens", "A"),
    ("synopsis", "B"),
    ("readme_contents", "C"),
)
TIER_WEIGHTS = {"A": 1.0, "B": 0.4, "C": 0.2}

# Max bound parameters per IN (...) clause.
_IN_CHUNK = 500

# Number of sqlite VM instructions between deadline checks.
_PROGRESS_STEPS = 100


def _chunks(items: Sequence, size: int = _IN_CHUNK) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def fts_query(terms: Iterable[str]) -> str:
    """OR together the terms, each quoted as an FTS5 string."""
    quoted = ['"' + term.replace('"', '""') + '"' for term in terms]
    return " OR ".join(quoted)


class SQLiteStore:
    """Transactional store shared by the indexer, searcher and fetch queue.

    A single connection is shared between threads and serialized by a
    re-entrant lock; every read and write goes through it.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    @contextmanager
    def interrupt_after(self, deadline) -> Iterator[None]:
        """Abort statements run inside the block once ``deadline`` expires.

        The store stays locked for the duration of the block.
        """
        if deadline.expired():
            raise transient("deadline exceeded before storage access")
        with self._lock:
            self._conn.set_progress_handler(lambda: 1 if deadline.expired() else 0, _PROGRESS_STEPS)
            try:
                yield
            except ModfinderError as exc:
                if deadline.expired():
                    raise transient(f"deadline exceeded: {exc.message}") from exc
                raise
            finally:
                self._conn.set_progress_handler(None, _PROGRESS_STEPS)

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS versions (
                    module_path TEXT NOT NULL,
                    version TEXT NOT NULL,
                    series_path TEXT NOT NULL,
                    commit_time TEXT NOT NULL,
                    readme_contents TEXT,
                    major INTEGER NOT NULL,
                    minor INTEGER NOT NULL,
                    patch INTEGER NOT NULL,
                    prerelease TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (module_path, version)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS packages (
                    path TEXT NOT NULL,
                    module_path TEXT NOT NULL,
                    version TEXT NOT NULL,
                    suffix TEXT NOT NULL,
                    name TEXT NOT NULL,
                    synopsis TEXT,
                    licenses TEXT,
                    PRIMARY KEY (path, module_path, version),
                    FOREIGN KEY (module_path, version)
                        REFERENCES versions(module_path, version) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS imports (
                    from_path TEXT NOT NULL,
                    from_module_path TEXT NOT NULL,
                    from_version TEXT NOT NULL,
                    to_path TEXT NOT NULL,
                    PRIMARY KEY (from_path, from_version, to_path)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_imports_to_path ON imports(to_path)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    package_path TEXT NOT NULL,
                    package_suffix TEXT NOT NULL,
                    module_path TEXT NOT NULL,
                    series_path TEXT NOT NULL,
                    version TEXT NOT NULL,
                    name TEXT NOT NULL,
                    path_tokens TEXT NOT NULL,
                    synopsis TEXT,
                    readme_contents TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (package_path, version)
                )
                """
            )
            columns = ", ".join(name for name, _ in DOCUMENT_COLUMNS)
            conn.execute(
                f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
                    {columns},
                    content='documents',
                    content_rowid='id',
                    tokenize='porter unicode61'
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS excluded_prefixes (
                    prefix TEXT PRIMARY KEY,
                    created_by TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    # Versions

    def insert_version(self, version: Version) -> None:
        """Write a version with its packages and import edges.

        Rows that already exist are left untouched.
        """
        validate_version(version)
        major, minor, patch, prerelease = parse_semver(version.version)
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO versions(module_path, version, series_path, commit_time,
                        readme_contents, major, minor, patch, prerelease)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(module_path, version) DO NOTHING
                    """,
                    (
                        version.module_path,
                        version.version,
                        version.series_path,
                        version.commit_time.isoformat(),
                        version.readme_contents,
                        major,
                        minor,
                        patch,
                        prerelease,
                    ),
                )
                for pkg in version.packages:
                    conn.execute(
                        """
                        INSERT INTO packages(path, module_path, version, suffix, name, synopsis, licenses)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(path, module_path, version) DO NOTHING
                        """,
                        (
                            pkg.path,
                            version.module_path,
                            version.version,
                            pkg.suffix,
                            pkg.name,
                            pkg.synopsis,
                            json.dumps([[lic.type, lic.file_path] for lic in pkg.licenses]),
                        ),
                    )
                    for imported in pkg.imports:
                        conn.execute(
                            """
                            INSERT INTO imports(from_path, from_module_path, from_version, to_path)
                            VALUES (?, ?, ?, ?)
                            ON CONFLICT DO NOTHING
                            """,
                            (pkg.path, version.module_path, version.version, imported),
                        )
        except sqlite3.Error as exc:
            raise transient(
                f"insert_version({version.module_path!r}, {version.version!r}): {exc}"
            ) from exc

    def versions_for_modules(self, module_paths: Iterable[str]) -> List[sqlite3.Row]:
        paths = sorted(set(module_paths))
        rows: List[sqlite3.Row] = []
        try:
            with self._lock:
                for chunk in _chunks(paths):
                    marks = ", ".join("?" * len(chunk))
                    rows.extend(
                        self._conn.execute(
                            f"""
                            SELECT module_path, version, commit_time, major, minor, patch, prerelease
                            FROM versions WHERE module_path IN ({marks})
                            """,
                            tuple(chunk),
                        ).fetchall()
                    )
        except sqlite3.Error as exc:
            raise transient(f"versions_for_modules({paths!r}): {exc}") from exc
        return rows

    def packages_for_paths(self, package_paths: Iterable[str]) -> List[sqlite3.Row]:
        paths = list(dict.fromkeys(package_paths))
        rows: List[sqlite3.Row] = []
        try:
            with self._lock:
                for chunk in _chunks(paths):
                    marks = ", ".join("?" * len(chunk))
                    rows.extend(
                        self._conn.execute(
                            f"""
                            SELECT p.path, p.suffix, p.module_path, p.version, p.name, p.synopsis,
                                p.licenses, v.commit_time
                            FROM packages p
                            JOIN versions v
                                ON v.module_path = p.module_path AND v.version = p.version
                            WHERE p.path IN ({marks})
                            ORDER BY p.path, p.module_path
                            """,
                            tuple(chunk),
                        ).fetchall()
                    )
        except sqlite3.Error as exc:
            raise transient(f"packages_for_paths({paths!r}): {exc}") from exc
        return rows

    def imported_by_counts(self, package_paths: Iterable[str]) -> Dict[str, int]:
        """Count distinct importing packages per imported path."""
        paths = list(dict.fromkeys(package_paths))
        counts: Dict[str, int] = {}
        try:
            with self._lock:
                for chunk in _chunks(paths):
                    marks = ", ".join("?" * len(chunk))
                    for row in self._conn.execute(
                        f"""
                        SELECT to_path, COUNT(DISTINCT from_path) AS num_imported_by
                        FROM imports WHERE to_path IN ({marks})
                        GROUP BY to_path
                        """,
                        tuple(chunk),
                    ):
                        counts[row["to_path"]] = row["num_imported_by"]
        except sqlite3.Error as exc:
            raise transient(f"imported_by_counts({paths!r}): {exc}") from exc
        return counts

    # Documents

    def insert_documents(self, documents: Sequence[Document]) -> int:
        """Insert documents in one transaction, skipping existing ones.

        Returns the number of rows actually inserted.
        """
        inserted = 0
        columns = ", ".join(name for name, _ in DOCUMENT_COLUMNS)
        try:
            with self.transaction() as conn:
                for doc in documents:
                    cursor = conn.execute(
                        """
                        INSERT INTO documents(package_path, package_suffix, module_path,
                            series_path, version, name, path_tokens, synopsis, readme_contents)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(package_path, version) DO NOTHING
                        """,
                        (
                            doc.package_path,
                            doc.package_suffix,
                            doc.module_path,
                            doc.series_path,
                            doc.version,
                            doc.name,
                            doc.path_tokens,
                            doc.synopsis,
                            doc.readme_contents,
                        ),
                    )
                    if cursor.rowcount != 1:
                        continue
                    conn.execute(
                        f"INSERT INTO documents_fts(rowid, {columns}) VALUES (?, ?, ?, ?, ?, ?)",
                        (
                            cursor.lastrowid,
                            doc.package_path,
                            doc.name,
                            doc.path_tokens,
                            doc.synopsis,
                            doc.readme_contents,
                        ),
                    )
                    inserted += 1
        except sqlite3.Error as exc:
            raise transient(f"insert_documents({len(documents)} documents): {exc}") from exc
        return inserted

    def search_documents(self, terms: Sequence[str]) -> List[sqlite3.Row]:
        """Return the relevance of every document matching any of the terms.

        Rows come back in document insertion order.
        """
        if not terms:
            raise invalid_argument("search_documents: no terms")
        weights = ", ".join(str(TIER_WEIGHTS[tier]) for _, tier in DOCUMENT_COLUMNS)
        query = f"""
            SELECT d.package_path, d.module_path, d.version,
                -bm25(documents_fts, {weights}) AS relevance
            FROM documents_fts
            JOIN documents d ON d.id = documents_fts.rowid
            WHERE documents_fts MATCH ?
            ORDER BY d.id
        """
        match = fts_query(terms)
        try:
            with self._lock:
                return self._conn.execute(query, (match,)).fetchall()
        except sqlite3.Error as exc:
            raise transient(f"search_documents({query}, {match!r}): {exc}") from exc

    def count_documents(self, package_path: str | None = None) -> int:
        with self._lock:
            if package_path is None:
                row = self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM documents WHERE package_path = ?", (package_path,)
                ).fetchone()
        return row[0]

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                table: self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("versions", "packages", "documents", "excluded_prefixes")
            }

    # Excluded prefixes

    def is_excluded(self, path: str) -> bool:
        """Report whether ``path`` is covered by an excluded prefix.

        A prefix covers the path when equal to it, or when the path continues
        past the prefix with a ``/`` or ``@`` separator.
        """
        try:
            with self._lock:
                row = self._conn.execute(
                    """
                    SELECT 1 FROM excluded_prefixes
                    WHERE prefix = :path
                        OR substr(:path, 1, length(prefix) + 1) IN (prefix || '/', prefix || '@')
                    LIMIT 1
                    """,
                    {"path": path},
                ).fetchone()
        except sqlite3.Error as exc:
            raise transient(f"is_excluded({path!r}): {exc}") from exc
        return row is not None

    def insert_excluded_prefix(self, prefix: str, submitted_by: str, reason: str) -> None:
        prefix = prefix.rstrip("/")
        if not prefix:
            raise invalid_argument("insert_excluded_prefix: empty prefix")
        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT INTO excluded_prefixes(prefix, created_by, reason) VALUES (?, ?, ?)",
                    (prefix, submitted_by, reason),
                )
        except sqlite3.Error as exc:
            raise transient(
                f"insert_excluded_prefix({prefix!r}, {submitted_by!r}, {reason!r}): {exc}"
            ) from exc
        LOGGER.info("Excluded prefix %s (by %s): %s", prefix, submitted_by, reason)

    def list_excluded_prefixes(self) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(
                "SELECT prefix, created_by, reason, created_at FROM excluded_prefixes ORDER BY prefix"
            ).fetchall()
