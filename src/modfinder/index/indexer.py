"""Document indexing pipeline."""

from __future__ import annotations

import logging
from typing import List

from modfinder.index.storage import SQLiteStore
from modfinder.models import Document, Version, validate_version

LOGGER = logging.getLogger(__name__)


def build_documents(version: Version) -> List[Document]:
    """Project every package of ``version`` onto a searchable document."""
    documents = []
    for pkg in version.packages:
        path_tokens = " ".join([pkg.path, version.module_path, version.series_path])
        documents.append(
            Document(
                package_path=pkg.path,
                package_suffix=pkg.suffix,
                module_path=version.module_path,
                series_path=version.series_path,
                version=version.version,
                name=pkg.name,
                path_tokens=path_tokens,
                synopsis=pkg.synopsis,
                readme_contents=version.readme_contents,
            )
        )
    return documents


class DocumentIndexer:
    """Writes the searchable documents of an ingested version."""

    def __init__(self, store: SQLiteStore) -> None:
        self.store = store

    def insert_documents(self, version: Version) -> int:
        """Index all packages of ``version`` atomically.

        Raises an ``INVALID_ARGUMENT`` error before touching storage when the
        version fails validation. Documents already present for a
        ``(package_path, version)`` pair are kept as they are, so re-indexing
        the same version is a no-op. Returns the number of new documents.
        """
        validate_version(version)
        inserted = self.store.insert_documents(build_documents(version))
        LOGGER.info(
            "Indexed %s@%s: %d new of %d packages",
            version.module_path,
            version.version,
            inserted,
            len(version.packages),
        )
        return inserted
