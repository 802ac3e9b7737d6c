"""Offline builders: PDF pages into the page store, pages into the embedding index."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from policyaudit.embedding.encoder import DOCUMENT_TASK, EmbeddingProvider
from policyaudit.index.embeddings import write_index
from policyaudit.index.storage import SQLitePageStore
from policyaudit.ingestion.pdf_loader import document_id_for, iter_pages
from policyaudit.models import DocumentMetadata, EmbeddingRecord
from policyaudit.utils.files import compute_sha256, iter_pdf_paths
from policyaudit.utils.text import normalize_text

LOGGER = logging.getLogger(__name__)

EMBED_BATCH = 8
EMBED_MAX_CHARS = 4000


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    processed_files: list[Path] = field(default_factory=list)

    def increment(self, status: str, path: Path) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


class PageIndexer:
    """Loads PDF pages into the page store, one transaction per document."""

    def __init__(self, store: SQLitePageStore) -> None:
        self.store = store

    def index(self, paths: Sequence[Path]) -> IndexStats:
        pdf_files = list(iter_pdf_paths(paths))
        stats = IndexStats()
        if not pdf_files:
            LOGGER.warning("No PDF files found")
            return stats

        for path in pdf_files:
            try:
                LOGGER.info("Processing: %s", path)
                stats.increment(self._index_single(path), path)
            except Exception as exc:
                LOGGER.error("Failed to process %s: %s", path, exc)
                stats.increment("failed", path)
        return stats

    def _index_single(self, path: Path) -> str:
        pages = list(iter_pages(path))
        if not pages:
            LOGGER.warning("No text extracted from %s", path)
            return "skipped"

        stat = path.stat()
        document = DocumentMetadata(
            path=path,
            document_id=document_id_for(path),
            sha256=compute_sha256(path),
            mtime=stat.st_mtime,
            size=stat.st_size,
        )
        return self.store.upsert_document(document, pages)


async def build_embedding_index(
    store: SQLitePageStore,
    provider: EmbeddingProvider,
    out_path: Path,
    *,
    batch_size: int = EMBED_BATCH,
    progress: Callable[[int, int], None] | None = None,
) -> int:
    """Embed every stored page and write the JSON index; returns the record count.

    Page text is whitespace-collapsed and cut to ``EMBED_MAX_CHARS`` before
    embedding. Any ``EmbeddingError`` aborts the build.
    """
    rows = list(store.iter_pages())
    LOGGER.info("Embedding %d pages with %s", len(rows), provider.model_id)
    records: list[EmbeddingRecord] = []
    for start in range(0, len(rows), batch_size):
        batch = rows[start : start + batch_size]
        vectors = await provider.embed_batch(
            [normalize_text(row.text)[:EMBED_MAX_CHARS] for row in batch], task_type=DOCUMENT_TASK
        )
        records.extend(
            EmbeddingRecord(document_id=row.document_id, page=row.page, vector=vector)
            for row, vector in zip(batch, vectors)
        )
        if progress is not None:
            progress(len(records), len(rows))

    write_index(out_path, provider.model_id, records)
    LOGGER.info("Wrote %s (%d records)", out_path, len(records))
    return len(records)
