"""Page stores: exact (document, page) -> text lookup."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Protocol, Sequence

from policyaudit.models import DocumentMetadata, PageRow


def page_key(document_id: str, page: int) -> str:
    return f"{document_id}#{page}"


class PageStore(Protocol):
    def get(self, document_id: str, page: int) -> PageRow | None: ...


class MemoryPageStore:
    """Dict-backed page store, loadable from an exported ``doc#page -> text`` map."""

    def __init__(self, pages: Mapping[str, str] | None = None) -> None:
        self._pages: dict[str, str] = dict(pages or {})

    @classmethod
    def from_rows(cls, rows: Sequence[PageRow]) -> MemoryPageStore:
        return cls({page_key(row.document_id, row.page): row.text for row in rows})

    @classmethod
    def from_json(cls, path: Path) -> MemoryPageStore:
        with Path(path).open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"Page map in {path} must be a JSON object")
        return cls({str(k): str(v) for k, v in data.items()})

    def __len__(self) -> int:
        return len(self._pages)

    def get(self, document_id: str, page: int) -> PageRow | None:
        text = self._pages.get(page_key(document_id, page))
        if not text:
            return None
        return PageRow(document_id=document_id, page=page, text=text)


class SQLitePageStore:
    """Persistence layer for documents and their page texts."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # Connection is shared by worker threads during retrieval.
        self._lock = threading.Lock()
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
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

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    document_id TEXT NOT NULL UNIQUE,
                    path TEXT NOT NULL,
                    sha256 TEXT NOT NULL,
                    mtime REAL NOT NULL,
                    size INTEGER NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pages (
                    document_id TEXT NOT NULL,
                    page INTEGER NOT NULL CHECK (page >= 1),
                    text TEXT NOT NULL,
                    PRIMARY KEY (document_id, page),
                    FOREIGN KEY(document_id) REFERENCES documents(document_id) ON DELETE CASCADE
                )
                """
            )

    def upsert_document(self, document: DocumentMetadata, pages: Sequence[PageRow]) -> str:
        """Store a document's pages.

        Returns 'inserted', 'updated' or 'skipped' (same SHA-256 already stored).
        """
        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT id, sha256 FROM documents WHERE document_id = ?",
                (document.document_id,),
            ).fetchone()

            if existing and existing["sha256"] == document.sha256:
                return "skipped"

            if existing:
                conn.execute("DELETE FROM pages WHERE document_id = ?", (document.document_id,))
                conn.execute("DELETE FROM documents WHERE id = ?", (existing["id"],))

            conn.execute(
                """
                INSERT INTO documents(document_id, path, sha256, mtime, size)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    document.document_id,
                    str(document.path),
                    document.sha256,
                    document.mtime,
                    document.size,
                ),
            )
            conn.executemany(
                "INSERT OR REPLACE INTO pages(document_id, page, text) VALUES (?, ?, ?)",
                [(document.document_id, row.page, row.text) for row in pages],
            )
            return "updated" if existing else "inserted"

    def get(self, document_id: str, page: int) -> PageRow | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT text FROM pages WHERE document_id = ? AND page = ?",
                (document_id, page),
            ).fetchone()
        if row is None or not row["text"]:
            return None
        return PageRow(document_id=document_id, page=page, text=row["text"])

    def iter_pages(self) -> Iterator[PageRow]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT document_id, page, text FROM pages ORDER BY document_id ASC, page ASC"
            ).fetchall()
        for row in rows:
            yield PageRow(document_id=row["document_id"], page=row["page"], text=row["text"])

    def count_pages(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) FROM pages").fetchone()[0])

    def list_documents(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT d.document_id AS document_id, d.path AS path, COUNT(p.page) AS pages
                FROM documents d
                LEFT JOIN pages p ON p.document_id = d.document_id
                GROUP BY d.document_id
                ORDER BY d.document_id
                """
            ).fetchall()
        return [dict(row) for row in rows]

    def export_json(self, out_path: Path) -> int:
        """Write the compact ``doc#page -> text`` map; returns the page count."""
        mapping = {page_key(row.document_id, row.page): row.text for row in self.iter_pages()}
        Path(out_path).write_text(json.dumps(mapping), encoding="utf-8")
        return len(mapping)
