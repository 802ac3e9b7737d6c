"""PDF page extraction.

Uses PyMuPDF (fitz) for fast PDF text extraction. Each page becomes one
``PageRow`` keyed by the file name and its 1-based page number.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import fitz  # PyMuPDF

from policyaudit.models import PageRow
from policyaudit.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)


def document_id_for(path: Path) -> str:
    return path.name


def iter_pages(path: Path) -> Iterator[PageRow]:
    """Yield non-empty pages of a PDF file."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        LOGGER.error("Failed to open PDF %s: %s", path, exc)
        return

    document_id = document_id_for(path)
    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover
                LOGGER.warning("Failed to read page %s in %s: %s", index + 1, path, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield PageRow(document_id=document_id, page=index + 1, text=normalized)
    finally:
        doc.close()
