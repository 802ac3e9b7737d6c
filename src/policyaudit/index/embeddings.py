"""Precomputed page embedding index."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from policyaudit.errors import IndexLoadError
from policyaudit.models import EmbeddingRecord

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True, eq=False)
class EmbeddingIndex:
    """Immutable set of page vectors stacked into one float32 matrix."""

    model_id: str
    dimension: int
    records: tuple[EmbeddingRecord, ...]
    matrix: np.ndarray

    @classmethod
    def from_records(cls, model_id: str, records: Sequence[EmbeddingRecord]) -> EmbeddingIndex:
        if not records:
            return cls(model_id=model_id, dimension=0, records=(), matrix=np.zeros((0, 0), dtype="float32"))
        dimension = int(np.asarray(records[0].vector).shape[0])
        for record in records:
            if np.asarray(record.vector).shape != (dimension,):
                raise IndexLoadError(
                    f"Vector for {record.document_id} p.{record.page} does not have dimension {dimension}"
                )
        matrix = np.vstack([np.asarray(r.vector, dtype="float32") for r in records])
        matrix.setflags(write=False)
        return cls(model_id=model_id, dimension=dimension, records=tuple(records), matrix=matrix)

    def __len__(self) -> int:
        return len(self.records)


def _parse_items(items: Any) -> list[EmbeddingRecord]:
    if not isinstance(items, list):
        raise IndexLoadError("Index 'items' must be a list")
    records: list[EmbeddingRecord] = []
    for position, item in enumerate(items):
        try:
            document_id = str(item["fileName"])
            page = int(item["page"])
            vector = np.asarray(item["vector"], dtype="float32")
        except (KeyError, TypeError, ValueError) as exc:
            raise IndexLoadError(f"Malformed index item at position {position}: {exc}") from exc
        if page < 1:
            raise IndexLoadError(f"Invalid page {page} for {document_id}")
        if vector.ndim != 1:
            raise IndexLoadError(f"Vector for {document_id} p.{page} is not one-dimensional")
        records.append(EmbeddingRecord(document_id=document_id, page=page, vector=vector))
    return records


def read_index(path: Path) -> EmbeddingIndex:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError as exc:
        raise IndexLoadError(f"Embedding index not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise IndexLoadError(f"Unable to read embedding index {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise IndexLoadError(f"Embedding index {path} must be a JSON object")

    index = EmbeddingIndex.from_records(str(data.get("model", "")), _parse_items(data.get("items")))
    declared = data.get("dim")
    if declared is not None and len(index) and int(declared) != index.dimension:
        raise IndexLoadError(f"Index declares dim={declared} but vectors have {index.dimension}")
    return index


def write_index(path: Path, model_id: str, records: Sequence[EmbeddingRecord]) -> None:
    dimension = int(np.asarray(records[0].vector).shape[0]) if records else 0
    payload = {
        "model": model_id,
        "dim": dimension,
        "items": [
            {
                "id": position + 1,
                "fileName": record.document_id,
                "relativePath": "",
                "page": record.page,
                "vector": [float(x) for x in np.asarray(record.vector)],
            }
            for position, record in enumerate(records)
        ],
    }
    Path(path).write_text(json.dumps(payload), encoding="utf-8")


class EmbeddingIndexLoader:
    """Loads the index file once and hands out the cached instance afterwards."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._index: EmbeddingIndex | None = None
        self._lock = threading.Lock()

    def load(self) -> EmbeddingIndex:
        if self._index is not None:
            return self._index
        with self._lock:
            if self._index is None:
                index = read_index(self.path)
                LOGGER.info(
                    "Loaded embedding index %s: %d records, dim %d, model %s",
                    self.path,
                    len(index),
                    index.dimension,
                    index.model_id or "?",
                )
                self._index = index
        return self._index
