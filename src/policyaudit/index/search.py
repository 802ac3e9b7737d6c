"""Nearest-neighbor ranking and neighborhood expansion."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

import numpy as np

from policyaudit.embedding.query import QueryVectorizer
from policyaudit.errors import DimensionMismatchError
from policyaudit.index.embeddings import EmbeddingIndex
from policyaudit.index.storage import PageStore
from policyaudit.models import EmbeddingRecord, ScoredPage


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Dot product over the product of L2 norms; a zero denominator counts as 1."""
    a = np.asarray(a, dtype="float64")
    b = np.asarray(b, dtype="float64")
    denom = float(np.linalg.norm(a) * np.linalg.norm(b)) or 1.0
    return float(np.dot(a, b) / denom)


@dataclass(slots=True, frozen=True)
class Hit:
    record: EmbeddingRecord
    similarity: float


def rank_nearest(query: np.ndarray, index: EmbeddingIndex, *, top_k: int = 80) -> List[Hit]:
    """Score every record against ``query`` and return the best ``top_k``.

    Full linear scan over the index matrix; ties keep index order.
    """
    if len(index) == 0:
        return []
    query = np.asarray(query, dtype="float32")
    if query.shape != (index.dimension,):
        raise DimensionMismatchError(index.dimension, query.shape)

    matrix = index.matrix.astype("float64", copy=False)
    q = query.astype("float64")
    denoms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    denoms[denoms == 0] = 1.0
    scores = (matrix @ q) / denoms

    order = np.argsort(-scores, kind="stable")[:top_k]
    return [Hit(record=index.records[i], similarity=float(scores[i])) for i in order]


def expand_neighbors(
    hits: Iterable[Hit], *, radius: int = 3, base_weight: float = 0.25
) -> List[ScoredPage]:
    """Expand each hit to pages ``page-radius .. page+radius`` (pages < 1 dropped).

    The first expansion reaching a page fixes its base score; later, even
    higher-scoring, expansions of the same page are ignored.
    """
    wanted: dict[tuple[str, int], ScoredPage] = {}
    for hit in hits:
        base = base_weight * hit.similarity
        for offset in range(-radius, radius + 1):
            page = hit.record.page + offset
            if page < 1:
                continue
            key = (hit.record.document_id, page)
            if key not in wanted:
                wanted[key] = ScoredPage(document_id=hit.record.document_id, page=page, base_score=base)
    return list(wanted.values())


@dataclass(slots=True)
class SearchResult:
    document_id: str
    page: int
    score: float
    preview: str


class PageSearcher:
    """Debug view of the ranking stage: nearest pages with a text preview."""

    def __init__(self, vectorizer: QueryVectorizer, index: EmbeddingIndex, store: PageStore) -> None:
        self.vectorizer = vectorizer
        self.index = index
        self.store = store

    async def search(self, query: str, *, top_k: int = 10, preview_chars: int = 500) -> List[SearchResult]:
        vector = await self.vectorizer.vectorize(query)
        results: List[SearchResult] = []
        for hit in rank_nearest(vector, self.index, top_k=top_k):
            row = self.store.get(hit.record.document_id, hit.record.page)
            results.append(
                SearchResult(
                    document_id=hit.record.document_id,
                    page=hit.record.page,
                    score=hit.similarity,
                    preview=row.text[:preview_chars] if row else "",
                )
            )
        return results
