"""Core policyaudit data models."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np


@dataclass(slots=True, frozen=True)
class DocumentMetadata:
    """Minimal metadata describing an ingested policy document."""

    path: Path
    document_id: str
    sha256: str
    mtime: float
    size: int


@dataclass(slots=True, frozen=True)
class PageRow:
    """Text of one page of one document."""

    document_id: str
    page: int
    text: str


@dataclass(slots=True, frozen=True, eq=False)
class EmbeddingRecord:
    """Precomputed page vector held by the embedding index."""

    document_id: str
    page: int
    vector: np.ndarray


@dataclass(slots=True, frozen=True)
class ScoredPage:
    """Candidate page produced by neighborhood expansion."""

    document_id: str
    page: int
    base_score: float


@dataclass(slots=True, frozen=True)
class CandidatePage:
    """Candidate page joined with its text, ready for harvesting."""

    document_id: str
    page: int
    text: str
    base_score: float


@dataclass(slots=True, frozen=True)
class EvidenceBlock:
    """Windowed sentence excerpt carrying a combined relevance score."""

    document_id: str
    page: int
    text: str
    score: float

    def key(self, prefix_chars: int = 160) -> tuple[str, int, str]:
        return (self.document_id, self.page, self.text[:prefix_chars].lower())


@dataclass(slots=True, frozen=True)
class Question:
    id: str
    text: str


@dataclass(slots=True)
class QuestionResult:
    """Packed evidence for one question, handed to the decision step."""

    question_id: str
    packed_context: str
    has_evidence: bool
    strategy: str | None = None
    chunk_count: int = 0

    @classmethod
    def no_evidence(cls, question_id: str) -> QuestionResult:
        return cls(question_id=question_id, packed_context="", has_evidence=False)

    def to_dict(self) -> dict[str, object]:
        return {
            "questionId": self.question_id,
            "packedContext": self.packed_context,
            "hasEvidence": self.has_evidence,
            "strategy": self.strategy,
            "chunkCount": self.chunk_count,
        }
