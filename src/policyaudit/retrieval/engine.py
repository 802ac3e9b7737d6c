"""Per-question retrieval pipeline and its batch coordinator."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Sequence

import numpy as np

from policyaudit.config import AppConfig, RetrievalConfig
from policyaudit.embedding.encoder import EmbeddingConfig, EmbeddingProvider, GeminiEmbeddingProvider, LocalEmbeddingProvider
from policyaudit.embedding.query import QueryVectorizer
from policyaudit.errors import EmbeddingError
from policyaudit.index.embeddings import EmbeddingIndex, EmbeddingIndexLoader
from policyaudit.index.search import expand_neighbors, rank_nearest
from policyaudit.index.storage import PageStore, SQLitePageStore
from policyaudit.models import CandidatePage, Question, QuestionResult, ScoredPage
from policyaudit.retrieval.packing import ContextPacker
from policyaudit.utils.concurrency import map_bounded

LOGGER = logging.getLogger(__name__)


def build_provider(config: AppConfig) -> EmbeddingProvider:
    if config.provider == "local":
        return LocalEmbeddingProvider(EmbeddingConfig(model_name=config.model_name))
    return GeminiEmbeddingProvider(config.api_key or "", model=config.model_name, api_base=config.api_base)


def fetch_pages(store: PageStore, wanted: Sequence[ScoredPage]) -> List[CandidatePage]:
    """Join candidate pages with their text; store misses and failed reads are skipped."""
    pages: List[CandidatePage] = []
    for candidate in wanted:
        try:
            row = store.get(candidate.document_id, candidate.page)
        except Exception as exc:
            LOGGER.warning("Page read failed for %s p.%d: %s", candidate.document_id, candidate.page, exc)
            continue
        if row is None or not row.text.strip():
            continue
        pages.append(
            CandidatePage(
                document_id=candidate.document_id,
                page=candidate.page,
                text=row.text,
                base_score=candidate.base_score,
            )
        )
    return pages


class AuditEngine:
    """Retrieves and packs evidence for batches of compliance questions.

    The index and page store are shared read-only by every in-flight question.
    """

    def __init__(
        self,
        vectorizer: QueryVectorizer,
        index: EmbeddingIndex,
        store: PageStore,
        config: RetrievalConfig | None = None,
        *,
        packer: ContextPacker | None = None,
    ) -> None:
        self.vectorizer = vectorizer
        self.index = index
        self.store = store
        self.config = config or RetrievalConfig()
        self.packer = packer or ContextPacker(self.config)

    @classmethod
    def from_config(
        cls,
        app_config: AppConfig,
        retrieval_config: RetrievalConfig | None = None,
        *,
        base_dir: Path | None = None,
    ) -> AuditEngine:
        """Load the index and open the page store; raises IndexLoadError on a bad index."""
        index = EmbeddingIndexLoader(app_config.resolve_index_path(base_dir)).load()
        db_path = app_config.resolve_db_path(base_dir)
        if not db_path.exists():
            raise FileNotFoundError(f"Page database not found: {db_path}")
        store = SQLitePageStore(db_path)
        vectorizer = QueryVectorizer(build_provider(app_config))
        return cls(vectorizer, index, store, retrieval_config)

    async def aclose(self) -> None:
        await self.vectorizer.provider.aclose()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()

    def candidate_pages(self, query_vector: np.ndarray) -> List[ScoredPage]:
        hits = rank_nearest(query_vector, self.index, top_k=self.config.top_k)
        return expand_neighbors(hits, radius=self.config.radius, base_weight=self.config.base_weight)

    def _assemble(self, question: Question, wanted: Sequence[ScoredPage]) -> QuestionResult:
        pages = fetch_pages(self.store, wanted)
        if not pages:
            LOGGER.warning("No candidate page text for question %s", question.id)
            return QuestionResult.no_evidence(question.id)

        packed = self.packer.pack(question.text, pages)
        LOGGER.debug(
            "Question %s: %d candidate pages, %d chunks via %s (%d chars)",
            question.id,
            len(pages),
            len(packed),
            packed.strategy,
            len(packed.text),
        )
        return QuestionResult(
            question_id=question.id,
            packed_context=packed.text,
            has_evidence=len(packed) > 0,
            strategy=packed.strategy,
            chunk_count=len(packed),
        )

    async def retrieve(self, question: Question) -> QuestionResult:
        try:
            query_vector = await self.vectorizer.vectorize(question.text)
        except EmbeddingError as exc:
            LOGGER.warning("Embedding failed for question %s: %s", question.id, exc)
            return QuestionResult.no_evidence(question.id)

        wanted = self.candidate_pages(query_vector)
        if not wanted:
            LOGGER.warning("No nearest pages for question %s", question.id)
            return QuestionResult.no_evidence(question.id)

        # Page reads and regex scoring are blocking; keep the event loop free.
        return await asyncio.to_thread(self._assemble, question, wanted)

    async def check(self, questions: Sequence[Question]) -> List[QuestionResult]:
        """Retrieve evidence for every question; results follow input order."""
        LOGGER.info("Checking %d questions (concurrency %d)", len(questions), self.config.concurrency)
        return await map_bounded(questions, self.config.concurrency, lambda q, _i: self.retrieve(q))
