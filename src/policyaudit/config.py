"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from policyaudit.embedding.encoder import DEFAULT_GEMINI_MODEL, DEFAULT_LOCAL_MODEL, GEMINI_API_BASE

DEFAULT_DB_PATH = Path("data/policies.db")
DEFAULT_INDEX_PATH = Path("data/policies-embeddings.json")


@dataclass(slots=True)
class AppConfig:
    db_path: Path = DEFAULT_DB_PATH
    index_path: Path = DEFAULT_INDEX_PATH
    provider: str = "gemini"
    model_name: str | None = None
    api_key: str | None = None
    api_base: str = GEMINI_API_BASE

    def __post_init__(self) -> None:
        if self.provider not in ("gemini", "local"):
            raise ValueError(f"Unknown embedding provider: {self.provider}")
        if self.model_name is None:
            self.model_name = DEFAULT_GEMINI_MODEL if self.provider == "gemini" else DEFAULT_LOCAL_MODEL
        if self.api_key is None:
            self.api_key = os.environ.get("GOOGLE_API_KEY", "")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.db_path, base_dir)

    def resolve_index_path(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.index_path, base_dir)


def _resolve(path: Path, base_dir: Path | None) -> Path:
    if Path(path).is_absolute() or base_dir is None:
        return Path(path)
    return base_dir / path


@dataclass(slots=True, frozen=True)
class RetrievalConfig:
    """Retrieval and packing knobs.

    top_k: nearest neighbors taken from the cosine ranking.
    radius: pages expanded on each side of a hit.
    base_weight: fraction of the hit similarity inherited by expanded pages.
    char_budget: total characters of packed context.
    max_blocks: ceiling on packed chunks.
    sent_window: sentences of context kept before and after a scoring sentence.
    max_sent_chars: per-sentence truncation.
    concurrency: questions processed in parallel.
    min_chunks: strict packing yield below which lenient harvesting runs.
    overage_factor / overage_chunks: budget overage allowed while fewer than
        ``overage_chunks`` chunks are packed.
    fallback_pages: pages used by the whole-page fallback.
    dedup_prefix_chars: leading characters of block text used in the dedup key.
    """

    top_k: int = 80
    radius: int = 3
    base_weight: float = 0.25
    char_budget: int = 200_000
    max_blocks: int = 100
    sent_window: int = 2
    max_sent_chars: int = 600
    concurrency: int = 4
    min_chunks: int = 5
    overage_factor: float = 1.1
    overage_chunks: int = 10
    fallback_pages: int = 20
    dedup_prefix_chars: int = 160

    def __post_init__(self) -> None:
        for name in ("top_k", "char_budget", "max_blocks", "max_sent_chars", "concurrency",
                     "fallback_pages", "dedup_prefix_chars"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        for name in ("radius", "sent_window", "min_chunks", "overage_chunks"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.overage_factor < 1.0:
            raise ValueError("overage_factor must be >= 1.0")
