"""Budgeted packing of evidence into citation-tagged chunks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

from policyaudit.config import RetrievalConfig
from policyaudit.models import CandidatePage, EvidenceBlock
from policyaudit.retrieval.harvest import DEFAULT_RULES, LENIENT, STRICT, HarvestPolicy, ScoringRule, harvest_blocks
from policyaudit.utils.text import normalize_text

LOGGER = logging.getLogger(__name__)

CHUNK_SEPARATOR = "\n\n"


def format_chunk(position: int, document_id: str, page: int, text: str) -> str:
    return f'[{position}] {document_id} p.{page}\n"""{text}"""'


def pack_blocks(
    blocks: Sequence[EvidenceBlock],
    *,
    char_budget: int = 200_000,
    max_blocks: int = 100,
    overage_factor: float = 1.1,
    overage_chunks: int = 10,
) -> List[str]:
    """Greedily pack ranked blocks until the budget or block ceiling is hit.

    A chunk that would overflow ``char_budget`` is still taken while fewer than
    ``overage_chunks`` chunks are packed, provided the total stays within
    ``char_budget * overage_factor``. Every chunk is charged for its separator.
    """
    out: List[str] = []
    used = 0
    for block in blocks:
        if len(out) >= max_blocks:
            break
        chunk = format_chunk(len(out) + 1, block.document_id, block.page, block.text)
        if used + len(chunk) > char_budget:
            within_overage = used + len(chunk) <= char_budget * overage_factor
            if not (len(out) < overage_chunks and within_overage):
                break
        out.append(chunk)
        used += len(chunk) + len(CHUNK_SEPARATOR)
    return out


def pack_pages(
    pages: Sequence[CandidatePage], *, char_budget: int = 200_000, fallback_pages: int = 20
) -> List[str]:
    """Coarse fallback: leading pages, each truncated to an even budget share."""
    selected = list(pages[:fallback_pages])
    if not selected:
        return []
    share = char_budget // len(selected)
    out: List[str] = []
    for page in selected:
        out.append(format_chunk(len(out) + 1, page.document_id, page.page, normalize_text(page.text)[:share]))
        if len(CHUNK_SEPARATOR.join(out)) > char_budget:
            break
    return out


@dataclass(slots=True)
class PackedContext:
    chunks: List[str] = field(default_factory=list)
    strategy: str = "none"

    @property
    def text(self) -> str:
        return CHUNK_SEPARATOR.join(self.chunks)

    def __len__(self) -> int:
        return len(self.chunks)


@dataclass(slots=True, frozen=True)
class PackingStrategy:
    """One step of the packing chain; accepted once it yields ``min_yield`` chunks."""

    name: str
    run: Callable[[str, Sequence[CandidatePage]], List[str]]
    min_yield: int


class ContextPacker:
    """Tries strict harvesting, then lenient harvesting, then whole pages.

    The largest result seen so far is carried forward, so a later strategy never
    shrinks what an earlier one produced.
    """

    def __init__(self, config: RetrievalConfig | None = None, *, rules: Sequence[ScoringRule] = DEFAULT_RULES) -> None:
        self.config = config or RetrievalConfig()
        self.rules = tuple(rules)
        self.strategies = (
            PackingStrategy(STRICT.name, self._harvest_and_pack(STRICT), self.config.min_chunks),
            PackingStrategy(LENIENT.name, self._harvest_and_pack(LENIENT), 1),
            PackingStrategy("whole_page", self._pack_whole_pages, 0),
        )

    def harvest(self, question: str, pages: Sequence[CandidatePage], policy: HarvestPolicy) -> List[EvidenceBlock]:
        return harvest_blocks(
            question,
            pages,
            policy,
            sent_window=self.config.sent_window,
            max_sent_chars=self.config.max_sent_chars,
            dedup_prefix_chars=self.config.dedup_prefix_chars,
            rules=self.rules,
        )

    def _harvest_and_pack(self, policy: HarvestPolicy) -> Callable[[str, Sequence[CandidatePage]], List[str]]:
        def run(question: str, pages: Sequence[CandidatePage]) -> List[str]:
            return pack_blocks(
                self.harvest(question, pages, policy),
                char_budget=self.config.char_budget,
                max_blocks=self.config.max_blocks,
                overage_factor=self.config.overage_factor,
                overage_chunks=self.config.overage_chunks,
            )

        return run

    def _pack_whole_pages(self, question: str, pages: Sequence[CandidatePage]) -> List[str]:
        return pack_pages(pages, char_budget=self.config.char_budget, fallback_pages=self.config.fallback_pages)

    def pack(self, question: str, pages: Sequence[CandidatePage]) -> PackedContext:
        best = PackedContext()
        for strategy in self.strategies:
            chunks = strategy.run(question, pages)
            LOGGER.debug("Strategy %s packed %d chunks", strategy.name, len(chunks))
            if len(chunks) >= len(best):
                best = PackedContext(chunks=chunks, strategy=strategy.name)
            if len(best) >= strategy.min_yield and len(best) > 0:
                return best
        return best
