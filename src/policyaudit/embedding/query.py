"""Query preprocessing and vectorization."""

from __future__ import annotations

import logging
import re

import numpy as np

from policyaudit.embedding.encoder import QUERY_TASK, EmbeddingProvider
from policyaudit.errors import EmbeddingError

LOGGER = logging.getLogger(__name__)

# Abbreviations and synonyms appended next to their source term to widen recall.
QUERY_EXPANSIONS: dict[str, str] = {
    "PCP": "primary care provider physician doctor",
    "MCP": "plan CalOptima Health organization entity",
    "member": "enrollee beneficiary patient client",
    "auth": "authorization prior auth preauthorization approval permission",
    "notify": "inform advise alert communicate notification",
    "days": "calendar days business days working days",
    "within": "no later than not to exceed by",
    "shall": "must will ensure require mandate",
    "claim": "claims billing",
    "EOB": "explanation of benefits remittance advice denial letter",
    "hospice": "end of life care palliative",
    "retrospective": "retro retroactive",
    "direct payment": "direct pay",
    "room and board": "room board accommodation",
}

QUERY_BOILERPLATE = " policy procedure guideline standard requirement compliance healthcare"

_EXPANSION_PATTERNS = [
    (re.compile(rf"\b{re.escape(term.lower())}\b", re.IGNORECASE), f"{term} {expansion}")
    for term, expansion in QUERY_EXPANSIONS.items()
]


def preprocess_query(query: str) -> str:
    """Lower-case, expand domain terms in map order, then append boilerplate.

    Expansions are applied sequentially, so text inserted by an earlier entry
    can itself be expanded by a later one.
    """
    processed = query.lower()
    for pattern, replacement in _EXPANSION_PATTERNS:
        processed = pattern.sub(lambda _m, r=replacement: r, processed)
    return processed + QUERY_BOILERPLATE


class QueryVectorizer:
    """Turns question text into a query vector with exactly one provider call."""

    def __init__(self, provider: EmbeddingProvider) -> None:
        self.provider = provider

    async def vectorize(self, question: str) -> np.ndarray:
        processed = preprocess_query(question)
        LOGGER.debug("Embedding query (%d chars) with %s", len(processed), self.provider.model_id)
        vector = np.asarray(await self.provider.embed(processed, task_type=QUERY_TASK), dtype="float32")
        if vector.ndim != 1:
            raise EmbeddingError(f"Query vector must be one-dimensional, got shape {vector.shape}")
        return vector
