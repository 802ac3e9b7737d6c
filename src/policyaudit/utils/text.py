"""Text helpers: whitespace normalization and sentence segmentation."""

from __future__ import annotations

import re
from typing import Iterable, List

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.?!])\s+(?=[A-Z(])")


def normalize_text(text: str) -> str:
    """Replace non-breaking spaces, collapse whitespace runs and trim."""
    return _WHITESPACE.sub(" ", text.replace("\u00a0", " ")).strip()


def split_sentences(text: str) -> List[str]:
    """Split after ``.``, ``?`` or ``!`` when followed by a capital or ``(``.

    Falls back to the whole normalized text as a single sentence.
    """
    cleaned = normalize_text(text)
    parts = [part.strip() for part in _SENTENCE_BOUNDARY.split(cleaned)]
    parts = [part for part in parts if part]
    return parts if parts else [cleaned]


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
