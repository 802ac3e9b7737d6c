"""Sentence-level evidence harvesting.

Candidate pages are split into sentences, every sentence is scored with a
battery of domain patterns, and each surviving sentence is widened into a
window of neighbouring sentences. The resulting evidence blocks are ranked
by sentence score plus the page's inherited base score.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from policyaudit.models import CandidatePage, EvidenceBlock
from policyaudit.utils.text import normalize_text, split_sentences

OBLIGATION_WEIGHT = 3.0
DAY_COUNT_WEIGHT = 3.0
TOPIC_WEIGHT = 2.0
MENTION_WEIGHT = 1.0
POLICY_TERM_WEIGHT = 1.0
MANDATE_WEIGHT = 1.5
TIMING_WEIGHT = 1.0

QUESTION_NUMBER_BONUS = 2.0
SHORT_SENTENCE_CHARS = 30
LONG_SENTENCE_CHARS = 500
LENGTH_PENALTY = 0.3

_SPELLED_NUMBERS = "fourteen|ten|fifteen|thirty|seven|two|three|five|twelve"
_QUESTION_NUMBER = re.compile(r"\b(\d{1,3})\b")


@dataclass(slots=True, frozen=True)
class ScoringRule:
    name: str
    pattern: re.Pattern[str]
    weight: float

    def score(self, sentence: str) -> float:
        return self.weight if self.pattern.search(sentence) else 0.0


def _rule(name: str, pattern: str, weight: float) -> ScoringRule:
    return ScoringRule(name, re.compile(pattern, re.IGNORECASE), weight)


DEFAULT_RULES: tuple[ScoringRule, ...] = (
    _rule("obligation", r"\b(shall|must|will|ensure|require)\b", OBLIGATION_WEIGHT),
    _rule(
        "day_count",
        rf"\b(?:\d{{1,3}}|{_SPELLED_NUMBERS})(?:\s*\(\d{{1,3}}\))?\s+(?:calendar|business)\s+days?\b",
        DAY_COUNT_WEIGHT,
    ),
    _rule("authorization", r"\b(prior\s+)?authori[sz]e?[sd]?|pre[-\s]?auth(?:orization)?|approval\b", TOPIC_WEIGHT),
    _rule("hospice", r"\bhospice\b", TOPIC_WEIGHT),
    _rule("retrospective", r"\bretrospective\b", TOPIC_WEIGHT),
    _rule("direct_payment", r"\bdirect\s+payment\b", TOPIC_WEIGHT),
    _rule("pcp", r"\b(pcp|primary\s+care\s+provider)\b", TOPIC_WEIGHT),
    _rule("notify", r"\bnotify|notification\b", MENTION_WEIGHT),
    _rule("claim", r"\bclaims?\b", MENTION_WEIGHT),
    _rule("member", r"\b(member|enrollee|beneficiary)\b", MENTION_WEIGHT),
    _rule("room_and_board", r"\broom\s+and\s+board\b", TOPIC_WEIGHT),
    _rule("eob", r"\b(explanation\s+of\s+benefits|eob|remittance\s+advice|denial\s+letter)\b", TOPIC_WEIGHT),
    _rule("policy_term", r"\b(policy|procedure|guideline|standard|requirement|compliance)\b", POLICY_TERM_WEIGHT),
    _rule("mandate", r"\b(shall|must|will|ensure|require|mandate)\b", MANDATE_WEIGHT),
    _rule("timing", r"\b(within|no later than|not to exceed|prior to|before)\b", TIMING_WEIGHT),
)


def sentence_score(
    question: str, sentence: str, rules: Sequence[ScoringRule] = DEFAULT_RULES
) -> float:
    """Heuristic relevance of ``sentence``; may be negative for bare short/long text."""
    score = sum(rule.score(sentence) for rule in rules)

    number = _QUESTION_NUMBER.search(question)
    if number and number.group(1) in sentence.lower():
        score += QUESTION_NUMBER_BONUS

    if len(sentence) < SHORT_SENTENCE_CHARS:
        score -= LENGTH_PENALTY
    if len(sentence) > LONG_SENTENCE_CHARS:
        score -= LENGTH_PENALTY
    return score


@dataclass(slots=True, frozen=True)
class HarvestPolicy:
    """Which sentences survive and how their combined score is floored."""

    name: str
    min_score: float
    inclusive: bool
    score_floor: float | None = None

    def accepts(self, score: float) -> bool:
        return score >= self.min_score if self.inclusive else score > self.min_score

    def combine(self, sentence_score: float, base_score: float) -> float:
        combined = sentence_score + base_score
        if self.score_floor is not None:
            combined = max(combined, self.score_floor)
        return combined


STRICT = HarvestPolicy("strict", min_score=0.0, inclusive=False)
LENIENT = HarvestPolicy("lenient", min_score=-1.0, inclusive=True, score_floor=0.1)


def _window(sentences: Sequence[str], i: int, sent_window: int, max_sent_chars: int) -> str:
    lo = max(0, i - sent_window)
    hi = min(len(sentences), i + sent_window + 1)
    return normalize_text(" ".join(s[:max_sent_chars] for s in sentences[lo:hi]))


def dedupe_blocks(blocks: Iterable[EvidenceBlock], *, prefix_chars: int = 160) -> List[EvidenceBlock]:
    """Keep the first block per (document, page, leading text) key."""
    seen: set[tuple[str, int, str]] = set()
    out: List[EvidenceBlock] = []
    for block in blocks:
        key = block.key(prefix_chars)
        if key in seen:
            continue
        seen.add(key)
        out.append(block)
    return out


def harvest_blocks(
    question: str,
    pages: Iterable[CandidatePage],
    policy: HarvestPolicy = STRICT,
    *,
    sent_window: int = 2,
    max_sent_chars: int = 600,
    dedup_prefix_chars: int = 160,
    rules: Sequence[ScoringRule] = DEFAULT_RULES,
) -> List[EvidenceBlock]:
    """Return deduplicated evidence blocks sorted by descending score."""
    blocks: List[EvidenceBlock] = []
    for page in pages:
        sentences = split_sentences(page.text)
        for i, sentence in enumerate(sentences):
            score = sentence_score(question, sentence[:max_sent_chars], rules)
            if not policy.accepts(score):
                continue
            blocks.append(
                EvidenceBlock(
                    document_id=page.document_id,
                    page=page.page,
                    text=_window(sentences, i, sent_window, max_sent_chars),
                    score=policy.combine(score, page.base_score),
                )
            )

    blocks.sort(key=lambda b: b.score, reverse=True)
    return dedupe_blocks(blocks, prefix_chars=dedup_prefix_chars)
