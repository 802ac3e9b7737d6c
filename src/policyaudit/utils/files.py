"""Utility helpers for working with input files."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Iterable, Iterator, List

from policyaudit.models import Question


def iter_pdf_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield each PDF once, descending into directories in sorted order."""
    seen: set[Path] = set()
    for item in inputs:
        if item.is_dir():
            candidates = sorted(p for p in item.rglob("*") if p.is_file() and p.suffix.lower() == ".pdf")
        elif item.is_file() and item.suffix.lower() == ".pdf":
            candidates = [item]
        else:
            continue
        for path in candidates:
            if path not in seen:
                seen.add(path)
                yield path


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def load_questions(path: Path, start: int = 1) -> List[Question]:
    """Read questions from JSON or plain text.

    JSON may be a list of strings, a list of ``{"id", "text"}`` objects, or an
    object with a ``questions`` key holding either. Plain text is one question
    per non-blank line. Missing ids are numbered from ``start``.
    """
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() != ".json":
        lines = [line.strip() for line in raw.splitlines() if line.strip()]
        return [Question(id=str(i), text=line) for i, line in enumerate(lines, start=start)]

    data = json.loads(raw)
    if isinstance(data, dict):
        data = data.get("questions", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a list of questions")

    questions: List[Question] = []
    for i, item in enumerate(data, start=1):
        number = start + i - 1
        if isinstance(item, str):
            questions.append(Question(id=str(number), text=item))
        elif isinstance(item, dict) and isinstance(item.get("text"), str):
            questions.append(Question(id=str(item.get("id") or number), text=item["text"]))
        else:
            raise ValueError(f"Invalid question entry #{i} in {path}")
    return questions
