"""Exception hierarchy shared by the retrieval engine and its collaborators."""

from __future__ import annotations


class PolicyAuditError(Exception):
    """Base class for policyaudit errors."""


class EmbeddingError(PolicyAuditError):
    """Query vectorization failed: transport error, bad status or malformed payload."""


class IndexLoadError(PolicyAuditError):
    """The embedding index is missing or corrupt."""


class DimensionMismatchError(PolicyAuditError, ValueError):
    """Query vector dimension does not match the embedding index."""

    def __init__(self, expected: int, actual: tuple[int, ...]) -> None:
        super().__init__(f"Query vector has shape {actual}, index expects ({expected},)")
        self.expected = expected
        self.actual = actual
