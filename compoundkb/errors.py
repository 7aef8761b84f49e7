"""Exceptions raised by the knowledge engine.

None of these should escape into the invoking workflow: ``pipeline.capture_session``
catches them and degrades to "knowledge capture skipped".
"""

from __future__ import annotations


class CompoundKBError(Exception):
    """Base class for engine errors."""


class ExtractionError(CompoundKBError):
    """The transcript was malformed or empty."""


class NotFoundError(CompoundKBError):
    """A Store lookup missed."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class ConcurrentUpdateConflict(CompoundKBError):
    """A put raced another writer on the same document id."""

    def __init__(self, doc_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Revision conflict on {doc_id}: expected {expected}, found {actual}"
        )
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual
