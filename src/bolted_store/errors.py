"""
Exceptions raised by the bolted vector store.
"""

from __future__ import annotations


class BoltedStoreError(Exception):
    """Base exception for all store errors."""


class DimensionMismatch(BoltedStoreError, ValueError):
    """
    Vector length disagrees with the configured or expected dimension.

    Raised when:
    - structural and semantic components have different lengths
    - an inserted or queried vector does not match the store dimension

    Not retryable: this is a programming or configuration error.
    """

    def __init__(self, expected: int, actual: int, *, context: str = "vector") -> None:
        super().__init__(
            f"Dimension mismatch for {context}: expected {expected}, found {actual}"
        )
        self.expected = expected
        self.actual = actual


class ChunkLoadError(BoltedStoreError):
    """A chunk file that should exist is missing, unreadable, or corrupt."""

    def __init__(self, chunk_id: str, message: str) -> None:
        super().__init__(f"Failed to load chunk {chunk_id!r}: {message}")
        self.chunk_id = chunk_id


class ChunkPersistenceError(BoltedStoreError):
    """
    A dirty chunk could not be written to disk.

    The chunk stays resident and dirty so the save can be retried.
    """

    def __init__(self, chunk_id: str, message: str) -> None:
        super().__init__(f"Failed to persist chunk {chunk_id!r}: {message}")
        self.chunk_id = chunk_id


class EntityNotFound(BoltedStoreError, KeyError):
    """Lookup, update or removal of an identifier the store does not hold."""

    def __init__(self, identifier: str) -> None:
        super().__init__(identifier)
        self.identifier = identifier

    def __str__(self) -> str:
        return f"Unknown embedding identifier: {self.identifier!r}"


class UnsupportedBackend(BoltedStoreError):
    """Requested index type or backend capability is not implemented."""


class ExternalGenerationFailure(BoltedStoreError):
    """
    The text-generation collaborator errored or timed out.

    Propagated as-is; retry policy belongs to the caller.
    """
