"""Exception hierarchy for docvector."""

from __future__ import annotations


class DocVectorError(Exception):
    """Base class for errors raised by docvector components."""


class StoreError(DocVectorError):
    """Raised when the vector store cannot satisfy a request."""


class DimensionMismatchError(StoreError, ValueError):
    """Raised when a vector's length disagrees with its collection's schema."""

    def __init__(self, collection: str, expected: int, actual: int) -> None:
        self.collection = collection
        self.expected = expected
        self.actual = actual
        super().__init__(f"Collection {collection} expects dim={expected}, got dim={actual}")


class ModelMismatchError(StoreError, ValueError):
    """Raised when a batch was embedded by a different model than its collection."""

    def __init__(self, collection: str, expected: str, actual: str) -> None:
        self.collection = collection
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Collection {collection} holds '{expected}' vectors; drop and reindex to use '{actual}'"
        )


class EmbeddingError(DocVectorError):
    """Raised when the embedding backend fails or returns malformed output."""


class IndexerStateError(DocVectorError):
    """Raised on an illegal indexer state transition."""


class IndexerBusyError(IndexerStateError):
    """Raised when ``index_all`` is invoked while a run is active."""


class IndexingCancelled(DocVectorError):
    """Signals a cooperative cancellation observed at a batch boundary."""


__all__ = [
    "DocVectorError",
    "StoreError",
    "DimensionMismatchError",
    "ModelMismatchError",
    "EmbeddingError",
    "IndexerStateError",
    "IndexerBusyError",
    "IndexingCancelled",
]
