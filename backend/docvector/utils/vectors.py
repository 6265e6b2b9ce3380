"""Vector math helpers shared by the store, search, and analysis layers."""

from __future__ import annotations

from typing import Sequence

import numpy as np

VECTOR_DTYPE = np.float32


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Coerce ``values`` to a 1-d float32 array."""
    return np.asarray(values, dtype=VECTOR_DTYPE).reshape(-1)


def norm(vector: np.ndarray) -> float:
    return float(np.linalg.norm(vector))


def cosine(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; 0.0 when either vector has zero length."""
    na, nb = norm(a), norm(b)
    if na == 0 or nb == 0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))


def cosine_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine distance from ``query`` to every row of ``matrix``.

    Rows (or a query) with zero length get distance 1.0, i.e. similarity 0.
    """
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    row_norms = np.linalg.norm(matrix, axis=1)
    query_norm = norm(query)
    denom = row_norms * query_norm
    dots = matrix @ query
    sims = np.divide(dots, denom, out=np.zeros_like(dots, dtype=np.float64), where=denom != 0)
    return 1.0 - sims


def to_blob(vector: np.ndarray) -> bytes:
    return as_vector(vector).tobytes()


def from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=VECTOR_DTYPE).copy()


__all__ = [
    "VECTOR_DTYPE",
    "as_vector",
    "norm",
    "cosine",
    "cosine_distances",
    "to_blob",
    "from_blob",
]
