"""
Vector Aggregator.

Combines per-chunk embeddings into one document vector (average, max, first)
or keeps them all. Also provides the usual similarity helpers.
"""

from typing import Sequence, Union

import numpy as np

from .exceptions import ConfigurationError
from .schemas import AggregationResult, AggregationStrategy, MultipleVectors, SingleVector


def _as_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Validate equal dimensions and stack into a 2-D float array."""
    if len(vectors) == 0:
        raise ConfigurationError("Cannot aggregate empty vector array")

    dimensions = len(vectors[0])
    if dimensions == 0:
        raise ConfigurationError("Cannot aggregate zero-dimension vectors")

    for i, vector in enumerate(vectors[1:], start=1):
        if len(vector) != dimensions:
            raise ConfigurationError(
                f"Vector dimension mismatch: expected {dimensions}, got {len(vector)} at index {i}",
                details={"index": i, "expected": dimensions, "actual": len(vector)}
            )

    return np.asarray(vectors, dtype=float)


def aggregate_vectors(
    vectors: Sequence[Sequence[float]],
    strategy: AggregationStrategy = "average"
) -> AggregationResult:
    """
    Aggregate chunk vectors.

    Args:
        vectors: Non-empty list of equal-length vectors
        strategy: "average", "max", "first" or "all"

    Returns:
        SingleVector for average/max/first, MultipleVectors for all

    Raises:
        ConfigurationError: empty input, zero-dimension or mismatched vectors, unknown strategy
    """
    matrix = _as_matrix(vectors)
    dimensions = matrix.shape[1]

    if strategy == "average":
        return SingleVector(vector=matrix.mean(axis=0).tolist(), dimensions=dimensions)
    elif strategy == "max":
        return SingleVector(vector=matrix.max(axis=0).tolist(), dimensions=dimensions)
    elif strategy == "first":
        return SingleVector(vector=list(vectors[0]), dimensions=dimensions)
    elif strategy == "all":
        return MultipleVectors(vectors=[list(v) for v in vectors], dimensions=dimensions)
    else:
        raise ConfigurationError(f"Unknown aggregation strategy: {strategy}")


def _check_pair(a: Sequence[float], b: Sequence[float]) -> tuple[np.ndarray, np.ndarray]:
    if len(a) != len(b):
        raise ConfigurationError(f"Vector dimension mismatch: {len(a)} vs {len(b)}")
    return np.asarray(a, dtype=float), np.asarray(b, dtype=float)


def normalize_vector(vector: Sequence[float]) -> list[float]:
    """Scale to unit length. Zero vectors are returned unchanged."""
    arr = np.asarray(vector, dtype=float)
    magnitude = np.linalg.norm(arr)
    if magnitude == 0:
        return list(vector)
    return (arr / magnitude).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 when either vector has zero magnitude."""
    va, vb = _check_pair(a, b)
    magnitude = np.linalg.norm(va) * np.linalg.norm(vb)
    if magnitude == 0:
        return 0.0
    return float(np.dot(va, vb) / magnitude)


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    va, vb = _check_pair(a, b)
    return float(np.linalg.norm(va - vb))


def dot_product(a: Sequence[float], b: Sequence[float]) -> float:
    va, vb = _check_pair(a, b)
    return float(np.dot(va, vb))


def get_dimensions(vectors: Union[Sequence[float], Sequence[Sequence[float]]]) -> int:
    """Length of a single vector, or of the first vector in a list of vectors."""
    if len(vectors) == 0:
        return 0
    first = vectors[0]
    if isinstance(first, (int, float)):
        return len(vectors)
    return len(first)
