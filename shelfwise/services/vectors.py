"""Vector helpers for embeddings and taste vectors."""

from typing import Sequence

import numpy as np


def as_vector(values) -> np.ndarray:
    """Coerce a list, pgvector value or array into a 1-D float array."""
    if values is None:
        return np.array([], dtype=float)
    return np.asarray(values, dtype=float).ravel()


def normalize_vector(v: np.ndarray) -> np.ndarray:
    """Scale to unit L2 length; the zero vector is returned unchanged."""
    norm = np.linalg.norm(v)
    if norm == 0:
        return v
    return v / norm


def weighted_average_vectors(vectors: Sequence[np.ndarray], weights: Sequence[float]) -> np.ndarray:
    """Weighted mean of equally sized vectors (weights are non-negative coefficients)."""
    if len(vectors) == 0:
        return np.array([], dtype=float)
    if len(vectors) != len(weights):
        raise ValueError("Vectors and weights must have the same length")

    matrix = np.vstack([as_vector(v) for v in vectors])
    w = np.asarray(weights, dtype=float)
    total = w.sum()
    weighted = w @ matrix
    if total == 0:
        return weighted
    return weighted / total


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero length."""
    a = as_vector(a)
    b = as_vector(b)
    if a.shape != b.shape:
        raise ValueError("Vectors must have the same dimension")

    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator == 0:
        return 0.0
    return float(np.dot(a, b) / denominator)
