"""
Dense semantic scoring: cosine similarity between a query embedding and stored chunk embeddings.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .index import Embedding


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity in [-1, 1]; 0 when either vector has zero magnitude."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Vectors must have the same length ({a.shape} != {b.shape})")
    magnitude = float(np.linalg.norm(a) * np.linalg.norm(b))
    if magnitude == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / magnitude, -1.0, 1.0))


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of the query against each row of matrix (n, dim)."""
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    if m.size == 0:
        return np.zeros(0)
    if m.ndim != 2 or m.shape[1] != q.shape[0]:
        raise ValueError(f"Query dimension {q.shape[0]} does not match embeddings {m.shape}")
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    sims = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    return np.clip(sims, -1.0, 1.0)


def normalize_scores(scores: np.ndarray) -> np.ndarray:
    """Clamp negatives to 0 and scale by the batch maximum into [0, 1]."""
    s = np.clip(np.asarray(scores, dtype=np.float64), 0.0, None)
    if s.size == 0:
        return s
    top = float(s.max())
    if top <= 0:
        return np.zeros_like(s)
    return s / top


def embedding_matrix(embeddings: Sequence[Embedding]) -> np.ndarray:
    if not embeddings:
        return np.zeros((0, 0), dtype=np.float32)
    return np.vstack([e.vector for e in embeddings])
