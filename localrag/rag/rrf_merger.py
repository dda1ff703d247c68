"""
Reciprocal Rank Fusion (RRF) for combining results from multiple query variants.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from .retriever import RetrievedChunk

DEFAULT_RRF_K = 60


def rrf_merge(
    result_lists: Sequence[Sequence[Tuple[str, float]]],
    k_rrf: int = DEFAULT_RRF_K,
    limit: Optional[int] = None,
) -> List[Tuple[str, float]]:
    """
    Merge multiple ranked lists using Reciprocal Rank Fusion.

    Args:
        result_lists: Ranked lists [(chunk_id, score), ...] sorted by score desc.
                      Only the rank is used, never the score.
        k_rrf: Constant in 1 / (k_rrf + rank + 1), typically 60.
        limit: Number of final results to return (all when None).

    Returns:
        Merged list of (chunk_id, score) tuples sorted by RRF score.
    """
    scores: Dict[str, float] = defaultdict(float)

    for results in result_lists:
        for rank, (chunk_id, _score) in enumerate(results):
            scores[chunk_id] += 1.0 / (k_rrf + rank + 1)

    merged = sorted(scores.items(), key=lambda x: x[1], reverse=True)
    if limit is not None:
        merged = merged[:limit]
    return merged


def fuse_retrieved(
    result_lists: Sequence[Sequence[RetrievedChunk]],
    k_rrf: int = DEFAULT_RRF_K,
) -> List[RetrievedChunk]:
    """RRF over RetrievedChunk lists; the first-seen instance of each chunk is kept."""
    by_id: Dict[str, RetrievedChunk] = {}
    id_lists: List[List[Tuple[str, float]]] = []
    for results in result_lists:
        ids: List[Tuple[str, float]] = []
        for rc in results:
            by_id.setdefault(rc.chunk_id, rc)
            ids.append((rc.chunk_id, rc.score))
        id_lists.append(ids)

    fused: List[RetrievedChunk] = []
    for chunk_id, score in rrf_merge(id_lists, k_rrf=k_rrf):
        rc = by_id[chunk_id]
        if rc.original_score is None:
            rc.original_score = rc.score
        rc.score = score
        rc.source = "fused"
        fused.append(rc)
    return fused
