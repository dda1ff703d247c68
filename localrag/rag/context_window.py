"""
Small-to-big expansion: widen shortlisted chunks with their neighbours from the same document.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from localrag.store.base import ChunkStore

from .index import Chunk
from .retriever import RetrievedChunk

logger = logging.getLogger(__name__)


def join_window(chunks: Sequence[Chunk]) -> str:
    """Concatenate neighbouring chunks in document order."""
    ordered = sorted(chunks, key=lambda c: c.index)
    return "\n\n".join(c.content for c in ordered)


async def expand_with_neighbors(
    results: Sequence[RetrievedChunk],
    *,
    store: ChunkStore,
    window: int = 1,
) -> List[RetrievedChunk]:
    """
    Attach an expanded window to each shortlisted result.

    Args:
        results: Candidate chunks (only these are expanded, never the corpus)
        store: Store used to fetch surrounding chunks
        window: Number of neighbours to include on each side

    Returns:
        The same results, with `expanded_context` set where neighbours exist.
    """
    if window <= 0:
        return list(results)

    expanded = 0
    for rc in results:
        neighbours = await store.get_surrounding_chunks(
            rc.chunk.document_id, rc.chunk.index, window
        )
        if len(neighbours) <= 1:
            continue
        rc.expanded_context = join_window(neighbours)
        expanded += 1

    logger.debug("Expanded %s of %s candidates (window=%s)", expanded, len(results), window)
    return list(results)
