"""
Query-scoped retrieval results and the retriever interface.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

import numpy as np

from .index import Chunk, Document


@dataclass
class RetrievedChunk:
    """A chunk with the relevance score of the current pipeline stage."""

    chunk: Chunk
    document: Document
    score: float
    original_score: Optional[float] = None
    expanded_context: Optional[str] = None
    source: str = "hybrid"

    @property
    def chunk_id(self) -> str:
        return self.chunk.id

    @property
    def relevance(self) -> float:
        """
        Hybrid similarity in [0, 1].

        Fusion and reranking replace `score` with rank-based values, so the
        hybrid score they keep in `original_score` is preferred.
        """
        value = self.score if self.original_score is None else self.original_score
        return min(1.0, max(0.0, value))

    @property
    def has_context(self) -> bool:
        return bool(self.expanded_context) or self.chunk.has_adjacent_context

    def text(self) -> str:
        """Content used for matching: the expanded window when present."""
        return self.expanded_context or self.chunk.content


@dataclass
class RAGResult:
    """Outcome of one retrieval query."""

    query: str
    chunks: List[RetrievedChunk] = field(default_factory=list)
    total_searched: int = 0
    search_time_ms: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.chunks


class Retriever(Protocol):
    """Protocol for retrieval implementations."""

    async def search(
        self,
        query_embedding: np.ndarray,
        query_text: Optional[str] = None,
        document_ids: Optional[Sequence[str]] = None,
        top_k: int = 5,
    ) -> List[RetrievedChunk]:
        """
        Search for chunks matching the query.

        Args:
            query_embedding: Embedding of the query variant
            query_text: Text used for the lexical pass (skipped when None)
            document_ids: Optional allow-list of documents
            top_k: Number of results to return

        Returns:
            List of RetrievedChunk objects sorted by score (descending)
        """
        ...
