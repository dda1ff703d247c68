"""
Persistent store interface consumed by the retrieval core.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Sequence

if TYPE_CHECKING:
    from localrag.rag.index import Chunk, Document, DocumentStatus, Embedding

MIN_BOOST = 0.5
MAX_BOOST = 2.0
BOOST_STEP = 0.1


class EmbeddingModelMismatch(ValueError):
    """Raised when embeddings of another model or dimension are mixed into a store."""


class DocumentNotFound(ValueError):
    """Raised when an operation refers to a document the store does not hold."""


@dataclass
class StoreStats:
    """Row counts plus embedding counts per document and per model."""

    documents: int = 0
    chunks: int = 0
    embeddings: int = 0
    by_document: Dict[str, int] = field(default_factory=dict)
    by_model: Dict[str, int] = field(default_factory=dict)
    dimension: int = 0


class BoostProvider(Protocol):
    """Read-only access to learned per-chunk relevance factors."""

    async def get_chunk_boosts(self, chunk_ids: Sequence[str]) -> Dict[str, float]:
        ...


class ChunkStore(BoostProvider, Protocol):
    """Documents, chunks, embeddings and relevance boosts."""

    async def put_document(self, document: Document) -> None:
        ...

    async def get_document(self, document_id: str) -> Optional[Document]:
        ...

    async def list_documents(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        ...

    async def update_document(
        self,
        document_id: str,
        *,
        status: Optional[DocumentStatus] = None,
        error: Optional[str] = None,
        chunk_count: Optional[int] = None,
    ) -> Document:
        ...

    async def delete_document(self, document_id: str) -> None:
        ...

    async def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        """Atomically replace all chunks of a document, dropping its embeddings."""
        ...

    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        ...

    async def get_chunks(self, chunk_ids: Sequence[str]) -> List[Chunk]:
        ...

    async def get_chunks_by_document(self, document_id: str) -> List[Chunk]:
        ...

    async def get_surrounding_chunks(
        self, document_id: str, index: int, window: int
    ) -> List[Chunk]:
        """Chunks with index in [index - window, index + window], in document order."""
        ...

    async def put_embeddings(self, embeddings: Sequence[Embedding]) -> None:
        ...

    async def get_all_embeddings(
        self, document_ids: Optional[Sequence[str]] = None
    ) -> List[Embedding]:
        """Embeddings ordered by document upload time, then chunk index."""
        ...

    async def clear_embeddings(self) -> None:
        """Drop every embedding, starting a new embedding-model generation."""
        ...

    async def update_chunk_relevance(self, chunk_id: str, vote: str) -> float:
        ...

    async def get_stats(self) -> StoreStats:
        ...


def next_boost(current: Optional[float], vote: str) -> float:
    """Move a boost one step up or down, clamped to [MIN_BOOST, MAX_BOOST]."""
    if vote not in ("up", "down"):
        raise ValueError(f"vote must be 'up' or 'down', got {vote!r}")
    change = BOOST_STEP if vote == "up" else -BOOST_STEP
    base = 1.0 if current is None else current
    return round(max(MIN_BOOST, min(MAX_BOOST, base + change)), 6)


def check_embedding_generation(
    embeddings: Sequence[Embedding],
    model: Optional[str],
    dimension: Optional[int],
) -> None:
    """
    Validate a batch against the store's embedding generation.

    `model`/`dimension` are None for an empty store, in which case the first
    embedding of the batch fixes them.
    """
    for emb in embeddings:
        if model is None:
            model, dimension = emb.model, emb.dimension
        if emb.model != model:
            raise EmbeddingModelMismatch(
                f"Store holds embeddings from {model!r}, got {emb.model!r}"
            )
        if emb.dimension != dimension:
            raise EmbeddingModelMismatch(
                f"Store holds {dimension}-dim embeddings, got {emb.dimension}"
            )
