"""
In-memory store, useful for tests and single-process sessions.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence

from localrag.rag.index import Chunk, Document, DocumentStatus, Embedding

from .base import DocumentNotFound, StoreStats, check_embedding_generation, next_boost

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Dict-backed ChunkStore; listings follow document upload time."""

    def __init__(self) -> None:
        self._documents: Dict[str, Document] = {}
        self._chunks: Dict[str, Chunk] = {}
        self._chunks_by_doc: Dict[str, List[str]] = {}
        self._embeddings: Dict[str, Embedding] = {}
        self._boosts: Dict[str, float] = {}

    # Documents

    async def put_document(self, document: Document) -> None:
        self._documents[document.id] = document

    async def get_document(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)

    async def list_documents(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        docs = sorted(self._documents.values(), key=lambda d: d.uploaded_at)
        return [d for d in docs if status is None or d.status == status]

    async def update_document(
        self,
        document_id: str,
        *,
        status: Optional[DocumentStatus] = None,
        error: Optional[str] = None,
        chunk_count: Optional[int] = None,
    ) -> Document:
        doc = self._documents.get(document_id)
        if doc is None:
            raise DocumentNotFound(document_id)
        changes = {}
        if status is not None:
            changes["status"] = status
            changes["error"] = error
        if chunk_count is not None:
            changes["chunk_count"] = chunk_count
        updated = dataclasses.replace(doc, **changes)
        self._documents[document_id] = updated
        return updated

    async def delete_document(self, document_id: str) -> None:
        self._drop_chunks(document_id)
        self._documents.pop(document_id, None)

    # Chunks

    def _drop_chunks(self, document_id: str) -> None:
        for chunk_id in self._chunks_by_doc.pop(document_id, []):
            self._chunks.pop(chunk_id, None)
            self._embeddings.pop(chunk_id, None)
            self._boosts.pop(chunk_id, None)

    async def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        if document_id not in self._documents:
            raise DocumentNotFound(document_id)
        ordered = sorted(chunks, key=lambda c: c.index)
        if [c.index for c in ordered] != list(range(len(ordered))):
            raise ValueError("Chunk indices must be contiguous from 0")
        self._drop_chunks(document_id)
        for chunk in ordered:
            self._chunks[chunk.id] = chunk
        self._chunks_by_doc[document_id] = [c.id for c in ordered]

    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        return self._chunks.get(chunk_id)

    async def get_chunks(self, chunk_ids: Sequence[str]) -> List[Chunk]:
        return [self._chunks[cid] for cid in chunk_ids if cid in self._chunks]

    async def get_chunks_by_document(self, document_id: str) -> List[Chunk]:
        return [self._chunks[cid] for cid in self._chunks_by_doc.get(document_id, [])]

    async def get_surrounding_chunks(
        self, document_id: str, index: int, window: int
    ) -> List[Chunk]:
        ids = self._chunks_by_doc.get(document_id, [])
        start = max(0, index - window)
        end = min(len(ids), index + window + 1)
        return [self._chunks[cid] for cid in ids[start:end]]

    # Embeddings

    def _generation(self) -> tuple[Optional[str], Optional[int]]:
        for emb in self._embeddings.values():
            return emb.model, emb.dimension
        return None, None

    async def put_embeddings(self, embeddings: Sequence[Embedding]) -> None:
        check_embedding_generation(embeddings, *self._generation())
        for emb in embeddings:
            if emb.chunk_id not in self._chunks:
                raise ValueError(f"Embedding for unknown chunk {emb.chunk_id}")
        for emb in embeddings:
            self._embeddings[emb.chunk_id] = emb

    async def get_all_embeddings(
        self, document_ids: Optional[Sequence[str]] = None
    ) -> List[Embedding]:
        allowed = None if document_ids is None else set(document_ids)
        selected = [
            e for e in self._embeddings.values() if allowed is None or e.document_id in allowed
        ]
        return sorted(selected, key=self._embedding_position)

    def _embedding_position(self, emb: Embedding) -> tuple:
        document = self._documents[emb.document_id]
        return document.uploaded_at, document.id, self._chunks[emb.chunk_id].index

    async def clear_embeddings(self) -> None:
        self._embeddings.clear()

    # Relevance feedback

    async def get_chunk_boosts(self, chunk_ids: Sequence[str]) -> Dict[str, float]:
        return {cid: self._boosts[cid] for cid in chunk_ids if cid in self._boosts}

    async def update_chunk_relevance(self, chunk_id: str, vote: str) -> float:
        if chunk_id not in self._chunks:
            raise ValueError(f"Unknown chunk {chunk_id!r}")
        boost = next_boost(self._boosts.get(chunk_id), vote)
        self._boosts[chunk_id] = boost
        logger.debug("Chunk %s relevance boost now %.2f (%s)", chunk_id, boost, vote)
        return boost

    async def get_stats(self) -> StoreStats:
        embeddings = list(self._embeddings.values())
        return StoreStats(
            documents=len(self._documents),
            chunks=len(self._chunks),
            embeddings=len(embeddings),
            by_document=dict(Counter(e.document_id for e in embeddings)),
            by_model=dict(Counter(e.model for e in embeddings)),
            dimension=embeddings[0].dimension if embeddings else 0,
        )
