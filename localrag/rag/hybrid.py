"""
Hybrid searcher combining BM25 and dense scores over the stored chunk embeddings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from localrag.store.base import BoostProvider, ChunkStore

from .bm25 import BM25Index
from .config import RAGConfig
from .context_window import expand_with_neighbors
from .dense import cosine_scores, embedding_matrix, normalize_scores
from .index import Chunk, Document, DocumentStatus, Embedding
from .reranker import Reranker
from .retriever import RetrievedChunk

logger = logging.getLogger(__name__)


@dataclass
class HybridSearcher:
    """
    Hybrid searcher over a ChunkStore.

    The relevance-boost table is an explicit collaborator; by default the
    store itself provides it.
    """

    store: ChunkStore
    config: RAGConfig = field(default_factory=RAGConfig)
    boosts: Optional[BoostProvider] = None
    reranker: Optional[Reranker] = None

    def __post_init__(self) -> None:
        if self.boosts is None:
            self.boosts = self.store
        if self.reranker is None:
            self.reranker = Reranker(self.config.rerank)

    async def _load_corpus(
        self, document_ids: Optional[Sequence[str]]
    ) -> tuple[List[Embedding], Dict[str, Chunk], Dict[str, Document]]:
        """Embeddings, chunks and documents for ready documents only."""
        embeddings = await self.store.get_all_embeddings(document_ids)
        documents: Dict[str, Document] = {}
        for doc_id in dict.fromkeys(e.document_id for e in embeddings):
            doc = await self.store.get_document(doc_id)
            if doc is not None and doc.status == DocumentStatus.READY:
                documents[doc_id] = doc
        embeddings = [e for e in embeddings if e.document_id in documents]
        chunks = {c.id: c for c in await self.store.get_chunks([e.chunk_id for e in embeddings])}
        embeddings = [e for e in embeddings if e.chunk_id in chunks]
        return embeddings, chunks, documents

    def _hybrid_scores(
        self,
        query_embedding: np.ndarray,
        query_text: Optional[str],
        embeddings: Sequence[Embedding],
        chunks: Dict[str, Chunk],
    ) -> np.ndarray:
        semantic = normalize_scores(cosine_scores(query_embedding, embedding_matrix(embeddings)))
        if not query_text:
            return semantic * self.config.semantic_weight

        index = BM25Index.from_documents(
            [(e.chunk_id, chunks[e.chunk_id].content) for e in embeddings],
            k1=self.config.bm25_k1,
            b=self.config.bm25_b,
        )
        lexical_by_id = dict(index.search(query_text))
        lexical = normalize_scores(
            np.array([lexical_by_id.get(e.chunk_id, 0.0) for e in embeddings])
        )
        return self.config.semantic_weight * semantic + self.config.lexical_weight * lexical

    async def _apply_boosts(self, candidates: List[RetrievedChunk]) -> List[RetrievedChunk]:
        boosts = await self.boosts.get_chunk_boosts([rc.chunk_id for rc in candidates])
        changed = False
        for rc in candidates:
            factor = boosts.get(rc.chunk_id, 1.0)
            if factor != 1.0:
                rc.score *= factor
                changed = True
        if changed:
            candidates.sort(key=lambda r: r.score, reverse=True)
        return candidates

    async def search(
        self,
        query_embedding: np.ndarray,
        query_text: Optional[str] = None,
        document_ids: Optional[Sequence[str]] = None,
        top_k: int = 5,
    ) -> List[RetrievedChunk]:
        """
        Search for top-k chunks matching the query.

        Implements the Retriever protocol.
        """
        embeddings, chunks, documents = await self._load_corpus(document_ids)
        if not embeddings:
            logger.info("No ready embeddings to search")
            return []

        scores = self._hybrid_scores(query_embedding, query_text, embeddings, chunks)

        # Stable sort: ties keep store (document) order.
        order = sorted(range(len(embeddings)), key=lambda i: -scores[i])
        candidate_k = max(top_k * 3, self.config.candidate_floor)
        candidates = [
            RetrievedChunk(
                chunk=chunks[embeddings[i].chunk_id],
                document=documents[embeddings[i].document_id],
                score=float(scores[i]),
            )
            for i in order[:candidate_k]
        ]

        candidates = await expand_with_neighbors(
            candidates, store=self.store, window=self.config.context_window
        )
        candidates = await self._apply_boosts(candidates)
        candidates = self.reranker.rerank(candidates, query_text or "")

        results = [rc for rc in candidates if rc.score >= self.config.min_relevance][:top_k]
        logger.info(
            "Hybrid search over %s chunks: %s candidates, %s results",
            len(embeddings),
            len(candidates),
            len(results),
        )
        return results
