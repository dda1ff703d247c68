"""
RAG (Retrieval-Augmented Generation) module.

Provides retrieval components for hybrid search over uploaded documents:
- Adaptive semantic chunking
- BM25 lexical scoring
- Dense semantic scoring
- Hybrid search with small-to-big expansion and reranking
- Query rewriting/expansion and RRF fusion
"""

from .bm25 import BM25Index
from .chunking import SemanticChunk, chunk_text, detect_document_type
from .config import RAGConfig, RerankConfig
from .dense import cosine_similarity, normalize_scores
from .hybrid import HybridSearcher
from .index import Chunk, ChunkMetadata, ChunkType, Document, DocumentStatus, Embedding
from .query_rewriter import (
    ExpansionResult,
    FallbackExpansion,
    ParsedExpansion,
    expand_query,
    extract_key_terms,
    rewrite_query,
)
from .reranker import Reranker, llm_rerank
from .retriever import RAGResult, RetrievedChunk, Retriever
from .rrf_merger import fuse_retrieved, rrf_merge

__all__ = [
    "BM25Index",
    "Chunk",
    "ChunkMetadata",
    "ChunkType",
    "Document",
    "DocumentStatus",
    "Embedding",
    "ExpansionResult",
    "FallbackExpansion",
    "HybridSearcher",
    "ParsedExpansion",
    "RAGConfig",
    "RAGResult",
    "RerankConfig",
    "Reranker",
    "RetrievedChunk",
    "Retriever",
    "SemanticChunk",
    "chunk_text",
    "cosine_similarity",
    "detect_document_type",
    "expand_query",
    "extract_key_terms",
    "fuse_retrieved",
    "llm_rerank",
    "normalize_scores",
    "rewrite_query",
    "rrf_merge",
]
