"""
Storage backends for documents, chunks, embeddings and relevance feedback.
"""

from .base import (
    BoostProvider,
    ChunkStore,
    DocumentNotFound,
    EmbeddingModelMismatch,
    StoreStats,
    next_boost,
)
from .memory import InMemoryStore

__all__ = [
    "BoostProvider",
    "ChunkStore",
    "DocumentNotFound",
    "EmbeddingModelMismatch",
    "InMemoryStore",
    "StoreStats",
    "next_boost",
]
