"""
Configuration for RAG retrieval pipeline.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields

from dotenv import load_dotenv


@dataclass
class RerankConfig:
    """Magnitudes of the heuristic rerank signals."""

    diversity_decay: float = 0.95
    position_bonus: float = 0.20
    recency_bonus: float = 0.10
    recency_days: int = 7
    term_overlap_bonus: float = 0.15
    exact_phrase_bonus: float = 0.20
    bigram_bonus: float = 0.10
    context_bonus: float = 0.05


@dataclass
class RAGConfig:
    """Configuration for RAG retrieval."""

    semantic_weight: float = 0.85
    top_k: int = 5
    # Extra candidates fetched per variant for fusion and reranking.
    fetch_extra: int = 10
    candidate_floor: int = 15
    min_relevance: float = 0.2
    context_window: int = 1
    rrf_k: int = 60
    bm25_k1: float = 1.5
    bm25_b: float = 0.75
    use_query_expansion: bool = False
    use_query_rewriting: bool = False
    use_llm_reranking: bool = True
    max_variations: int = 2
    embedding_concurrency: int = 4
    faithfulness_threshold: float = 0.45
    rerank: RerankConfig = field(default_factory=RerankConfig)

    def __post_init__(self) -> None:
        if not 0.0 <= self.semantic_weight <= 1.0:
            raise ValueError("semantic_weight must be within [0, 1]")
        if self.embedding_concurrency < 1:
            raise ValueError("embedding_concurrency must be at least 1")

    @property
    def lexical_weight(self) -> float:
        return 1.0 - self.semantic_weight

    @classmethod
    def from_env(cls) -> "RAGConfig":
        """Build a config from RAG_* environment variables (e.g. RAG_TOP_K=8)."""
        load_dotenv()
        kwargs = {}
        for f in fields(cls):
            if f.name == "rerank":
                continue
            raw = os.getenv(f"RAG_{f.name.upper()}")
            if raw is None:
                continue
            kwargs[f.name] = _coerce(raw, type(getattr(cls(), f.name)))
        return cls(**kwargs)


def _coerce(raw: str, kind: type):
    if kind is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return kind(raw)
