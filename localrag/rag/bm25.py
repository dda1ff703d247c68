"""
BM25 lexical scorer, rebuilt per query over the chunks in scope.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from rank_bm25 import BM25Okapi

from .utils import tokenize

logger = logging.getLogger(__name__)


class _SmoothedBM25(BM25Okapi):
    """Okapi BM25 with the non-negative idf ln((N - df + 0.5) / (df + 0.5) + 1)."""

    def _calc_idf(self, nd: Dict[str, int]) -> None:
        for word, freq in nd.items():
            self.idf[word] = math.log((self.corpus_size - freq + 0.5) / (freq + 0.5) + 1)


@dataclass
class BM25Index:
    """BM25 index over a closed set of (id, content) pairs."""

    ids: List[str]
    bm25: Optional[BM25Okapi]

    @classmethod
    def from_documents(
        cls,
        documents: Sequence[Tuple[str, str]],
        k1: float = 1.5,
        b: float = 0.75,
    ) -> "BM25Index":
        """Build BM25 index from (id, content) pairs."""
        ids = [doc_id for doc_id, _ in documents]
        if not documents:
            return cls(ids=ids, bm25=None)
        tokenized_docs = [tokenize(content) for _, content in documents]
        bm25 = _SmoothedBM25(tokenized_docs, k1=k1, b=b)
        logger.debug(
            "Indexed %s docs for BM25, avg length %.1f tokens, vocabulary %s",
            bm25.corpus_size,
            bm25.avgdl,
            len(bm25.idf),
        )
        return cls(ids=ids, bm25=bm25)

    def search(self, query: str, top_k: Optional[int] = None) -> List[Tuple[str, float]]:
        """Score all documents for the query; zero scores are dropped."""
        query_tokens = tokenize(query)
        if not query_tokens or self.bm25 is None or self.bm25.avgdl == 0:
            return []
        scores = self.bm25.get_scores(query_tokens)
        ranked = sorted(
            ((doc_id, float(score)) for doc_id, score in zip(self.ids, scores) if score > 0),
            key=lambda x: x[1],
            reverse=True,
        )
        if top_k is not None:
            ranked = ranked[:top_k]
        return ranked

    def stats(self) -> Dict[str, float]:
        if self.bm25 is None:
            return {"documents": 0, "avg_doc_length": 0.0, "vocabulary_size": 0}
        return {
            "documents": self.bm25.corpus_size,
            "avg_doc_length": float(self.bm25.avgdl),
            "vocabulary_size": len(self.bm25.idf),
        }
