"""
Tests for the BM25 lexical scorer.
"""

from __future__ import annotations

import math

import pytest

from localrag.rag.bm25 import BM25Index
from localrag.rag.utils import tokenize


@pytest.fixture
def index() -> BM25Index:
    return BM25Index.from_documents(
        [
            ("deadlock", "A deadlock happens when processes wait on each other forever."),
            ("scheduler", "The scheduler picks the next process to run on the CPU."),
            ("tcp", "The TCP handshake opens a connection with SYN and ACK packets."),
        ]
    )


def test_search_ranks_matching_document_first(index: BM25Index):
    """BM25Index.search puts the document containing the query terms first."""
    results = index.search("deadlock")
    assert results[0][0] == "deadlock"


def test_zero_scores_are_excluded(index: BM25Index):
    """Documents sharing no term with the query are not returned."""
    ids = [doc_id for doc_id, _ in index.search("handshake")]
    assert ids == ["tcp"]


def test_scores_are_non_negative_for_common_terms():
    """A term present in every document still scores above zero with the smoothed idf."""
    idx = BM25Index.from_documents([(str(i), "shared word here") for i in range(3)])
    results = idx.search("shared")
    assert len(results) == 3
    assert all(score > 0 for _, score in results)


def test_idf_formula():
    """Smoothed idf is ln((N - df + 0.5) / (df + 0.5) + 1)."""
    idx = BM25Index.from_documents([("a", "alpha beta"), ("b", "alpha gamma"), ("c", "delta")])
    n, df = 3, 2
    assert idx.bm25.idf["alpha"] == pytest.approx(math.log((n - df + 0.5) / (df + 0.5) + 1))


def test_more_occurrences_score_higher():
    """Repeating a query term raises the score."""
    idx = BM25Index.from_documents(
        [
            ("once", "cache miss penalty explained briefly"),
            ("twice", "cache cache miss penalty explained"),
        ]
    )
    scores = dict(idx.search("cache"))
    assert scores["twice"] > scores["once"]


def test_top_k_limits_results(index: BM25Index):
    """top_k caps the result list."""
    assert len(index.search("the process connection", top_k=1)) == 1


@pytest.mark.parametrize("query", ["", "a of", "!!!"])
def test_queries_without_tokens_return_nothing(index: BM25Index, query: str):
    """Queries that tokenize to nothing return []."""
    assert index.search(query) == []


def test_empty_index():
    """An empty index answers every query with []."""
    idx = BM25Index.from_documents([])
    assert idx.search("anything") == []
    assert idx.stats()["documents"] == 0


def test_stats(index: BM25Index):
    """stats() reports document count, average length and vocabulary size."""
    stats = index.stats()
    assert stats["documents"] == 3
    assert stats["avg_doc_length"] > 0
    assert stats["vocabulary_size"] > 0


def test_tokenizer_drops_short_tokens_and_underscores():
    """tokenize lowercases, splits on underscores and drops tokens under three characters."""
    assert tokenize("An AI is OK, but snake_case Über-cool 42!") == [
        "but", "snake", "case", "über", "cool",
    ]
