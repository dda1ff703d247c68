"""
Tests for the heuristic reranker and the LLM listwise rerank.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

import pytest

from conftest import FakeChatEngine
from localrag.rag.config import RerankConfig
from localrag.rag.index import Chunk, ChunkMetadata, Document
from localrag.rag.reranker import Reranker, llm_rerank
from localrag.rag.retriever import RetrievedChunk

NOW = dt.datetime(2024, 6, 1, 12, 0, tzinfo=dt.timezone.utc)


def _doc(doc_id: str, days_old: float = 0.0, chunk_count: int = 1) -> Document:
    return Document(
        id=doc_id,
        name=f"{doc_id}.txt",
        content="",
        uploaded_at=NOW - dt.timedelta(days=days_old),
        chunk_count=chunk_count,
    )


def _candidate(
    doc: Document,
    content: str,
    score: float = 1.0,
    index: int = 0,
    chunk_id: Optional[str] = None,
    prev_context: Optional[str] = None,
) -> RetrievedChunk:
    chunk = Chunk(
        id=chunk_id or f"{doc.id}-{index}",
        document_id=doc.id,
        index=index,
        content=content,
        tokens=len(content) // 4,
        metadata=ChunkMetadata(start_char=0, end_char=len(content), prev_context=prev_context),
    )
    return RetrievedChunk(chunk=chunk, document=doc, score=score)


def test_signal_product_for_a_single_candidate():
    """A lone candidate with no term matches gets only the position and recency factors."""
    rc = _candidate(_doc("d"), "nothing relevant")
    [out] = Reranker(now=NOW).rerank([rc], "zzz")
    # position 1.2 (first of one chunk) * recency 1.1
    assert out.score == pytest.approx(1.2 * 1.1)
    assert out.original_score == 1.0
    assert out.source == "reranked"


def test_recent_document_ranks_higher():
    """Same text, newer document first."""
    old = _candidate(_doc("old", days_old=10), "caching strategies for web servers")
    new = _candidate(_doc("new", days_old=0), "caching strategies for web servers")
    ranked = Reranker(now=NOW).rerank([old, new], "caching strategies")
    assert [rc.document.id for rc in ranked] == ["new", "old"]


def test_diversity_decay_penalises_repeated_documents():
    """Each further chunk from the same document is penalised more."""
    doc = _doc("a", chunk_count=10)
    other = _doc("b", chunk_count=10)
    first = _candidate(doc, "text", index=3)
    second = _candidate(doc, "text", index=3, chunk_id="a-3b")
    third = _candidate(other, "text", index=3)
    ranked = Reranker(now=NOW).rerank([first, second, third], "zzz")
    assert ranked[-1] is second
    assert second.score == pytest.approx(first.score * 0.95)


def test_earlier_chunks_get_larger_position_bonus():
    """Chunks near the start of their document rank higher."""
    doc = _doc("d", chunk_count=10)
    late = _candidate(doc, "text", index=9)
    early = _candidate(_doc("e", chunk_count=10), "text", index=0)
    ranked = Reranker(now=NOW).rerank([late, early], "zzz")
    assert ranked[0] is early


def test_exact_phrase_beats_bigram_beats_nothing():
    """An exact phrase match outranks a bigram match, which outranks neither."""
    cfg = RerankConfig()
    query = "vector index tuning"
    exact = _candidate(_doc("a"), "notes on vector index tuning today")
    bigram = _candidate(_doc("b"), "the vector index needs tuning later")
    none = _candidate(_doc("c"), "tuning the index of vectors")
    ranked = Reranker(cfg, now=NOW).rerank([none, bigram, exact], query)
    assert [rc.document.id for rc in ranked] == ["a", "b", "c"]


def test_context_bonus():
    """Chunks with neighbour context get a small bonus."""
    plain = _candidate(_doc("a"), "same words")
    with_context = _candidate(_doc("b"), "same words", prev_context="before.")
    ranked = Reranker(now=NOW).rerank([plain, with_context], "zzz")
    assert ranked[0] is with_context
    assert with_context.score == pytest.approx(plain.score * 1.05)


def test_rerank_is_deterministic():
    """Reranking the same input twice gives identical scores and order."""
    def build():
        doc = _doc("a", days_old=3, chunk_count=4)
        return [
            _candidate(doc, "alpha beta gamma", score=0.9, index=0),
            _candidate(doc, "beta gamma delta", score=0.8, index=1),
            _candidate(_doc("b", days_old=30, chunk_count=2), "alpha delta", score=0.7, index=1),
        ]

    first = Reranker(now=NOW).rerank(build(), "alpha delta")
    second = Reranker(now=NOW).rerank(build(), "alpha delta")
    assert [(rc.chunk_id, rc.score) for rc in first] == [(rc.chunk_id, rc.score) for rc in second]


def test_zero_magnitudes_leave_scores_unchanged():
    """With every factor disabled the input scores come back unchanged."""
    cfg = RerankConfig(
        diversity_decay=1.0,
        position_bonus=0.0,
        recency_bonus=0.0,
        term_overlap_bonus=0.0,
        exact_phrase_bonus=0.0,
        bigram_bonus=0.0,
        context_bonus=0.0,
    )
    candidates = [_candidate(_doc("a"), "alpha", score=0.5), _candidate(_doc("b"), "beta", score=0.4)]
    ranked = Reranker(cfg, now=NOW).rerank(candidates, "alpha")
    assert [rc.score for rc in ranked] == [0.5, 0.4]


@pytest.mark.anyio
async def test_llm_rerank_applies_model_order():
    """llm_rerank reorders candidates by the ids in the reply."""
    candidates = [_candidate(_doc(name), name) for name in ("a", "b", "c")]
    engine = FakeChatEngine("2, 0")
    ranked = await llm_rerank(candidates, "question", engine)
    assert [rc.document.id for rc in ranked] == ["c", "a", "b"]
    assert all(rc.source == "llm" for rc in ranked)
    assert "ID 2: c" in engine.calls[0][0]["content"]


@pytest.mark.anyio
async def test_llm_rerank_only_reorders_window():
    """Candidates past the window keep their place at the end."""
    candidates = [_candidate(_doc(str(i)), str(i)) for i in range(4)]
    ranked = await llm_rerank(candidates, "q", FakeChatEngine("1, 0"), window=2)
    assert [rc.document.id for rc in ranked] == ["1", "0", "2", "3"]


@pytest.mark.anyio
@pytest.mark.parametrize("reply", [RuntimeError("engine down"), "no ids here", "7, 9"])
async def test_llm_rerank_falls_back_to_input_order(reply):
    """Errors, replies without ids and out-of-range ids keep the input order."""
    candidates = [_candidate(_doc(name), name) for name in ("a", "b")]
    ranked = await llm_rerank(candidates, "question", FakeChatEngine(reply))
    assert [rc.document.id for rc in ranked] == ["a", "b"]


@pytest.mark.anyio
async def test_llm_rerank_skips_single_candidate():
    """A single candidate is returned without calling the model."""
    engine = FakeChatEngine("0")
    only = [_candidate(_doc("a"), "a")]
    assert await llm_rerank(only, "q", engine) == only
    assert engine.calls == []
