"""
Heuristic RAG evaluation: retrieval diagnostics, quality label and answer faithfulness.

All functions are pure and never raise on empty inputs.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Sequence

from localrag.rag.query_rewriter import extract_key_terms
from localrag.rag.retriever import RetrievedChunk
from localrag.rag.utils import STOPWORDS

logger = logging.getLogger(__name__)

DEFAULT_FAITHFULNESS_THRESHOLD = 0.45
_MIN_SENTENCE_CHARS = 15
_MIN_WORD_CHARS = 3
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_WORD_STRIP = ".,;:!?¿¡\"'()[]{}*`"


@dataclass
class RAGMetrics:
    """Retrieval diagnostics for one query."""

    avg_relevance: float = 0.0
    min_relevance: float = 0.0
    max_relevance: float = 0.0
    coverage: float = 0.0
    diversity: float = 0.0
    context_length: int = 0
    chunk_count: int = 0
    unique_documents: int = 0
    query_terms: int = 0
    covered_terms: int = 0


@dataclass
class QualityAssessment:
    """Overall label plus human-readable warnings and suggestions."""

    overall: str
    score: float
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


def calculate_rag_metrics(
    query: str,
    chunks: Sequence[RetrievedChunk],
    context: str,
) -> RAGMetrics:
    """Relevance, term coverage and source diversity of a retrieval result."""
    if not chunks:
        return RAGMetrics()

    scores = [rc.relevance for rc in chunks]
    terms = extract_key_terms(query)
    context_lower = context.lower()
    covered = sum(1 for t in terms if t in context_lower)
    unique_documents = len({rc.document.id for rc in chunks})

    metrics = RAGMetrics(
        avg_relevance=sum(scores) / len(scores),
        min_relevance=min(scores),
        max_relevance=max(scores),
        coverage=covered / len(terms) if terms else 0.0,
        diversity=unique_documents / len(chunks),
        context_length=len(context),
        chunk_count=len(chunks),
        unique_documents=unique_documents,
        query_terms=len(terms),
        covered_terms=covered,
    )
    logger.info(
        "RAG metrics: relevance avg=%.3f min=%.3f max=%.3f, coverage %s/%s, %s docs from %s chunks",
        metrics.avg_relevance,
        metrics.min_relevance,
        metrics.max_relevance,
        covered,
        len(terms),
        unique_documents,
        len(chunks),
    )
    return metrics


def assess_rag_quality(metrics: RAGMetrics) -> QualityAssessment:
    """Label a retrieval as excellent/good/fair/poor from its metrics."""
    warnings: List[str] = []
    suggestions: List[str] = []

    if metrics.avg_relevance < 0.5:
        warnings.append("Low average relevance of results")
        suggestions.append("Expand the query or use more specific terms")
    if metrics.min_relevance < 0.3:
        warnings.append("Some chunks have very low relevance")
        suggestions.append("Raise the minimum relevance threshold")
    if metrics.coverage < 0.5:
        warnings.append("Low coverage of query terms")
        suggestions.append("The documents may not cover every aspect of the query")
    if metrics.diversity < 0.3 and metrics.unique_documents > 1:
        warnings.append("Low source diversity")
        suggestions.append("Many chunks come from the same document; consider tuning reranking")
    if metrics.context_length < 500:
        warnings.append("Very short context")
        suggestions.append("Increase top_k or the chunk size")
    elif metrics.context_length > 8000:
        warnings.append("Very long context")
        suggestions.append("Too much context can confuse the model; consider reducing top_k")

    length_ok = 1000 < metrics.context_length < 6000
    score = (
        metrics.avg_relevance * 0.4
        + metrics.coverage * 0.3
        + metrics.diversity * 0.2
        + (0.1 if length_ok else 0.0)
    )
    if score >= 0.8:
        overall = "excellent"
    elif score >= 0.6:
        overall = "good"
    elif score >= 0.4:
        overall = "fair"
    else:
        overall = "poor"
    return QualityAssessment(overall=overall, score=score, warnings=warnings, suggestions=suggestions)


def _significant_words(sentence: str) -> List[str]:
    words = []
    for raw in sentence.lower().split():
        word = raw.strip(_WORD_STRIP)
        if len(word) > _MIN_WORD_CHARS and word not in STOPWORDS:
            words.append(word)
    return words


def calculate_faithfulness(
    answer: str,
    context: str,
    threshold: float = DEFAULT_FAITHFULNESS_THRESHOLD,
) -> float:
    """
    Fraction of answer sentences grounded in the context.

    A sentence is grounded when at least `threshold` of its significant words
    occur literally in the context. This is a lexical-overlap proxy, not
    entailment: paraphrases score low and copied contradictions score high.
    An answer with no sentences scores 1.0.
    """
    sentences = [
        s.strip()
        for s in _SENTENCE_SPLIT_RE.split(answer or "")
        if len(s.strip()) > _MIN_SENTENCE_CHARS
    ]
    if not sentences:
        return 1.0

    context_lower = (context or "").lower()
    supported = 0
    for sentence in sentences:
        words = _significant_words(sentence)
        if not words:
            supported += 1
            continue
        found = sum(1 for w in words if w in context_lower)
        if found / len(words) >= threshold:
            supported += 1

    faithfulness = supported / len(sentences)
    logger.info(
        "Faithfulness: %s/%s sentences supported (%.1f%%)",
        supported,
        len(sentences),
        faithfulness * 100,
    )
    return faithfulness
