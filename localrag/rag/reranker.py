"""
Second-stage reranking of hybrid candidates.

`Reranker` rescales hybrid scores with cheap, deterministic signals
(source diversity, position in document, recency, term overlap, phrase match,
context availability). `llm_rerank` optionally asks the chat model for a
listwise ordering and degrades to the input order on any failure.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from localrag.llm.engine import ChatEngine, generate_text

from .config import RerankConfig
from .retriever import RetrievedChunk
from .utils import tokenize

logger = logging.getLogger(__name__)

LLM_RERANK_WINDOW = 10
_ID_RE = re.compile(r"\d+")


def _bigrams(tokens: Sequence[str]) -> Set[Tuple[str, str]]:
    return {(tokens[i], tokens[i + 1]) for i in range(len(tokens) - 1)}


def _as_utc(ts: dt.datetime) -> dt.datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=dt.timezone.utc)
    return ts


@dataclass
class Reranker:
    """Multiplicative heuristic reranker; a pure function of its inputs and `now`."""

    config: RerankConfig = field(default_factory=RerankConfig)
    now: Optional[dt.datetime] = None

    def rerank(
        self,
        candidates: Sequence[RetrievedChunk],
        query: str,
    ) -> List[RetrievedChunk]:
        """
        Re-rank candidates in their current order.

        Args:
            candidates: Candidates sorted by hybrid score (descending)
            query: User query

        Returns:
            Candidates sorted by reranked score; `original_score` keeps the input score.
        """
        cfg = self.config
        now = _as_utc(self.now or dt.datetime.now(dt.timezone.utc))
        query_tokens = tokenize(query)
        query_terms = set(query_tokens)
        query_bigrams = _bigrams(query_tokens)
        phrase = query.strip().lower()

        seen: Dict[str, int] = {}
        reranked: List[RetrievedChunk] = []
        for rc in candidates:
            score = rc.score
            doc = rc.document

            n = seen.get(doc.id, 0)
            score *= cfg.diversity_decay ** n
            seen[doc.id] = n + 1

            total = max(doc.chunk_count, rc.chunk.index + 1)
            score *= 1.0 + cfg.position_bonus * (1.0 - rc.chunk.index / total)

            if now - _as_utc(doc.uploaded_at) <= dt.timedelta(days=cfg.recency_days):
                score *= 1.0 + cfg.recency_bonus

            text = rc.text()
            text_tokens = tokenize(text)
            if query_terms:
                found = len(query_terms & set(text_tokens))
                score *= 1.0 + cfg.term_overlap_bonus * (found / len(query_terms))

            if phrase and phrase in text.lower():
                score *= 1.0 + cfg.exact_phrase_bonus
            elif query_bigrams & _bigrams(text_tokens):
                score *= 1.0 + cfg.bigram_bonus

            if rc.has_context:
                score *= 1.0 + cfg.context_bonus

            rc.original_score = rc.score if rc.original_score is None else rc.original_score
            rc.score = score
            rc.source = "reranked"
            reranked.append(rc)

        reranked.sort(key=lambda r: r.score, reverse=True)
        return reranked


def _parse_order(reply: str, size: int) -> List[int]:
    order: List[int] = []
    for match in _ID_RE.finditer(reply):
        idx = int(match.group(0))
        if 0 <= idx < size and idx not in order:
            order.append(idx)
    return order


async def llm_rerank(
    candidates: Sequence[RetrievedChunk],
    query: str,
    chat_engine: ChatEngine,
    window: int = LLM_RERANK_WINDOW,
) -> List[RetrievedChunk]:
    """Listwise LLM rerank of the first `window` candidates; input order on failure."""
    items = list(candidates)
    if len(items) < 2:
        return items

    head = items[:window]
    listing = "\n\n".join(
        f"ID {i}: {rc.chunk.content[:200]}..." for i, rc in enumerate(head)
    )
    prompt = (
        "Rank these document fragments from most to least relevant for answering "
        f'the question: "{query}".\n'
        "Reply ONLY with the IDs separated by commas, most relevant first.\n"
        "Example: 3, 0, 2, 1\n\n"
        f"FRAGMENTS:\n{listing}"
    )
    try:
        reply = await generate_text(chat_engine, prompt, temperature=0.0, max_tokens=50)
    except Exception as e:
        logger.warning("LLM reranking failed, keeping original order: %s", e)
        return items

    order = _parse_order(reply or "", len(head))
    if not order:
        logger.warning("LLM reranking returned no usable ids: %r", reply)
        return items

    ranked = [head[i] for i in order]
    ranked.extend(rc for i, rc in enumerate(head) if i not in order)
    for rc in ranked:
        rc.source = "llm"
    logger.debug("LLM reranking complete, best id %s", order[0])
    return ranked + items[window:]
