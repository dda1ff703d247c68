"""
Context builder for RAG answer generation.

Orders retrieved chunks so the most relevant sit at both ends of the prompt
("lost in the middle") and renders them as labelled blocks
[Document 1: name (87.5%)], ... under a character budget. Over-budget
contexts lose whole chunks from the middle, never partial text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, TypeVar

from localrag.rag.chunking import format_chunk_with_context
from localrag.rag.retriever import RetrievedChunk

logger = logging.getLogger(__name__)

BLOCK_SEPARATOR = "\n\n---\n\n"
MAX_SAFETY_MARGIN = 600
SAFETY_MARGIN_RATIO = 0.2

T = TypeVar("T")


@dataclass
class AssembledContext:
    """Rendered context and the chunks it contains, in rendered order."""

    text: str
    chunks: List[RetrievedChunk] = field(default_factory=list)


def context_budget(context_window: int, max_output_tokens: int) -> int:
    """Tokens available for context once output and a safety margin are reserved."""
    margin = min(MAX_SAFETY_MARGIN, int(SAFETY_MARGIN_RATIO * context_window))
    return max(0, context_window - max_output_tokens - margin)


def budget_chars(context_window: int, max_output_tokens: int, chars_per_token: int = 4) -> int:
    return context_budget(context_window, max_output_tokens) * chars_per_token


def lost_in_the_middle(items: Sequence[T]) -> List[T]:
    """Even positions in order, then odd positions reversed: [0, 2, 4, 3, 1]."""
    items = list(items)
    return items[0::2] + items[1::2][::-1]


def _chunk_body(rc: RetrievedChunk) -> str:
    if rc.expanded_context:
        return rc.expanded_context
    meta = rc.chunk.metadata
    return format_chunk_with_context(rc.chunk.content, meta.prev_context, meta.next_context)


def render_context(chunks: Sequence[RetrievedChunk]) -> str:
    """Render chunks as numbered blocks, in the given order."""
    blocks = [
        f"[Document {i}: {rc.document.name} ({rc.relevance * 100:.1f}%)]\n{_chunk_body(rc)}"
        for i, rc in enumerate(chunks, 1)
    ]
    return BLOCK_SEPARATOR.join(blocks)


def build_context(
    chunks: Sequence[RetrievedChunk],
    max_chars: int,
    reorder: bool = True,
) -> AssembledContext:
    """
    Assemble the prompt context.

    Args:
        chunks: Final chunk list, most relevant first
        max_chars: Character budget for the rendered text
        reorder: Apply lost-in-the-middle ordering first

    Returns:
        AssembledContext whose text fits max_chars unless a single chunk is left.
    """
    if not chunks:
        return AssembledContext(text="", chunks=[])

    ordered = lost_in_the_middle(chunks) if reorder else list(chunks)
    text = render_context(ordered)
    dropped = 0
    while len(text) > max_chars and len(ordered) > 1:
        ordered.pop(len(ordered) // 2)
        dropped += 1
        text = render_context(ordered)

    if dropped:
        logger.info(
            "Context over budget: dropped %s middle chunks, %s chars left (budget %s)",
            dropped,
            len(text),
            max_chars,
        )
    logger.debug("Built context with %s chunks, %s chars", len(ordered), len(text))
    return AssembledContext(text=text, chunks=ordered)
