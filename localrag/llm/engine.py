"""
Capability interfaces for the model runtime.

The core never depends on a concrete inference backend: anything with an
async `embed` is an embedding engine and anything with an async `generate`
over chat messages is a chat engine. Adapters live next to this module.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)

Message = Dict[str, str]
ProgressCallback = Callable[[float, str], None]
TokenCallback = Callable[[str], None]

DEFAULT_EMBEDDING_CONCURRENCY = 4


@dataclass
class GenerationOptions:
    """Per-call sampling options for chat generation."""

    temperature: float = 0.7
    max_tokens: int = 1024
    stop: List[str] = field(default_factory=list)
    on_token: Optional[TokenCallback] = None


@runtime_checkable
class EmbeddingEngine(Protocol):
    model_id: str

    async def embed(self, text: str) -> np.ndarray:
        ...


@runtime_checkable
class ChatEngine(Protocol):
    async def generate(
        self,
        messages: Sequence[Message],
        options: Optional[GenerationOptions] = None,
    ) -> str:
        ...


async def generate_text(
    engine: ChatEngine,
    prompt: str,
    *,
    temperature: float = 0.7,
    max_tokens: int = 256,
    stop: Optional[List[str]] = None,
) -> str:
    """Single-prompt convenience wrapper over the chat interface."""
    options = GenerationOptions(
        temperature=temperature,
        max_tokens=max_tokens,
        stop=list(stop or []),
    )
    return await engine.generate([{"role": "user", "content": prompt}], options)


async def embed_batch(
    engine: EmbeddingEngine,
    texts: Sequence[str],
    max_concurrent: int = DEFAULT_EMBEDDING_CONCURRENCY,
    on_progress: Optional[ProgressCallback] = None,
) -> List[np.ndarray]:
    """
    Embed texts with at most `max_concurrent` embed calls in flight.

    Args:
        engine: Embedding engine
        texts: Texts to embed (order preserved in the result)
        max_concurrent: Concurrency cap so the inference engine is not saturated
        on_progress: Called with (percent, status message) after each text

    Returns:
        One vector per input text.
    """
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")
    total = len(texts)
    if total == 0:
        return []

    semaphore = asyncio.Semaphore(max_concurrent)
    results: List[Optional[np.ndarray]] = [None] * total
    done = 0

    async def _one(i: int, text: str) -> None:
        nonlocal done
        async with semaphore:
            results[i] = np.asarray(await engine.embed(text), dtype=np.float32)
        done += 1
        if on_progress is not None:
            on_progress(done / total * 100.0, f"Generated embeddings ({done}/{total})")

    tasks = [asyncio.ensure_future(_one(i, t)) for i, t in enumerate(texts)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
    logger.debug("Embedded %s texts with concurrency %s", total, max_concurrent)
    return [r for r in results if r is not None]
