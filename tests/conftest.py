"""
Shared fixtures and deterministic engine fakes.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pytest

from localrag.llm.engine import GenerationOptions, Message
from localrag.rag.utils import tokenize
from localrag.store.memory import InMemoryStore

FAKE_DIM = 512


class FakeEmbedder:
    """
    Bag-of-words embedder over a growing vocabulary.

    Texts sharing words have positive cosine, texts sharing none are
    orthogonal (until the vocabulary outgrows `dim`).
    """

    def __init__(self, model_id: str = "fake-embed", dim: int = FAKE_DIM):
        self.model_id = model_id
        self.dim = dim
        self.vocabulary: Dict[str, int] = {}
        self.calls: List[str] = []

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        vec = np.zeros(self.dim, dtype=np.float32)
        for token in tokenize(text):
            slot = self.vocabulary.setdefault(token, len(self.vocabulary))
            vec[slot % self.dim] += 1.0
        return vec


Reply = Union[str, Exception, Callable[[Sequence[Message]], str]]


class FakeChatEngine:
    """Replays scripted replies in order; the last one repeats. Exceptions are raised."""

    def __init__(self, *replies: Reply):
        self.replies: List[Reply] = list(replies) or [""]
        self.calls: List[List[Message]] = []
        self.options: List[Optional[GenerationOptions]] = []

    async def generate(
        self,
        messages: Sequence[Message],
        options: Optional[GenerationOptions] = None,
    ) -> str:
        self.calls.append(list(messages))
        self.options.append(options)
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(messages)
        if options is not None and options.on_token is not None:
            for token in reply.split(" "):
                options.on_token(token + " ")
        return reply


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
