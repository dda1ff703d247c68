"""
Tests for the OpenAI-compatible engine and the sentence-transformers embedder, with mocked backends.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import List
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from localrag.llm import client as client_module
from localrag.llm.client import OpenAICompatibleEngine
from localrag.llm.embedder import SentenceTransformerEmbedder
from localrag.llm.engine import (
    ChatEngine,
    EmbeddingEngine,
    GenerationOptions,
    embed_batch,
    generate_text,
)


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _stream(tokens: List[str]):
    async def gen():
        for token in tokens:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=token))])
        yield SimpleNamespace(choices=[])

    return gen()


def _engine(**kwargs) -> OpenAICompatibleEngine:
    mock = MagicMock()
    mock.chat.completions.create = AsyncMock()
    mock.embeddings.create = AsyncMock()
    return OpenAICompatibleEngine(
        model_name="test-model",
        api_key="k",
        base_url="http://localhost:1/v1",
        embedding_model="test-embed",
        client=mock,
        **kwargs,
    )


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps: List[float] = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(client_module.asyncio, "sleep", fake_sleep)
    return sleeps


def test_engine_satisfies_both_protocols():
    """OpenAICompatibleEngine is both a ChatEngine and an EmbeddingEngine."""
    engine = _engine()
    assert isinstance(engine, ChatEngine)
    assert isinstance(engine, EmbeddingEngine)
    assert engine.model_id == "test-embed"


def test_params_fall_back_to_environment(monkeypatch):
    """Unset parameters are read from LLM_* environment variables."""
    monkeypatch.setenv("LLM_MODEL", "env-model")
    monkeypatch.setenv("LLM_BASE_URL", "http://env:8080/v1")
    monkeypatch.setenv("LLM_EMBEDDING_MODEL", "env-embed")

    engine = OpenAICompatibleEngine(client=MagicMock())

    assert engine.model_name == "env-model"
    assert engine.base_url == "http://env:8080/v1"
    assert engine.embedding_model == "env-embed"


@pytest.mark.anyio
async def test_generate_returns_stripped_content():
    """generate passes options through and strips the reply."""
    engine = _engine()
    engine.client.chat.completions.create.return_value = _completion("  hello  \n")

    reply = await engine.generate(
        [{"role": "user", "content": "hi"}],
        GenerationOptions(temperature=0.1, max_tokens=20, stop=["<|end|>"]),
    )

    assert reply == "hello"
    kwargs = engine.client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["temperature"] == 0.1
    assert kwargs["max_tokens"] == 20
    assert kwargs["stop"] == ["<|end|>"]
    assert "stream" not in kwargs


@pytest.mark.anyio
async def test_generate_omits_empty_stop_and_handles_empty_choices():
    """No stop list is sent when empty, and an empty choices list gives ''."""
    engine = _engine()
    engine.client.chat.completions.create.return_value = SimpleNamespace(choices=[])

    assert await engine.generate([{"role": "user", "content": "hi"}]) == ""
    assert "stop" not in engine.client.chat.completions.create.call_args.kwargs


@pytest.mark.anyio
async def test_generate_streams_tokens():
    """With on_token set, generate streams and joins the deltas."""
    engine = _engine()
    engine.client.chat.completions.create.return_value = _stream(["Hel", "lo", " world"])
    seen: List[str] = []

    reply = await engine.generate(
        [{"role": "user", "content": "hi"}],
        GenerationOptions(on_token=seen.append),
    )

    assert seen == ["Hel", "lo", " world"]
    assert reply == "Hello world"
    assert engine.client.chat.completions.create.call_args.kwargs["stream"] is True


@pytest.mark.anyio
async def test_embed_returns_float32_vector():
    """embed sends the embedding model and returns a float32 vector."""
    engine = _engine()
    engine.client.embeddings.create.return_value = SimpleNamespace(
        data=[SimpleNamespace(embedding=[0.5, 0.25, 1.0])]
    )

    vector = await engine.embed("text")

    assert vector.dtype == np.float32
    assert vector.tolist() == [0.5, 0.25, 1.0]
    kwargs = engine.client.embeddings.create.call_args.kwargs
    assert kwargs == {"model": "test-embed", "input": "text"}


@pytest.mark.anyio
async def test_rate_limit_is_retried(no_sleep):
    """A 429 is retried after a 2-3 second backoff."""
    engine = _engine(max_retries=3)
    engine.client.chat.completions.create.side_effect = [
        RuntimeError("Error code: 429 - too many requests"),
        _completion("ok"),
    ]

    assert await engine.generate([{"role": "user", "content": "hi"}]) == "ok"
    assert engine.client.chat.completions.create.await_count == 2
    assert len(no_sleep) == 1
    assert 2 <= no_sleep[0] <= 3


@pytest.mark.anyio
async def test_rate_limit_gives_up_after_max_retries(no_sleep):
    """The last rate-limit error is raised once retries run out."""
    engine = _engine(max_retries=2)
    engine.client.embeddings.create.side_effect = RuntimeError("429")

    with pytest.raises(RuntimeError, match="429"):
        await engine.embed("text")
    assert engine.client.embeddings.create.await_count == 2
    assert len(no_sleep) == 1


@pytest.mark.anyio
async def test_other_errors_propagate_immediately(no_sleep):
    """Non rate-limit errors are not retried."""
    engine = _engine()
    engine.client.chat.completions.create.side_effect = ValueError("bad request")

    with pytest.raises(ValueError):
        await engine.generate([{"role": "user", "content": "hi"}])
    assert engine.client.chat.completions.create.await_count == 1
    assert no_sleep == []


@pytest.mark.anyio
async def test_generate_text_wraps_prompt_as_user_message():
    """generate_text sends the prompt as a single user message."""
    engine = _engine()
    engine.client.chat.completions.create.return_value = _completion("fine")

    assert await generate_text(engine, "prompt", temperature=0.0, max_tokens=5) == "fine"
    kwargs = engine.client.chat.completions.create.call_args.kwargs
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
    assert kwargs["temperature"] == 0.0


@pytest.mark.anyio
async def test_embed_batch_preserves_order_and_bounds_concurrency():
    """embed_batch keeps input order, caps concurrency and reports progress."""
    in_flight = 0
    peak = 0

    class SlowEmbedder:
        model_id = "slow"

        async def embed(self, text: str) -> np.ndarray:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await client_module.asyncio.sleep(0)
            in_flight -= 1
            return np.array([float(len(text))], dtype=np.float32)

    progress: List[float] = []
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]

    vectors = await embed_batch(
        SlowEmbedder(), texts, max_concurrent=2, on_progress=lambda pct, msg: progress.append(pct)
    )

    assert [v.tolist() for v in vectors] == [[1.0], [2.0], [3.0], [4.0], [5.0]]
    assert peak <= 2
    assert progress[-1] == pytest.approx(100.0)
    assert await embed_batch(SlowEmbedder(), []) == []
    with pytest.raises(ValueError):
        await embed_batch(SlowEmbedder(), texts, max_concurrent=0)


@pytest.mark.anyio
async def test_sentence_transformer_embedder_normalizes():
    """SentenceTransformerEmbedder asks for normalised float32 vectors."""
    model = MagicMock()
    model.encode.return_value = np.array([[0.6, 0.8]])
    embedder = SentenceTransformerEmbedder("tiny-model", model=model)

    vector = await embedder.embed("hello")

    assert embedder.model_id == "tiny-model"
    assert vector.dtype == np.float32
    np.testing.assert_allclose(vector, [0.6, 0.8], rtol=1e-6)
    assert model.encode.call_args.kwargs["normalize_embeddings"] is True
