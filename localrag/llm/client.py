"""
Chat and embedding engine for OpenAI-compatible APIs (Ollama, llama.cpp server, vLLM, etc.).
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
from dotenv import load_dotenv
from openai import AsyncOpenAI

from .engine import GenerationOptions, Message

# Load .env file if it exists
project_root = Path(__file__).resolve().parents[2]
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)

DEFAULT_BASE_URL = "http://localhost:11434/v1"
DEFAULT_API_KEY = "local"
DEFAULT_MODEL = "llama3.2"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"

logger = logging.getLogger(__name__)


def _resolve_client_params(
    model_name: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
) -> tuple[str, str, str]:
    """Resolve model, api_key, base_url from args or env; defaults target a local server."""
    model = model_name or os.getenv("LLM_MODEL", DEFAULT_MODEL)
    key = api_key or os.getenv("LLM_API_KEY", DEFAULT_API_KEY)
    base = base_url or os.getenv("LLM_BASE_URL", DEFAULT_BASE_URL)
    return model, key, base


def _is_rate_limit(error: Exception) -> bool:
    error_str = str(error)
    return "429" in error_str or "concurrency" in error_str.lower()


class OpenAICompatibleEngine:
    """
    Chat and embedding engine over an OpenAI-compatible endpoint.

    Implements both ChatEngine and EmbeddingEngine. Rate-limit errors are
    retried with exponential backoff; every other error propagates.
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        embedding_model: Optional[str] = None,
        max_retries: int = 3,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model_name, key, self.base_url = _resolve_client_params(
            model_name=model_name, api_key=api_key, base_url=base_url
        )
        self.embedding_model = embedding_model or os.getenv(
            "LLM_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL
        )
        self.max_retries = max_retries
        self.client = client or AsyncOpenAI(base_url=self.base_url, api_key=key)

    @property
    def model_id(self) -> str:
        return self.embedding_model

    async def _with_retries(self, call):
        retry_count = 0
        while True:
            try:
                return await call()
            except Exception as e:
                if not _is_rate_limit(e):
                    raise
                retry_count += 1
                if retry_count >= self.max_retries:
                    logger.warning("Rate limit exceeded after %s retries", self.max_retries)
                    raise
                backoff = (2 ** retry_count) + random.uniform(0, 1)
                logger.warning(
                    "Rate limit hit (429). Retrying in %s s (attempt %s/%s)",
                    round(backoff, 1),
                    retry_count,
                    self.max_retries,
                )
                await asyncio.sleep(backoff)

    async def generate(
        self,
        messages: Sequence[Message],
        options: Optional[GenerationOptions] = None,
    ) -> str:
        """Generate a reply; streams through `options.on_token` when set."""
        options = options or GenerationOptions()
        create_kw: dict = {
            "model": self.model_name,
            "messages": list(messages),
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.stop:
            create_kw["stop"] = list(options.stop)

        if options.on_token is None:
            response = await self._with_retries(
                lambda: self.client.chat.completions.create(**create_kw)
            )
            if not response.choices:
                logger.warning("Empty response from API")
                return ""
            return (response.choices[0].message.content or "").strip()

        stream = await self._with_retries(
            lambda: self.client.chat.completions.create(stream=True, **create_kw)
        )
        parts: List[str] = []
        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content is not None:
                token = chunk.choices[0].delta.content
                parts.append(token)
                options.on_token(token)
        return "".join(parts).strip()

    async def embed(self, text: str) -> np.ndarray:
        response = await self._with_retries(
            lambda: self.client.embeddings.create(model=self.embedding_model, input=text)
        )
        return np.asarray(response.data[0].embedding, dtype=np.float32)


def create_engine(
    model_name: Optional[str] = None,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    embedding_model: Optional[str] = None,
) -> OpenAICompatibleEngine:
    """Create an OpenAI-compatible engine (local server by default)."""
    return OpenAICompatibleEngine(
        model_name=model_name,
        api_key=api_key,
        base_url=base_url,
        embedding_model=embedding_model,
    )
