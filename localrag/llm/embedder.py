"""
Local embedding engine using sentence-transformers.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import numpy as np
from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")


class SentenceTransformerEmbedder:
    """EmbeddingEngine backed by an in-process SentenceTransformer model."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        model: Optional[SentenceTransformer] = None,
    ):
        self.model_id = model_name or EMBEDDING_MODEL
        self._model = model

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info("Loading embedding model %s", self.model_id)
            self._model = SentenceTransformer(self.model_id)
        return self._model

    def _encode(self, text: str) -> np.ndarray:
        return self.model.encode(
            [text],
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )[0]

    async def embed(self, text: str) -> np.ndarray:
        # encode is CPU bound; keep the event loop free
        vector = await asyncio.to_thread(self._encode, text)
        return np.asarray(vector, dtype=np.float32)
