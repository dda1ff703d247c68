"""Configuration for answer generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

DEFAULT_STOP = ["<|im_end|>", "<|end|>", "<|eot_id|>"]


@dataclass
class GenerationConfig:
    """Settings for RAG answer generation."""

    context_window: int = 4096
    max_output_tokens: int = 1024
    temperature: float = 0.7
    stop: List[str] = field(default_factory=lambda: list(DEFAULT_STOP))
    chars_per_token: int = 4
