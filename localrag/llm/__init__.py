"""
Model runtime interfaces and adapters.
"""

from .engine import (
    ChatEngine,
    EmbeddingEngine,
    GenerationOptions,
    Message,
    embed_batch,
    generate_text,
)

__all__ = [
    "ChatEngine",
    "EmbeddingEngine",
    "GenerationOptions",
    "Message",
    "embed_batch",
    "generate_text",
]
