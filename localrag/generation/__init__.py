"""
Answer generation module for RAG pipeline.

- Context assembly from retrieved chunks (lost-in-the-middle order, budget)
- Chat message building and answer generation
"""

from .config import GenerationConfig
from .context_builder import (
    AssembledContext,
    budget_chars,
    build_context,
    context_budget,
    lost_in_the_middle,
)
from .generator import build_messages, generate_answer
from .prompts import SYSTEM_PROMPT

__all__ = [
    "AssembledContext",
    "GenerationConfig",
    "SYSTEM_PROMPT",
    "budget_chars",
    "build_context",
    "build_messages",
    "context_budget",
    "generate_answer",
    "lost_in_the_middle",
]
