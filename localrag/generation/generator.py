"""
Answer generator: builds chat messages around the assembled context and calls the chat engine.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from localrag.llm.engine import ChatEngine, GenerationOptions, Message, TokenCallback

from .config import GenerationConfig
from .prompts import NO_CONTEXT, SYSTEM_PROMPT

logger = logging.getLogger(__name__)


def build_messages(
    query: str,
    context: str,
    history: Optional[Sequence[Message]] = None,
    additional_context: Optional[str] = None,
) -> List[Message]:
    """System prompt with context, then history, then the query unless history already ends with it."""
    system = SYSTEM_PROMPT.format(context=context or NO_CONTEXT)
    if additional_context:
        system += f"\n\n{additional_context}"

    messages: List[Message] = [{"role": "system", "content": system}]
    history = list(history or [])
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    if not history or history[-1].get("content") != query:
        messages.append({"role": "user", "content": query})
    return messages


async def generate_answer(
    chat_engine: ChatEngine,
    query: str,
    context: str,
    history: Optional[Sequence[Message]] = None,
    on_stream: Optional[TokenCallback] = None,
    additional_context: Optional[str] = None,
    config: Optional[GenerationConfig] = None,
) -> str:
    """Generate a grounded answer. Engine errors propagate."""
    config = config or GenerationConfig()
    messages = build_messages(query, context, history, additional_context)
    options = GenerationOptions(
        temperature=config.temperature,
        max_tokens=config.max_output_tokens,
        stop=list(config.stop),
        on_token=on_stream,
    )
    logger.info("Generating answer with %s messages, %s context chars", len(messages), len(context))
    answer = await chat_engine.generate(messages, options)
    return answer or ""
