"""
In-memory conversation memory for follow-up context.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from localrag.llm.engine import Message


@dataclass
class Turn:
    """Single conversation turn."""

    query: str
    answer: str
    chunk_ids: List[str] = field(default_factory=list)


class ConversationMemory:
    """In-memory list of turns; the last N are replayed as chat history."""

    def __init__(self, max_turns: int = 10):
        self._turns: List[Turn] = []
        self.max_turns = max_turns

    def __len__(self) -> int:
        return len(self._turns)

    def add_turn(
        self,
        query: str,
        answer: str,
        chunk_ids: Optional[List[str]] = None,
    ) -> None:
        self._turns.append(Turn(query=query, answer=answer, chunk_ids=chunk_ids or []))
        if len(self._turns) > self.max_turns:
            self._turns = self._turns[-self.max_turns :]

    def get_history(self, last_n: int = 5) -> List[Message]:
        """Return the last N turns as alternating user/assistant messages."""
        if not self._turns or last_n <= 0:
            return []
        messages: List[Message] = []
        for t in self._turns[-last_n:]:
            messages.append({"role": "user", "content": t.query})
            messages.append({"role": "assistant", "content": t.answer})
        return messages

    def get_relevant_context(self, last_n: int = 3) -> str:
        """Return the last N turns as Q/A text, e.g. as rewrite context."""
        if not self._turns:
            return ""
        return "\n\n".join(f"Q: {t.query}\nA: {t.answer}" for t in self._turns[-last_n:])

    def clear(self) -> None:
        self._turns.clear()
