"""
Utility functions for RAG module.
"""

from __future__ import annotations

import math
import re
from typing import Iterable, List

# Unicode letter/number runs (underscore excluded).
TOKEN_RE = re.compile(r"[^\W_]+")
SENTENCE_END_RE = re.compile(r"[.!?]+\s+")

STOPWORDS = {
    "the", "a", "an", "and", "or", "of", "in", "on", "for", "to",
    "is", "are", "was", "were", "be", "been", "as", "that", "this", "these",
    "those", "with", "by", "at", "from", "it", "its", "we", "they", "you",
    "have", "has", "had", "their", "what", "when", "where", "which", "how",
    "why", "who", "can", "not", "but", "also", "into", "than", "then",
    "there", "about", "does", "did", "will", "would", "should", "could",
    # Spanish
    "el", "la", "los", "las", "un", "una", "de", "del", "en", "y", "o",
    "que", "es", "por", "para", "con", "como", "muy", "esta", "este",
    "estos", "estas",
}


def iter_tokens(text: str) -> Iterable[str]:
    """Extract lower-cased tokens longer than two characters."""
    for match in TOKEN_RE.finditer(text.lower()):
        tok = match.group(0)
        if len(tok) <= 2:
            continue
        yield tok


def tokenize(text: str) -> List[str]:
    return list(iter_tokens(text))


def split_sentences(text: str) -> List[str]:
    """Split on runs of ., ! or ? followed by whitespace, keeping the punctuation."""
    sentences: List[str] = []
    pos = 0
    for m in SENTENCE_END_RE.finditer(text):
        sentence = text[pos : m.end()].strip()
        if sentence:
            sentences.append(sentence)
        pos = m.end()
    tail = text[pos:].strip()
    if tail:
        sentences.append(tail)
    return sentences


def first_sentence(text: str) -> str:
    sentences = split_sentences(text)
    return sentences[0] if sentences else text[:150]


def last_sentence(text: str) -> str:
    sentences = split_sentences(text)
    return sentences[-1] if sentences else text[-150:]


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 chars per token for English)."""
    return math.ceil(len(text) / 4)


def word_count(text: str) -> int:
    return len(text.split())
