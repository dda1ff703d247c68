"""
LLM query rewriting and expansion for short queries.

Both operations degrade instead of raising: rewriting falls back to the
original query, expansion to a static synonym table. The expansion result
type records which path produced it.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from localrag.llm.engine import ChatEngine, generate_text

from .utils import STOPWORDS, word_count

logger = logging.getLogger(__name__)

# Queries of this many words or more are considered specific enough.
SHORT_QUERY_WORDS = 8
MAX_REWRITE_WORDS = 15
MAX_VARIATION_CHARS = 200

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_KEY_TERM_RE = re.compile(r"^[^\W\d_]+$")

DEFAULT_SYNONYMS: Dict[str, List[str]] = {
    "rag": ["retrieval augmented generation", "vector search"],
    "ai": ["artificial intelligence", "machine learning"],
    "llm": ["large language model", "language model"],
    "api": ["application programming interface", "endpoint"],
    "db": ["database", "data storage"],
    "ml": ["machine learning", "AI"],
}


@dataclass(frozen=True)
class ParsedExpansion:
    """Variations parsed from the model's JSON reply."""

    original: str
    variations: List[str]
    include_original: bool = True

    @property
    def queries(self) -> List[str]:
        return ([self.original] if self.include_original else []) + self.variations


@dataclass(frozen=True)
class FallbackExpansion:
    """Rule-based variations used when the model was skipped or unusable."""

    original: str
    variations: List[str] = field(default_factory=list)
    reason: str = ""
    include_original: bool = True

    @property
    def queries(self) -> List[str]:
        return ([self.original] if self.include_original else []) + self.variations


ExpansionResult = Union[ParsedExpansion, FallbackExpansion]


def is_short_query(query: str) -> bool:
    return word_count(query) < SHORT_QUERY_WORDS


def synonym_expansion(
    query: str,
    synonyms: Optional[Dict[str, List[str]]] = None,
) -> List[str]:
    """Variations that substitute known abbreviations with their synonyms."""
    table = DEFAULT_SYNONYMS if synonyms is None else synonyms
    variations: List[str] = []
    for word in dict.fromkeys(query.lower().split()):
        for synonym in table.get(word, []):
            pattern = re.compile(rf"\b{re.escape(word)}\b", re.I)
            variation = pattern.sub(synonym, query)
            if variation != query and variation not in variations:
                variations.append(variation)
    return variations


def parse_variations(reply: str, max_variations: int) -> List[str]:
    """Extract `variations` from the first JSON object in free text; [] when unusable."""
    match = _JSON_OBJECT_RE.search(reply or "")
    if not match:
        return []
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, dict):
        return []
    raw = parsed.get("variations") or []
    if not isinstance(raw, list):
        return []
    valid = [
        v.strip()
        for v in raw
        if isinstance(v, str) and v.strip() and len(v) < MAX_VARIATION_CHARS
    ]
    return valid[:max_variations]


async def expand_query(
    query: str,
    chat_engine: ChatEngine,
    max_variations: int = 3,
    include_original: bool = True,
    synonyms: Optional[Dict[str, List[str]]] = None,
) -> ExpansionResult:
    """Ask the model for synonym-bearing variations of a short query."""
    if not is_short_query(query):
        return FallbackExpansion(
            original=query,
            reason="query already detailed",
            include_original=include_original,
        )

    prompt = (
        "You help improve search queries.\n\n"
        f'ORIGINAL QUERY: "{query}"\n\n'
        f"Write {max_variations} variations of this query that help find relevant "
        "information. Each variation must keep the original intent, add synonyms or "
        "related terms, be specific and clear, and have 5-10 words.\n\n"
        "Reply ONLY with JSON in this format:\n"
        '{\n  "variations": [\n    "variation 1",\n    "variation 2"\n  ]\n}\n\n'
        "JSON:"
    )
    try:
        reply = await generate_text(
            chat_engine,
            prompt,
            temperature=0.5,
            max_tokens=200,
            stop=["ORIGINAL QUERY:"],
        )
    except Exception as e:
        logger.warning("Query expansion failed, using synonym table: %s", e)
        return FallbackExpansion(
            original=query,
            variations=synonym_expansion(query, synonyms),
            reason=f"generation failed: {e}",
            include_original=include_original,
        )

    variations = [v for v in parse_variations(reply, max_variations) if v != query]
    if not variations:
        logger.warning("Query expansion reply unusable, using synonym table")
        return FallbackExpansion(
            original=query,
            variations=synonym_expansion(query, synonyms),
            reason="no valid variations in reply",
            include_original=include_original,
        )

    logger.info("Expanded %r into %s variations", query, len(variations))
    return ParsedExpansion(
        original=query,
        variations=variations,
        include_original=include_original,
    )


def _clean_rewrite(reply: str) -> str:
    lines = [line.strip() for line in (reply or "").strip().splitlines() if line.strip()]
    if not lines:
        return ""
    return lines[0].strip("\"'` ").strip()


async def rewrite_query(
    query: str,
    chat_engine: ChatEngine,
    context: Optional[str] = None,
) -> str:
    """Return a clearer restatement of a short query, or the query itself."""
    if not is_short_query(query):
        return query

    extra = f"\n\nADDITIONAL CONTEXT: {context}" if context else ""
    prompt = (
        "You rewrite questions to improve search results.\n\n"
        f'ORIGINAL QUESTION: "{query}"{extra}\n\n'
        "Rewrite it as a clearer, more specific question that maximises the chance of "
        "finding relevant information.\n\n"
        "Rules:\n"
        "- Keep the original intent\n"
        "- Use precise language\n"
        "- Remove ambiguity\n"
        f"- At most {MAX_REWRITE_WORDS} words\n"
        "- Reply ONLY with the rewritten question, no explanation\n\n"
        "Rewritten question:"
    )
    try:
        reply = await generate_text(
            chat_engine,
            prompt,
            temperature=0.3,
            max_tokens=100,
            stop=["ORIGINAL QUESTION:"],
        )
    except Exception as e:
        logger.warning("Query rewriting failed, using original: %s", e)
        return query

    rewritten = _clean_rewrite(reply)
    if not rewritten:
        return query
    logger.info("Rewrote %r as %r", query, rewritten)
    return rewritten


def extract_key_terms(query: str) -> List[str]:
    """Distinct alphabetic words longer than two characters that are not stop words."""
    terms: List[str] = []
    for word in query.lower().split():
        word = word.strip(".,;:!?¿¡\"'()[]")
        if len(word) <= 2 or word in STOPWORDS or not _KEY_TERM_RE.match(word):
            continue
        if word not in terms:
            terms.append(word)
    return terms
