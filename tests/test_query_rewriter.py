"""
Tests for query rewriting, expansion and key-term extraction.
"""

from __future__ import annotations

import pytest

from conftest import FakeChatEngine
from localrag.rag.query_rewriter import (
    FallbackExpansion,
    ParsedExpansion,
    expand_query,
    extract_key_terms,
    parse_variations,
    rewrite_query,
    synonym_expansion,
)

LONG_QUERY = "how does the scheduler decide which process runs next on a busy machine"


@pytest.mark.anyio
async def test_expand_query_parses_json_reply():
    """expand_query pulls variations out of a chatty JSON reply."""
    engine = FakeChatEngine(
        'Sure! {"variations": ["what is retrieval augmented generation", "rag pipeline overview"]}'
    )
    result = await expand_query("what is rag", engine, max_variations=2)

    assert isinstance(result, ParsedExpansion)
    assert result.variations == [
        "what is retrieval augmented generation",
        "rag pipeline overview",
    ]
    assert result.queries == ["what is rag"] + result.variations


@pytest.mark.anyio
async def test_expand_query_caps_variations_and_drops_invalid_entries():
    """Non-string, blank and over-long variations are dropped before capping."""
    reply = '{"variations": ["one", 2, "", "' + "x" * 250 + '", "two", "three"]}'
    result = await expand_query("short query", FakeChatEngine(reply), max_variations=2)
    assert isinstance(result, ParsedExpansion)
    assert result.variations == ["one", "two"]


@pytest.mark.anyio
async def test_expand_query_without_original():
    """include_original=False leaves only the variations."""
    engine = FakeChatEngine('{"variations": ["a b c"]}')
    result = await expand_query("abc", engine, include_original=False)
    assert result.queries == ["a b c"]


@pytest.mark.anyio
@pytest.mark.parametrize("reply", ["not json at all", '{"variations": "nope"}', '{"other": []}'])
async def test_expand_query_unusable_reply_falls_back_to_synonyms(reply: str):
    """A reply without usable JSON gives a FallbackExpansion."""
    result = await expand_query("explain the llm api", FakeChatEngine(reply))

    assert isinstance(result, FallbackExpansion)
    assert result.reason == "no valid variations in reply"
    assert "explain the large language model api" in result.variations
    assert "explain the llm application programming interface" in result.variations


@pytest.mark.anyio
async def test_expand_query_engine_error_falls_back():
    """A failing engine gives synonym variations and records why."""
    result = await expand_query("db tuning", FakeChatEngine(RuntimeError("boom")))
    assert isinstance(result, FallbackExpansion)
    assert result.reason.startswith("generation failed")
    assert "database tuning" in result.variations


@pytest.mark.anyio
async def test_long_queries_are_not_expanded():
    """Queries over the word limit skip the model call."""
    engine = FakeChatEngine('{"variations": ["x"]}')
    result = await expand_query(LONG_QUERY, engine)
    assert isinstance(result, FallbackExpansion)
    assert result.reason == "query already detailed"
    assert result.variations == []
    assert engine.calls == []


@pytest.mark.anyio
async def test_rewrite_query_takes_first_clean_line():
    """rewrite_query keeps the first line and strips quotes and labels."""
    engine = FakeChatEngine('"What are the main causes of deadlock?"\nExplanation: more specific.')
    assert await rewrite_query("deadlock causes", engine) == "What are the main causes of deadlock?"


@pytest.mark.anyio
@pytest.mark.parametrize("reply", ["", "   \n  ", RuntimeError("timeout")])
async def test_rewrite_query_falls_back_to_original(reply):
    """Empty replies and engine errors keep the original query."""
    assert await rewrite_query("deadlock causes", FakeChatEngine(reply)) == "deadlock causes"


@pytest.mark.anyio
async def test_rewrite_query_passes_context_and_skips_long_queries():
    """Conversation context goes into the prompt; long queries are left alone."""
    engine = FakeChatEngine("Rewritten")
    await rewrite_query("deadlock", engine, context="operating systems course")
    assert "operating systems course" in engine.calls[0][0]["content"]

    assert await rewrite_query(LONG_QUERY, engine) == LONG_QUERY
    assert len(engine.calls) == 1


def test_parse_variations_uses_first_json_object():
    """parse_variations reads the first JSON object and tolerates broken input."""
    assert parse_variations('prefix {"variations": ["a", "b"]} suffix', 5) == ["a", "b"]
    assert parse_variations("{broken json", 5) == []
    assert parse_variations("", 5) == []


def test_synonym_expansion_respects_word_boundaries():
    """Synonyms replace whole words only."""
    assert synonym_expansion("training a model") == []
    variations = synonym_expansion("AI safety", {"ai": ["artificial intelligence"]})
    assert variations == ["artificial intelligence safety"]


def test_extract_key_terms():
    """extract_key_terms keeps significant words and drops stop words."""
    assert extract_key_terms("What is the BM25 ranking function, and how does it work?") == [
        "ranking", "function", "work",
    ]
    assert extract_key_terms("the the the") == []
