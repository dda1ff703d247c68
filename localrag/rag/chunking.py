"""
Adaptive semantic chunker.

Splits document text on paragraph boundaries instead of fixed-size windows,
carrying one paragraph (or sentence) forward as overlap, and attaches the
neighbouring sentences as adjacency context. Target sizes are tuned per
document type, which can be auto-detected.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import List, Optional

from .index import ChunkType
from .utils import SENTENCE_END_RE, first_sentence, last_sentence

logger = logging.getLogger(__name__)

DOC_TYPE_CODE = "code"
DOC_TYPE_TECHNICAL = "technical"
DOC_TYPE_ARTICLE = "article"
DOC_TYPE_WEB = "web"
DOC_TYPE_GENERAL = "general"
DOC_TYPE_AUTO = "auto"

DOCUMENT_TYPES = frozenset({
    DOC_TYPE_CODE, DOC_TYPE_TECHNICAL, DOC_TYPE_ARTICLE,
    DOC_TYPE_WEB, DOC_TYPE_GENERAL, DOC_TYPE_AUTO,
})

OVERSIZE_FACTOR = 1.5
PARAGRAPH_BREAK_RE = re.compile(r"\n\n+")
PARAGRAPH_SEP = "\n\n"


@dataclasses.dataclass(frozen=True)
class ChunkSizeConfig:
    target_size: int
    min_size: int
    overlap_ratio: float


# Code gets the largest target so functions stay whole; web content is dense.
SIZE_PROFILES = {
    DOC_TYPE_CODE: ChunkSizeConfig(1200, 600, 0.20),
    DOC_TYPE_TECHNICAL: ChunkSizeConfig(1000, 500, 0.15),
    DOC_TYPE_ARTICLE: ChunkSizeConfig(800, 400, 0.10),
    DOC_TYPE_WEB: ChunkSizeConfig(600, 300, 0.10),
    DOC_TYPE_GENERAL: ChunkSizeConfig(800, 400, 0.10),
}

_CODE_DOC_PATTERNS = [
    re.compile(r"function\s+\w+\s*\("),
    re.compile(r"class\s+\w+"),
    re.compile(r"import\s+.*from"),
    re.compile(r"const\s+\w+\s*="),
    re.compile(r"def\s+\w+\s*\("),
    re.compile(r"public\s+(class|interface|enum)"),
    re.compile(r"<\?php"),
    re.compile(r"```\w*\n"),
]
_TECHNICAL_KEYWORDS = (
    "api", "algorithm", "implementation", "parameter", "configuration", "dependency",
)
_ARTICLE_PATTERNS = [
    re.compile(r"^\s*#\s+", re.M),
    re.compile(r"\n\n.*\n\n"),
    re.compile(r"published|author|posted", re.I),
]
_CODE_LINE_PATTERNS = [
    re.compile(r"^```"),
    re.compile(r"^\s*(function|class|const|let|var|def|public|private)\s"),
    re.compile(r"^\s*[{}\[\];]"),
    re.compile(r"^\s*(if|for|while|switch)\s*\("),
]
_LIST_LINE_RE = re.compile(r"^(?:[\-\*•]|\d+[\.\)])\s")


@dataclasses.dataclass(frozen=True)
class _Span:
    text: str
    start: int
    end: int


@dataclasses.dataclass
class SemanticChunk:
    content: str
    start_char: int
    end_char: int
    type: ChunkType
    prev_context: Optional[str] = None
    next_context: Optional[str] = None


def detect_document_type(text: str) -> str:
    """Heuristic document type from the first 2000 characters."""
    sample = text[:2000].lower()

    code_hits = sum(1 for p in _CODE_DOC_PATTERNS if p.search(sample))
    if code_hits >= 2:
        return DOC_TYPE_CODE

    technical_hits = sum(1 for kw in _TECHNICAL_KEYWORDS if kw in sample)
    if technical_hits >= 3:
        return DOC_TYPE_TECHNICAL

    article_hits = sum(1 for p in _ARTICLE_PATTERNS if p.search(sample))
    if article_hits >= 2:
        return DOC_TYPE_ARTICLE

    return DOC_TYPE_GENERAL


def get_chunk_size_config(document_type: str, text: str) -> ChunkSizeConfig:
    if document_type not in DOCUMENT_TYPES:
        raise ValueError(f"Unknown document type: {document_type!r}")
    if document_type == DOC_TYPE_AUTO:
        document_type = detect_document_type(text)
        logger.debug("Auto-detected document type: %s", document_type)
    return SIZE_PROFILES[document_type]


def detect_chunk_type(text: str) -> ChunkType:
    lines = [line for line in text.split("\n") if line.strip()]
    if not lines:
        return ChunkType.PARAGRAPH

    code_lines = sum(
        1 for line in lines if any(p.search(line) for p in _CODE_LINE_PATTERNS)
    )
    if code_lines > len(lines) * 0.3:
        return ChunkType.CODE

    if len(lines) == 1 and len(lines[0]) < 100 and not lines[0].endswith("."):
        return ChunkType.HEADING

    list_lines = sum(1 for line in lines if _LIST_LINE_RE.match(line.strip()))
    if list_lines:
        return ChunkType.LIST if list_lines == len(lines) else ChunkType.MIXED

    return ChunkType.PARAGRAPH


def _strip_span(text: str, start: int, end: int) -> Optional[_Span]:
    segment = text[start:end]
    stripped = segment.strip()
    if not stripped:
        return None
    lead = len(segment) - len(segment.lstrip())
    return _Span(stripped, start + lead, start + lead + len(stripped))


def _split_paragraphs(text: str) -> List[_Span]:
    spans: List[_Span] = []
    pos = 0
    for m in PARAGRAPH_BREAK_RE.finditer(text):
        span = _strip_span(text, pos, m.start())
        if span:
            spans.append(span)
        pos = m.end()
    span = _strip_span(text, pos, len(text))
    if span:
        spans.append(span)
    return spans


def _split_sentence_spans(para: _Span) -> List[_Span]:
    spans: List[_Span] = []
    pos = 0
    for m in SENTENCE_END_RE.finditer(para.text):
        span = _strip_span(para.text, pos, m.end())
        if span:
            spans.append(_Span(span.text, para.start + span.start, para.start + span.end))
        pos = m.end()
    span = _strip_span(para.text, pos, len(para.text))
    if span:
        spans.append(_Span(span.text, para.start + span.start, para.start + span.end))
    return spans


def _fixed_windows(span: _Span, size: int, overlap_ratio: float) -> List[_Span]:
    """Fixed-size character windows for text without usable structure."""
    step = max(1, size - int(size * overlap_ratio))
    windows: List[_Span] = []
    offset = 0
    while offset < len(span.text):
        piece = span.text[offset : offset + size]
        windows.append(_Span(piece, span.start + offset, span.start + offset + len(piece)))
        if offset + size >= len(span.text):
            break
        offset += step
    return windows


def _make_chunk(pieces: List[_Span], sep: str) -> SemanticChunk:
    content = sep.join(p.text for p in pieces)
    return SemanticChunk(
        content=content,
        start_char=pieces[0].start,
        end_char=pieces[-1].end,
        type=detect_chunk_type(content),
    )


def _chunk_oversized_paragraph(
    para: _Span, target_size: int, overlap_ratio: float
) -> List[SemanticChunk]:
    """Split a long paragraph on sentences with one-sentence carry-forward."""
    limit = target_size * OVERSIZE_FACTOR
    chunks: List[SemanticChunk] = []
    current: List[_Span] = []
    size = 0
    for sentence in _split_sentence_spans(para):
        if len(sentence.text) > limit:
            # No usable sentence boundary: fixed windows, no carry-forward.
            if current:
                chunks.append(_make_chunk(current, " "))
                current = []
                size = 0
            for window in _fixed_windows(sentence, target_size, overlap_ratio):
                chunks.append(_make_chunk([window], " "))
            continue
        if current and size + len(sentence.text) > target_size:
            chunks.append(_make_chunk(current, " "))
            current = [current[-1], sentence]
            size = len(current[0].text) + len(sentence.text)
        else:
            current.append(sentence)
            size += len(sentence.text)
    if current:
        chunks.append(_make_chunk(current, " "))
    return chunks


def chunk_text(
    text: str,
    target_size: Optional[int] = None,
    document_type: str = DOC_TYPE_AUTO,
) -> List[SemanticChunk]:
    """
    Split text into semantic chunks with one-paragraph overlap.

    Args:
        text: Raw document text
        target_size: Target chunk size in characters (profile default if None)
        document_type: One of code, technical, article, web, general, auto

    Returns:
        Ordered chunks; empty only for whitespace-only input.
    """
    profile = get_chunk_size_config(document_type, text)
    target = target_size or profile.target_size

    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = _split_paragraphs(normalized)

    chunks: List[SemanticChunk] = []
    current: List[_Span] = []
    size = 0

    for para in paragraphs:
        para_size = len(para.text)

        if para_size > target * OVERSIZE_FACTOR:
            if current:
                chunks.append(_make_chunk(current, PARAGRAPH_SEP))
                current = []
                size = 0
            chunks.extend(_chunk_oversized_paragraph(para, target, profile.overlap_ratio))
            continue

        # size is the joined content length, separators included
        if current and size + len(PARAGRAPH_SEP) + para_size > target:
            chunks.append(_make_chunk(current, PARAGRAPH_SEP))
            current = [current[-1], para]
            size = len(current[0].text) + len(PARAGRAPH_SEP) + para_size
        else:
            size += (len(PARAGRAPH_SEP) if current else 0) + para_size
            current.append(para)

    if current:
        chunks.append(_make_chunk(current, PARAGRAPH_SEP))

    for i, chunk in enumerate(chunks):
        if i > 0:
            chunk.prev_context = last_sentence(chunks[i - 1].content)
        if i < len(chunks) - 1:
            chunk.next_context = first_sentence(chunks[i + 1].content)

    if chunks:
        sizes = [len(c.content) for c in chunks]
        logger.info(
            "Chunked %s chars into %s chunks (target=%s, avg=%s, min=%s, max=%s)",
            len(normalized),
            len(chunks),
            target,
            sum(sizes) // len(sizes),
            min(sizes),
            max(sizes),
        )
    return chunks


def format_chunk_with_context(
    content: str,
    prev_context: Optional[str],
    next_context: Optional[str],
) -> str:
    """Render chunk content with its adjacency context markers."""
    text = content
    if prev_context:
        text = f"[Previous context]: {prev_context}\n\n{text}"
    if next_context:
        text = f"{text}\n\n[Continues]: {next_context}"
    return text
