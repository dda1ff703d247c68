"""
Core records for the local knowledge base: documents, chunks and embeddings.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import uuid
from typing import Optional

import numpy as np


class DocumentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class ChunkType(str, enum.Enum):
    PARAGRAPH = "paragraph"
    LIST = "list"
    HEADING = "heading"
    MIXED = "mixed"
    CODE = "code"


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclasses.dataclass
class Document:
    """An uploaded document and its ingestion state."""

    id: str
    name: str
    content: str
    uploaded_at: dt.datetime = dataclasses.field(default_factory=utcnow)
    size: int = 0
    status: DocumentStatus = DocumentStatus.PENDING
    error: Optional[str] = None
    chunk_count: int = 0

    @classmethod
    def create(
        cls,
        name: str,
        content: str,
        *,
        uploaded_at: Optional[dt.datetime] = None,
    ) -> "Document":
        return cls(
            id=new_id(),
            name=name,
            content=content,
            uploaded_at=uploaded_at or utcnow(),
            size=len(content),
        )


@dataclasses.dataclass(frozen=True)
class ChunkMetadata:
    """Offsets refer to the document text after line-ending normalisation."""

    start_char: int
    end_char: int
    type: ChunkType = ChunkType.PARAGRAPH
    prev_context: Optional[str] = None
    next_context: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class Chunk:
    """A contiguous span of a document used as the atomic retrieval unit."""

    id: str
    document_id: str
    index: int
    content: str
    tokens: int
    metadata: ChunkMetadata

    @property
    def has_adjacent_context(self) -> bool:
        return bool(self.metadata.prev_context or self.metadata.next_context)


@dataclasses.dataclass
class Embedding:
    """Vector for one chunk; `model` identifies the embedding generation."""

    chunk_id: str
    document_id: str
    vector: np.ndarray
    model: str

    def __post_init__(self) -> None:
        self.vector = np.asarray(self.vector, dtype=np.float32)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])
