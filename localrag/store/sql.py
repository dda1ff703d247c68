"""
SQLAlchemy-backed store (SQLite via aiosqlite by default).
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    delete,
    func,
    select,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from localrag.rag.index import (
    Chunk,
    ChunkMetadata,
    ChunkType,
    Document,
    DocumentStatus,
    Embedding,
)

from .base import DocumentNotFound, StoreStats, check_embedding_generation, next_boost

logger = logging.getLogger(__name__)


def _get_database_url() -> str:
    """Return the async database URL, defaulting to a local SQLite file."""
    return os.getenv("DATABASE_URL", "sqlite+aiosqlite:///localrag.db")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class DocumentRow(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    uploaded_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ChunkRow(Base):
    __tablename__ = "chunks"
    __table_args__ = (UniqueConstraint("document_id", "chunk_index", name="uq_chunk_position"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document_id: Mapped[str] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    start_char: Mapped[int] = mapped_column(Integer, nullable=False)
    end_char: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_type: Mapped[str] = mapped_column(String(16), nullable=False)
    prev_context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class EmbeddingRow(Base):
    __tablename__ = "embeddings"

    chunk_id: Mapped[str] = mapped_column(
        ForeignKey("chunks.id", ondelete="CASCADE"), primary_key=True
    )
    document_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # float32 bytes
    vector: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    dimension: Mapped[int] = mapped_column(Integer, nullable=False)
    model: Mapped[str] = mapped_column(String(255), nullable=False)


class ChunkRelevanceRow(Base):
    __tablename__ = "chunk_relevance"

    chunk_id: Mapped[str] = mapped_column(
        ForeignKey("chunks.id", ondelete="CASCADE"), primary_key=True
    )
    boost: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)


def _to_document(row: DocumentRow) -> Document:
    uploaded_at = row.uploaded_at
    if uploaded_at.tzinfo is None:
        # SQLite drops the offset
        uploaded_at = uploaded_at.replace(tzinfo=dt.timezone.utc)
    return Document(
        id=row.id,
        name=row.name,
        content=row.content,
        uploaded_at=uploaded_at,
        size=row.size,
        status=DocumentStatus(row.status),
        error=row.error,
        chunk_count=row.chunk_count,
    )


def _to_chunk(row: ChunkRow) -> Chunk:
    return Chunk(
        id=row.id,
        document_id=row.document_id,
        index=row.chunk_index,
        content=row.content,
        tokens=row.tokens,
        metadata=ChunkMetadata(
            start_char=row.start_char,
            end_char=row.end_char,
            type=ChunkType(row.chunk_type),
            prev_context=row.prev_context,
            next_context=row.next_context,
        ),
    )


def _to_embedding(row: EmbeddingRow) -> Embedding:
    return Embedding(
        chunk_id=row.chunk_id,
        document_id=row.document_id,
        vector=np.frombuffer(row.vector, dtype=np.float32).copy(),
        model=row.model,
    )


class SQLStore:
    """ChunkStore persisted through SQLAlchemy's async ORM."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        url = database_url or _get_database_url()
        if engine is None:
            kwargs: dict = {"echo": False, "future": True}
            if url.startswith("sqlite") and ":memory:" in url:
                # one shared connection, otherwise every session sees an empty db
                kwargs.update(
                    poolclass=StaticPool, connect_args={"check_same_thread": False}
                )
            engine = create_async_engine(url, **kwargs)
        self.engine = engine
        self.sessionmaker = async_sessionmaker(
            bind=engine, expire_on_commit=False, class_=AsyncSession
        )

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # Documents

    async def put_document(self, document: Document) -> None:
        async with self.sessionmaker() as session:
            await session.merge(
                DocumentRow(
                    id=document.id,
                    name=document.name,
                    content=document.content,
                    uploaded_at=document.uploaded_at,
                    size=document.size,
                    status=DocumentStatus(document.status).value,
                    error=document.error,
                    chunk_count=document.chunk_count,
                )
            )
            await session.commit()

    async def get_document(self, document_id: str) -> Optional[Document]:
        async with self.sessionmaker() as session:
            row = await session.get(DocumentRow, document_id)
            return _to_document(row) if row is not None else None

    async def list_documents(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        stmt = select(DocumentRow).order_by(DocumentRow.uploaded_at)
        if status is not None:
            stmt = stmt.where(DocumentRow.status == DocumentStatus(status).value)
        async with self.sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_document(r) for r in rows]

    async def update_document(
        self,
        document_id: str,
        *,
        status: Optional[DocumentStatus] = None,
        error: Optional[str] = None,
        chunk_count: Optional[int] = None,
    ) -> Document:
        async with self.sessionmaker() as session:
            row = await session.get(DocumentRow, document_id)
            if row is None:
                raise DocumentNotFound(document_id)
            if status is not None:
                row.status = DocumentStatus(status).value
                row.error = error
            if chunk_count is not None:
                row.chunk_count = chunk_count
            await session.commit()
            return _to_document(row)

    async def delete_document(self, document_id: str) -> None:
        async with self.sessionmaker() as session:
            await self._delete_chunks(session, document_id)
            await session.execute(delete(DocumentRow).where(DocumentRow.id == document_id))
            await session.commit()

    # Chunks

    @staticmethod
    async def _delete_chunks(session: AsyncSession, document_id: str) -> None:
        chunk_ids = select(ChunkRow.id).where(ChunkRow.document_id == document_id)
        for stmt in (
            delete(ChunkRelevanceRow).where(ChunkRelevanceRow.chunk_id.in_(chunk_ids)),
            delete(EmbeddingRow).where(EmbeddingRow.document_id == document_id),
            delete(ChunkRow).where(ChunkRow.document_id == document_id),
        ):
            await session.execute(stmt.execution_options(synchronize_session=False))

    async def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        ordered = sorted(chunks, key=lambda c: c.index)
        if [c.index for c in ordered] != list(range(len(ordered))):
            raise ValueError("Chunk indices must be contiguous from 0")
        async with self.sessionmaker() as session:
            async with session.begin():
                if await session.get(DocumentRow, document_id) is None:
                    raise DocumentNotFound(document_id)
                await self._delete_chunks(session, document_id)
                session.add_all(
                    ChunkRow(
                        id=c.id,
                        document_id=document_id,
                        chunk_index=c.index,
                        content=c.content,
                        tokens=c.tokens,
                        start_char=c.metadata.start_char,
                        end_char=c.metadata.end_char,
                        chunk_type=ChunkType(c.metadata.type).value,
                        prev_context=c.metadata.prev_context,
                        next_context=c.metadata.next_context,
                    )
                    for c in ordered
                )

    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        async with self.sessionmaker() as session:
            row = await session.get(ChunkRow, chunk_id)
            return _to_chunk(row) if row is not None else None

    async def get_chunks(self, chunk_ids: Sequence[str]) -> List[Chunk]:
        if not chunk_ids:
            return []
        async with self.sessionmaker() as session:
            rows = (
                await session.execute(select(ChunkRow).where(ChunkRow.id.in_(list(chunk_ids))))
            ).scalars().all()
        by_id = {r.id: _to_chunk(r) for r in rows}
        return [by_id[cid] for cid in chunk_ids if cid in by_id]

    async def get_chunks_by_document(self, document_id: str) -> List[Chunk]:
        stmt = (
            select(ChunkRow)
            .where(ChunkRow.document_id == document_id)
            .order_by(ChunkRow.chunk_index)
        )
        async with self.sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_chunk(r) for r in rows]

    async def get_surrounding_chunks(
        self, document_id: str, index: int, window: int
    ) -> List[Chunk]:
        stmt = (
            select(ChunkRow)
            .where(
                ChunkRow.document_id == document_id,
                ChunkRow.chunk_index >= index - window,
                ChunkRow.chunk_index <= index + window,
            )
            .order_by(ChunkRow.chunk_index)
        )
        async with self.sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_chunk(r) for r in rows]

    # Embeddings

    async def _generation(self, session: AsyncSession) -> tuple[Optional[str], Optional[int]]:
        row = (
            await session.execute(select(EmbeddingRow.model, EmbeddingRow.dimension).limit(1))
        ).first()
        if row is None:
            return None, None
        return row[0], row[1]

    async def put_embeddings(self, embeddings: Sequence[Embedding]) -> None:
        async with self.sessionmaker() as session:
            async with session.begin():
                model, dimension = await self._generation(session)
                check_embedding_generation(embeddings, model, dimension)
                ids = [e.chunk_id for e in embeddings]
                known = set(
                    (
                        await session.execute(select(ChunkRow.id).where(ChunkRow.id.in_(ids)))
                    ).scalars()
                )
                for emb in embeddings:
                    if emb.chunk_id not in known:
                        raise ValueError(f"Embedding for unknown chunk {emb.chunk_id}")
                    await session.merge(
                        EmbeddingRow(
                            chunk_id=emb.chunk_id,
                            document_id=emb.document_id,
                            vector=emb.vector.astype(np.float32).tobytes(),
                            dimension=emb.dimension,
                            model=emb.model,
                        )
                    )

    async def get_all_embeddings(
        self, document_ids: Optional[Sequence[str]] = None
    ) -> List[Embedding]:
        stmt = (
            select(EmbeddingRow)
            .join(ChunkRow, ChunkRow.id == EmbeddingRow.chunk_id)
            .join(DocumentRow, DocumentRow.id == ChunkRow.document_id)
            .order_by(DocumentRow.uploaded_at, DocumentRow.id, ChunkRow.chunk_index)
        )
        if document_ids is not None:
            stmt = stmt.where(EmbeddingRow.document_id.in_(list(document_ids)))
        async with self.sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_embedding(r) for r in rows]

    async def clear_embeddings(self) -> None:
        async with self.sessionmaker() as session:
            await session.execute(delete(EmbeddingRow))
            await session.commit()

    # Relevance feedback

    async def get_chunk_boosts(self, chunk_ids: Sequence[str]) -> Dict[str, float]:
        if not chunk_ids:
            return {}
        stmt = select(ChunkRelevanceRow).where(ChunkRelevanceRow.chunk_id.in_(list(chunk_ids)))
        async with self.sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return {r.chunk_id: r.boost for r in rows}

    async def update_chunk_relevance(self, chunk_id: str, vote: str) -> float:
        async with self.sessionmaker() as session:
            async with session.begin():
                if await session.get(ChunkRow, chunk_id) is None:
                    raise ValueError(f"Unknown chunk {chunk_id!r}")
                row = await session.get(ChunkRelevanceRow, chunk_id)
                boost = next_boost(row.boost if row is not None else None, vote)
                if row is None:
                    session.add(ChunkRelevanceRow(chunk_id=chunk_id, boost=boost))
                else:
                    row.boost = boost
        logger.debug("Chunk %s relevance boost now %.2f (%s)", chunk_id, boost, vote)
        return boost

    async def get_stats(self) -> StoreStats:
        async with self.sessionmaker() as session:
            documents = await session.scalar(select(func.count()).select_from(DocumentRow))
            chunks = await session.scalar(select(func.count()).select_from(ChunkRow))
            by_document = dict(
                (
                    await session.execute(
                        select(EmbeddingRow.document_id, func.count()).group_by(
                            EmbeddingRow.document_id
                        )
                    )
                ).all()
            )
            by_model = dict(
                (
                    await session.execute(
                        select(EmbeddingRow.model, func.count()).group_by(EmbeddingRow.model)
                    )
                ).all()
            )
            _, dimension = await self._generation(session)
        return StoreStats(
            documents=documents or 0,
            chunks=chunks or 0,
            embeddings=sum(by_model.values()),
            by_document=by_document,
            by_model=by_model,
            dimension=dimension or 0,
        )
