"""
RAG pipeline: ingestion (chunk → embed → store) and query (rewrite/expand → search → fuse → rerank → generate).
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from localrag.generation import AssembledContext, GenerationConfig, budget_chars, build_context
from localrag.generation.generator import generate_answer
from localrag.llm.engine import ChatEngine, EmbeddingEngine, Message, TokenCallback, embed_batch
from localrag.rag.chunking import chunk_text
from localrag.rag.config import RAGConfig
from localrag.rag.hybrid import HybridSearcher
from localrag.rag.index import (
    Chunk,
    ChunkMetadata,
    Document,
    DocumentStatus,
    Embedding,
    new_id,
)
from localrag.rag.query_rewriter import expand_query, is_short_query, rewrite_query
from localrag.rag.reranker import llm_rerank
from localrag.rag.retriever import RAGResult, RetrievedChunk, Retriever
from localrag.rag.rrf_merger import fuse_retrieved
from localrag.rag.utils import estimate_tokens
from localrag.store.base import ChunkStore, DocumentNotFound

from .evaluator import (
    QualityAssessment,
    RAGMetrics,
    assess_rag_quality,
    calculate_faithfulness,
    calculate_rag_metrics,
)
from .memory import ConversationMemory

logger = logging.getLogger(__name__)

STAGE_CHUNKING = "chunking"
STAGE_EMBEDDING = "embedding"
STAGE_STORING = "storing"
STAGE_COMPLETE = "complete"
STAGE_ERROR = "error"


class IngestionError(RuntimeError):
    """Raised when a document could not be chunked, embedded or stored."""

    def __init__(self, document_id: str, message: str):
        super().__init__(f"Failed to process document {document_id}: {message}")
        self.document_id = document_id


@dataclass
class ProcessingStatus:
    """Progress event emitted during ingestion."""

    document_id: str
    stage: str
    progress: float
    message: str
    error: Optional[str] = None


ProcessingCallback = Callable[[ProcessingStatus], None]


@dataclass
class QueryOptions:
    """Per-query overrides; None falls back to RAGConfig."""

    use_query_expansion: Optional[bool] = None
    use_query_rewriting: Optional[bool] = None
    use_llm_reranking: Optional[bool] = None
    calculate_metrics: bool = True
    additional_context: Optional[str] = None


@dataclass
class RAGFlowResult:
    """Answer plus everything used to produce and evaluate it."""

    answer: str
    rag_result: RAGResult
    context: AssembledContext
    metrics: Optional[RAGMetrics] = None
    quality: Optional[QualityAssessment] = None
    faithfulness: Optional[float] = None


def _enabled(override: Optional[bool], default: bool) -> bool:
    return default if override is None else override


class RAGPipeline:
    """
    Local RAG over a ChunkStore.

    The embedding engine is required; without a chat engine rewriting,
    expansion and LLM reranking are skipped and answers cannot be generated.
    """

    def __init__(
        self,
        store: ChunkStore,
        embedder: EmbeddingEngine,
        chat_engine: Optional[ChatEngine] = None,
        config: Optional[RAGConfig] = None,
        generation_config: Optional[GenerationConfig] = None,
        searcher: Optional[Retriever] = None,
        memory: Optional[ConversationMemory] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.chat_engine = chat_engine
        self.config = config or RAGConfig()
        self.generation_config = generation_config or GenerationConfig()
        self.searcher = searcher or HybridSearcher(store=store, config=self.config)
        self.memory = memory

    # Ingestion

    async def add_document(
        self,
        name: str,
        text: str,
        chunk_size: Optional[int] = None,
        on_progress: Optional[ProcessingCallback] = None,
    ) -> Document:
        """Register a new document and process it; returns the ready document."""
        document = Document.create(name, text)
        await self.store.put_document(document)
        await self.process_document(document.id, text, chunk_size, on_progress)
        return await self.store.get_document(document.id)

    async def chunk_and_store(
        self,
        document_id: str,
        text: str,
        chunk_size: Optional[int] = None,
    ) -> List[Chunk]:
        """
        Chunk text and atomically replace the document's chunks.

        The document is left PROCESSING until its chunks are embedded again.
        """
        if await self.store.get_document(document_id) is None:
            raise DocumentNotFound(document_id)

        chunks = [
            Chunk(
                id=new_id(),
                document_id=document_id,
                index=i,
                content=sc.content,
                tokens=estimate_tokens(sc.content),
                metadata=ChunkMetadata(
                    start_char=sc.start_char,
                    end_char=sc.end_char,
                    type=sc.type,
                    prev_context=sc.prev_context,
                    next_context=sc.next_context,
                ),
            )
            for i, sc in enumerate(chunk_text(text, target_size=chunk_size))
        ]
        # the old embeddings go with the old chunks
        await self.store.update_document(
            document_id, status=DocumentStatus.PROCESSING, chunk_count=0
        )
        await self.store.replace_chunks(document_id, chunks)
        await self.store.update_document(document_id, chunk_count=len(chunks))
        return chunks

    async def process_document(
        self,
        document_id: str,
        text: str,
        chunk_size: Optional[int] = None,
        on_progress: Optional[ProcessingCallback] = None,
    ) -> None:
        """
        Chunk, embed and store a document, then mark it ready.

        On failure partial chunks and embeddings are removed, the document is
        marked `error` and IngestionError is raised.
        """

        def report(stage: str, progress: float, message: str, error: Optional[str] = None) -> None:
            if on_progress is not None:
                on_progress(ProcessingStatus(document_id, stage, progress, message, error))

        if await self.store.get_document(document_id) is None:
            raise DocumentNotFound(document_id)

        start = time.perf_counter()
        try:
            await self.store.update_document(document_id, status=DocumentStatus.PROCESSING)
            report(STAGE_CHUNKING, 10, "Splitting document into chunks...")
            chunks = await self.chunk_and_store(document_id, text, chunk_size)
            if not chunks:
                raise ValueError("document has no text to index")
            logger.info("Created %s chunks for document %s", len(chunks), document_id)

            report(STAGE_EMBEDDING, 30, f"Generating embeddings (0/{len(chunks)})...")
            vectors = await embed_batch(
                self.embedder,
                [c.content for c in chunks],
                max_concurrent=self.config.embedding_concurrency,
                on_progress=lambda pct, msg: report(STAGE_EMBEDDING, 30 + pct * 0.6, msg),
            )

            report(STAGE_STORING, 95, "Storing embeddings...")
            await self.store.put_embeddings(
                [
                    Embedding(
                        chunk_id=c.id,
                        document_id=document_id,
                        vector=v,
                        model=self.embedder.model_id,
                    )
                    for c, v in zip(chunks, vectors)
                ]
            )
            await self.store.update_document(
                document_id, status=DocumentStatus.READY, chunk_count=len(chunks)
            )
        except asyncio.CancelledError:
            await self._discard_partial(document_id, "processing cancelled")
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error("Failed to process document %s: %s", document_id, message)
            await self._discard_partial(document_id, message)
            report(STAGE_ERROR, 0, "Error processing document", message)
            raise IngestionError(document_id, message) from e

        report(STAGE_COMPLETE, 100, "Document processed")
        logger.info(
            "Document %s processed: %s chunks in %.0f ms",
            document_id,
            len(chunks),
            (time.perf_counter() - start) * 1000,
        )

    async def _discard_partial(self, document_id: str, message: str) -> None:
        await self.store.replace_chunks(document_id, [])
        await self.store.update_document(
            document_id, status=DocumentStatus.ERROR, error=message, chunk_count=0
        )

    async def is_document_ready(self, document_id: str) -> bool:
        document = await self.store.get_document(document_id)
        return (
            document is not None
            and document.status == DocumentStatus.READY
            and document.chunk_count > 0
        )

    # Query

    async def query_with_rag(
        self,
        query: str,
        top_k: int = 5,
        document_ids: Optional[Sequence[str]] = None,
        options: Optional[QueryOptions] = None,
    ) -> RAGResult:
        """Retrieve the top_k chunks for a query across its rewritten/expanded variants."""
        options = options or QueryOptions()
        start = time.perf_counter()
        cfg = self.config

        search_query = query
        if self.chat_engine is not None and _enabled(
            options.use_query_rewriting, cfg.use_query_rewriting
        ):
            follow_up = self.memory.get_relevant_context() if self.memory is not None else ""
            search_query = await rewrite_query(query, self.chat_engine, context=follow_up or None)

        queries = [search_query]
        if self.chat_engine is not None and _enabled(
            options.use_query_expansion, cfg.use_query_expansion
        ):
            expansion = await expand_query(
                search_query,
                self.chat_engine,
                max_variations=cfg.max_variations,
                include_original=False,
            )
            queries.extend(v for v in expansion.queries if v not in queries)
            logger.info("Searching with %s query variants", len(queries))

        result_lists: List[List[RetrievedChunk]] = []
        for variant in queries:
            embedding = await self.embedder.embed(variant)
            result_lists.append(
                await self.searcher.search(
                    embedding,
                    variant,
                    document_ids=document_ids,
                    top_k=top_k + cfg.fetch_extra,
                )
            )

        if len(result_lists) > 1:
            combined = fuse_retrieved(result_lists, k_rrf=cfg.rrf_k)
        else:
            combined = result_lists[0]

        if (
            self.chat_engine is not None
            and len(combined) > 1
            and _enabled(options.use_llm_reranking, cfg.use_llm_reranking)
        ):
            combined = await llm_rerank(combined, query, self.chat_engine)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "RAG query %r: %s chunks from %s candidates in %.0f ms",
            query,
            min(top_k, len(combined)),
            len(combined),
            elapsed_ms,
        )
        return RAGResult(
            query=query,
            chunks=combined[:top_k],
            total_searched=len(combined),
            search_time_ms=elapsed_ms,
        )

    # Generation

    def assemble_context(self, chunks: Sequence[RetrievedChunk]) -> AssembledContext:
        gen = self.generation_config
        max_chars = budget_chars(gen.context_window, gen.max_output_tokens, gen.chars_per_token)
        return build_context(chunks, max_chars)

    def _require_chat_engine(self) -> ChatEngine:
        if self.chat_engine is None:
            raise ValueError("A chat engine is required to generate answers")
        return self.chat_engine

    async def generate_rag_answer(
        self,
        query: str,
        rag_result: RAGResult,
        history: Optional[Sequence[Message]] = None,
        on_stream: Optional[TokenCallback] = None,
        additional_context: Optional[str] = None,
    ) -> str:
        """Generate an answer grounded in the retrieved chunks."""
        context = self.assemble_context(rag_result.chunks)
        return await generate_answer(
            self._require_chat_engine(),
            query,
            context.text,
            history=history,
            on_stream=on_stream,
            additional_context=additional_context,
            config=self.generation_config,
        )

    async def complete_rag_flow(
        self,
        query: str,
        top_k: int = 5,
        document_ids: Optional[Sequence[str]] = None,
        history: Optional[Sequence[Message]] = None,
        on_stream: Optional[TokenCallback] = None,
        options: Optional[QueryOptions] = None,
    ) -> RAGFlowResult:
        """
        Retrieve, assemble, generate and evaluate.

        Short queries are rewritten unless `options.use_query_rewriting` is
        explicitly False.
        """
        chat_engine = self._require_chat_engine()
        options = options or QueryOptions()
        should_rewrite = options.use_query_rewriting is not False and (
            bool(options.use_query_rewriting)
            or self.config.use_query_rewriting
            or is_short_query(query)
        )
        rag_result = await self.query_with_rag(
            query,
            top_k=top_k,
            document_ids=document_ids,
            options=dataclasses.replace(options, use_query_rewriting=should_rewrite),
        )
        context = self.assemble_context(rag_result.chunks)

        metrics = quality = None
        if options.calculate_metrics:
            metrics = calculate_rag_metrics(query, rag_result.chunks, context.text)
            quality = assess_rag_quality(metrics)
            logger.info("RAG quality: %s", quality.overall)
            if quality.warnings:
                logger.info("RAG quality warnings: %s", "; ".join(quality.warnings))

        if history is None and self.memory is not None:
            history = self.memory.get_history()
        answer = await generate_answer(
            chat_engine,
            query,
            context.text,
            history=history,
            on_stream=on_stream,
            additional_context=options.additional_context,
            config=self.generation_config,
        )

        faithfulness = None
        if options.calculate_metrics:
            faithfulness = calculate_faithfulness(
                answer, context.text, self.config.faithfulness_threshold
            )

        if self.memory is not None:
            self.memory.add_turn(query, answer, [rc.chunk_id for rc in context.chunks])

        return RAGFlowResult(
            answer=answer,
            rag_result=rag_result,
            context=context,
            metrics=metrics,
            quality=quality,
            faithfulness=faithfulness,
        )
