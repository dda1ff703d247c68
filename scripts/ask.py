"""
Ingest text files into a local store and ask a question over them.

Usage:
  python -m scripts.ask docs/*.md --question "How does chunk overlap work?"
  python -m scripts.ask notes.txt -q "What is BM25?" --database sqlite+aiosqlite:///rag.db --stream
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from localrag.llm.client import create_engine
from localrag.llm.embedder import SentenceTransformerEmbedder
from localrag.orchestrator import ConversationMemory, ProcessingStatus, RAGPipeline
from localrag.rag.config import RAGConfig
from localrag.rag.index import DocumentStatus
from localrag.store.sql import SQLStore


def _print_progress(status: ProcessingStatus) -> None:
    print(f"  [{status.stage}] {status.progress:5.1f}% {status.message}", file=sys.stderr)


async def run(
    paths: List[Path],
    question: Optional[str],
    *,
    database_url: Optional[str] = None,
    top_k: int = 5,
    stream: bool = False,
) -> None:
    store = SQLStore(database_url)
    await store.create_all()
    pipeline = RAGPipeline(
        store=store,
        embedder=SentenceTransformerEmbedder(),
        chat_engine=create_engine(),
        config=RAGConfig.from_env(),
        memory=ConversationMemory(),
    )
    try:
        known = {d.name for d in await store.list_documents(DocumentStatus.READY)}
        for path in paths:
            if path.name in known:
                print(f"Skipping {path.name} (already indexed)", file=sys.stderr)
                continue
            print(f"Indexing {path}", file=sys.stderr)
            await pipeline.add_document(
                path.name,
                path.read_text(encoding="utf-8"),
                on_progress=_print_progress,
            )

        stats = await store.get_stats()
        print(
            f"Index: {stats.documents} documents, {stats.chunks} chunks, "
            f"{stats.embeddings} embeddings ({stats.dimension}-dim)",
            file=sys.stderr,
        )

        if not question:
            return

        on_stream = (lambda token: print(token, end="", flush=True)) if stream else None
        result = await pipeline.complete_rag_flow(question, top_k=top_k, on_stream=on_stream)
        if stream:
            print()
        else:
            print(result.answer)
        if result.rag_result.is_empty:
            print("\n(No relevant documents were found for this question.)")
            return

        print("\nSources:")
        for i, rc in enumerate(result.context.chunks, 1):
            print(f"  [{i}] {rc.document.name} #{rc.chunk.index} ({rc.relevance:.0%})")
        if result.quality is not None:
            print(f"Retrieval quality: {result.quality.overall}")
        if result.faithfulness is not None:
            print(f"Faithfulness: {result.faithfulness:.0%}")
    finally:
        await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Index local text files and answer a question with RAG.",
    )
    parser.add_argument("paths", nargs="*", type=Path, help="Text files to index")
    parser.add_argument("-q", "--question", type=str, default=None, help="Question to ask")
    parser.add_argument(
        "--database",
        type=str,
        default=None,
        help="SQLAlchemy async URL (default: DATABASE_URL or sqlite+aiosqlite:///localrag.db)",
    )
    parser.add_argument("--top-k", type=int, default=5, help="Chunks used as context")
    parser.add_argument("--stream", action="store_true", help="Stream tokens as they arrive")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(
        run(
            args.paths,
            args.question,
            database_url=args.database,
            top_k=max(1, args.top_k),
            stream=args.stream,
        )
    )


if __name__ == "__main__":
    main()
