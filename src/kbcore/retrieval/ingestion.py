"""
Document ingestion: chunk, embed, persist, index.

One IngestionPipeline can serve many documents. Within a document chunks are
embedded strictly one at a time; independent documents may be ingested
concurrently with ingest_many.
"""

import asyncio
import itertools
import logging
import time
from typing import Callable, Optional, Sequence

from kbcore.exceptions import IngestionCancelledError
from kbcore.models import Chunk, Document, IngestionResult
from kbcore.retrieval.chunker import chunk_text
from kbcore.retrieval.embeddings import EmbeddingClient, RetryPolicy, embed_with_retry
from kbcore.retrieval.indexer import VectorIndex
from kbcore.storage import ChunkStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Progress milestones
PROGRESS_START = 0.0
PROGRESS_RESET = 0.1
PROGRESS_READ = 0.2
PROGRESS_EMBED_START = 0.3
PROGRESS_EMBED_SPAN = 0.6
PROGRESS_DONE = 1.0


class IngestionPipeline:
    """
    Turn a document's raw text into embedded, persisted, searchable chunks.

    Each chunk is saved to the store before it is added to the index, so the
    index never points at a chunk that was not persisted. If embedding fails
    after all retries, chunks embedded so far stay in place and the error
    propagates.

    Example:
        >>> pipeline = IngestionPipeline(client, index, store)
        >>> result = await pipeline.ingest(TextDocument(title="FAQ", content=text))
        >>> result.chunk_count
        4
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        index: VectorIndex,
        store: ChunkStore,
        retry_policy: Optional[RetryPolicy] = None,
        chunk_size: int = 1000,
        overlap: int = 200,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.chunk_size = chunk_size
        self.overlap = overlap
        self._order = itertools.count(self._first_order(store))

    @staticmethod
    def _first_order(store: ChunkStore) -> int:
        existing = store.fetch_all_chunks_with_embeddings()
        return max((chunk.created_order for chunk in existing), default=-1) + 1

    async def ingest(
        self,
        document: Document,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IngestionResult:
        """
        Ingest a document, replacing any chunks it already had.

        Args:
            document: Document to process; its ``chunks`` list is repopulated
            progress_callback: Receives monotonically increasing fractions in [0, 1]
            cancel_event: Checked before every chunk and between retry attempts

        Returns:
            IngestionResult with the number of chunks embedded

        Raises:
            EmbeddingError: If a chunk still fails after all retry attempts
            DimensionMismatchError: If the provider returns a vector of the wrong length
            StorageError: If the document cannot be read or a chunk cannot be saved
            IngestionCancelledError: If cancel_event is set at a checkpoint
        """
        started = time.perf_counter()

        def report(fraction: float) -> None:
            if progress_callback is not None:
                progress_callback(fraction)

        report(PROGRESS_START)

        self.delete_document(document)
        report(PROGRESS_RESET)

        text = document.read_text()
        report(PROGRESS_READ)

        pieces = chunk_text(text, chunk_size=self.chunk_size, overlap=self.overlap)
        total = len(pieces)
        logger.info(f"Ingesting document {document.id} ({document.title!r}): {total} chunks")

        if total == 0:
            document.is_processed = True
            report(PROGRESS_DONE)
            return IngestionResult(document_id=document.id, chunk_count=0, elapsed_seconds=time.perf_counter() - started)

        report(PROGRESS_EMBED_START)

        for completed, piece in enumerate(pieces):
            if cancel_event is not None and cancel_event.is_set():
                raise IngestionCancelledError(document.id, completed)

            chunk = Chunk(text=piece, owner_document_id=document.id, created_order=next(self._order))
            vector = await embed_with_retry(
                self.embedder,
                piece,
                self.retry_policy,
                cancel_event=cancel_event,
                document_id=document.id,
                completed_chunks=completed,
            )
            chunk.attach_embedding(vector)

            # Store I/O runs off the event loop so concurrent ingestions keep moving
            await asyncio.to_thread(self.store.save, chunk)
            self.index.upsert(chunk.id, chunk.embedding)
            document.chunks.append(chunk)

            logger.debug(f"Document {document.id}: embedded chunk {completed + 1}/{total}")
            report(PROGRESS_EMBED_START + PROGRESS_EMBED_SPAN * (completed + 1) / total)

        document.is_processed = True
        report(PROGRESS_DONE)
        elapsed = time.perf_counter() - started
        logger.info(f"Ingested document {document.id}: {total} chunks in {elapsed:.1f}s")
        return IngestionResult(document_id=document.id, chunk_count=total, elapsed_seconds=elapsed)

    async def ingest_many(
        self,
        documents: Sequence[Document],
        progress_callback: Optional[Callable[[str, float], None]] = None,
    ) -> list[IngestionResult]:
        """
        Ingest independent documents concurrently.

        Each document keeps its own sequential chunk loop and rate-limit
        spacing. The first failure propagates once every pipeline has settled.

        Args:
            documents: Documents to ingest
            progress_callback: Receives (document_id, fraction)
        """

        def per_document(document: Document) -> Optional[ProgressCallback]:
            if progress_callback is None:
                return None
            return lambda fraction: progress_callback(document.id, fraction)

        outcomes = await asyncio.gather(
            *(self.ingest(document, per_document(document)) for document in documents),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)

    def delete_document(self, document: Document) -> int:
        """
        Remove every chunk of ``document`` from the index, then from the store.

        Index removal happens first so a concurrent search never returns a
        chunk whose storage is already gone.

        Returns:
            Number of chunks removed
        """
        chunks = list(document.chunks)
        for chunk in chunks:
            self.index.remove(chunk.id)
        for chunk in chunks:
            self.store.delete(chunk.id)

        document.chunks.clear()
        if chunks:
            logger.info(f"Removed {len(chunks)} chunks of document {document.id}")
        return len(chunks)


def delete_chunks(chunk_ids: Sequence[str], index: VectorIndex, store: ChunkStore) -> None:
    """Delete chunks by id when no Document object is at hand (index first)."""
    for chunk_id in chunk_ids:
        index.remove(chunk_id)
    for chunk_id in chunk_ids:
        store.delete(chunk_id)
