"""
kbcore: Retrieval-augmented generation support engine

Ingests free text, splits it into overlapping chunks, embeds every chunk with
a remote embedding provider, persists chunk+vector pairs and finds the chunks
most similar to a query.

Key Components:
    - retrieval: Chunking, embedding, vector index, ingestion and retrieval
    - storage: Chunk persistence contract and reference stores
    - models: Chunk, Document and provider wire schemas
    - exceptions: Error taxonomy
    - cli: Typer command-line interface

Example:
    >>> from kbcore import EmbeddingClient, IngestionPipeline, RetrievalService
    >>> pipeline = IngestionPipeline(client, index, store)
    >>> await pipeline.ingest(TextDocument(title="Notes", content=text))
    >>> chunks = await RetrievalService(client, index, store).retrieve("refund policy")
"""

__version__ = "0.1.0"

from kbcore.models import Chunk, FileDocument, SimilarityMatch, TextDocument
from kbcore.retrieval import (
    EmbeddingClient,
    IngestionPipeline,
    RetrievalService,
    RetryPolicy,
    VectorIndex,
    chunk_text,
)
from kbcore.storage import ChunkStore, InMemoryChunkStore, JSONChunkStore

__all__ = [
    "__version__",
    "Chunk",
    "ChunkStore",
    "EmbeddingClient",
    "FileDocument",
    "IngestionPipeline",
    "InMemoryChunkStore",
    "JSONChunkStore",
    "RetrievalService",
    "RetryPolicy",
    "SimilarityMatch",
    "TextDocument",
    "VectorIndex",
    "chunk_text",
]
