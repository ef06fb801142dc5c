"""
Document retrieval components for the RAG pipeline.

Components:
    - chunker: Split raw text into overlapping word chunks
    - embeddings: Embedding provider client and retry policy
    - indexer: Exact cosine-similarity vector index
    - ingestion: Chunk -> embed -> persist -> index for one document
    - retriever: Query embedding and top-k chunk lookup
"""

from kbcore.retrieval.chunker import chunk_text
from kbcore.retrieval.embeddings import EmbeddingClient, RetryPolicy, embed_with_retry
from kbcore.retrieval.indexer import VectorIndex, cosine_similarity
from kbcore.retrieval.ingestion import IngestionPipeline
from kbcore.retrieval.retriever import RetrievalService

__all__ = [
    "chunk_text",
    "EmbeddingClient",
    "RetryPolicy",
    "embed_with_retry",
    "VectorIndex",
    "cosine_similarity",
    "IngestionPipeline",
    "RetrievalService",
]
