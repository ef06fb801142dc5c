"""
Integration tests for the ingestion and retrieval pipeline.

These tests verify that chunking, embedding, persistence, indexing and
retrieval work correctly together.
"""

import pytest
from pytest_httpx import HTTPXMock

from conftest import DIMENSION, FakeEmbeddingClient, distinct_words
from kbcore.models import FileDocument, TextDocument
from kbcore.retrieval.embeddings import DEFAULT_ENDPOINT, EmbeddingClient, RetryPolicy
from kbcore.retrieval.indexer import VectorIndex
from kbcore.retrieval.ingestion import IngestionPipeline
from kbcore.retrieval.retriever import RetrievalService
from kbcore.storage import JSONChunkStore


@pytest.mark.integration
class TestEndToEnd:
    """Ingest a document, query it, delete it."""

    @pytest.mark.asyncio
    async def test_ingest_query_delete(self, fake_embedder, vector_index, memory_store, retry_policy):
        document = TextDocument(title="words", content=" ".join(distinct_words(300, first="alpha")))
        pipeline = IngestionPipeline(
            fake_embedder, vector_index, memory_store, retry_policy, chunk_size=1000, overlap=20
        )
        service = RetrievalService(fake_embedder, vector_index, memory_store, retry_policy)

        result = await pipeline.ingest(document)

        assert result.chunk_count == 2
        assert len(fake_embedder.calls) == 2
        assert all(chunk.embedding.shape == (DIMENSION,) for chunk in document.chunks)
        # The second chunk opens with the last 20 words of the first
        first_words = document.chunks[0].text.split()
        assert document.chunks[1].text.split()[:20] == first_words[-20:]

        results = await service.retrieve("alpha", limit=1)
        assert len(results) == 1
        assert "alpha" in results[0].text.split()
        assert results[0].id == document.chunks[0].id

        deleted_ids = {chunk.id for chunk in document.chunks}
        pipeline.delete_document(document)

        assert await service.retrieve("alpha", limit=5) == []
        for chunk_id in deleted_ids:
            assert chunk_id not in vector_index

    @pytest.mark.asyncio
    async def test_persisted_store_rebuilds_index(self, tmp_path, retry_policy):
        """A new process can rebuild the index from the JSON store and query it."""
        store_path = tmp_path / "chunks.jsonl"
        embedder = FakeEmbeddingClient()

        store = JSONChunkStore(store_path)
        pipeline = IngestionPipeline(embedder, VectorIndex(dimension=DIMENSION), store, retry_policy)
        await pipeline.ingest(TextDocument(title="refunds", content="refunds within fourteen days"))
        await pipeline.ingest(TextDocument(title="shipping", content="shipping takes three days"))

        reloaded = JSONChunkStore(store_path)
        index = VectorIndex.from_store(reloaded, dimension=DIMENSION)
        service = RetrievalService(embedder, index, reloaded, retry_policy)

        results = await service.retrieve("shipping", limit=1)

        assert index.size == 2
        assert results[0].text == "shipping takes three days"

    @pytest.mark.asyncio
    async def test_http_provider_end_to_end(
        self, httpx_mock: HTTPXMock, mock_embedding_response, vector_index, memory_store, retry_policy, tmp_path
    ):
        """Ingest a file through the real HTTP client against a mocked provider."""
        document_vector = [0.0] * DIMENSION
        document_vector[0] = 1.0
        httpx_mock.add_response(url=DEFAULT_ENDPOINT, method="POST", json=mock_embedding_response(document_vector))
        httpx_mock.add_response(url=DEFAULT_ENDPOINT, method="POST", json=mock_embedding_response(document_vector))

        path = tmp_path / "manual.txt"
        path.write_text("the device resets when the button is held", encoding="utf-8")
        client = EmbeddingClient(api_key="test-key")
        pipeline = IngestionPipeline(client, vector_index, memory_store, retry_policy)
        service = RetrievalService(client, vector_index, memory_store, RetryPolicy(rate_limit_delay=0.0))

        await pipeline.ingest(FileDocument.from_path(path))
        matches = await service.retrieve_matches("how do I reset it", limit=3)

        assert len(httpx_mock.get_requests()) == 2
        assert len(matches) == 1
        assert matches[0].score == pytest.approx(1.0)
