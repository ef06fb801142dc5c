"""
Pytest configuration and shared fixtures.

Provides common fixtures for:
    - Configuration with test values
    - A deterministic fake embedding client
    - A recording sleep function for retry/rate-limit assertions
    - Stores, indexes and pipelines wired together
"""

from typing import Optional
from unittest.mock import patch

import numpy as np
import pytest

DIMENSION = 1536


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """Provide test settings without requiring .env file."""
    with patch.dict(
        "os.environ",
        {
            "OPENAI_API_KEY": "test-api-key",
            "EMBEDDING_MODEL": "text-embedding-ada-002",
            "CHUNK_SIZE": "1000",
            "CHUNK_OVERLAP": "200",
            "LOG_LEVEL": "DEBUG",
        },
    ):
        from kbcore.config import Settings
        yield Settings()


# =============================================================================
# Fake Embedding Client
# =============================================================================

class FakeEmbeddingClient:
    """
    Bag-of-words embedder with one dimension per distinct word.

    Texts that share words get similar vectors, so retrieval results are
    predictable. Scripted failures are raised, in order, before any success.
    """

    def __init__(self, dimension: int = DIMENSION, failures: Optional[list[Exception]] = None) -> None:
        self.dimension = dimension
        self.failures = list(failures or [])
        self.calls: list[str] = []
        self._vocabulary: dict[str, int] = {}

    def vector_for(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in text.lower().split():
            slot = self._vocabulary.setdefault(word, len(self._vocabulary) % self.dimension)
            vector[slot] += 1.0
        return vector

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.failures:
            raise self.failures.pop(0)
        return self.vector_for(text)


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_embedder():
    return FakeEmbeddingClient()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleep_recorder):
    from kbcore.retrieval.embeddings import RetryPolicy

    return RetryPolicy(max_attempts=3, retry_delay=1.0, rate_limit_delay=0.2, sleep=sleep_recorder)


# =============================================================================
# Storage / Index Fixtures
# =============================================================================

@pytest.fixture
def memory_store():
    from kbcore.storage import InMemoryChunkStore

    return InMemoryChunkStore()


@pytest.fixture
def vector_index():
    from kbcore.retrieval.indexer import VectorIndex

    return VectorIndex(dimension=DIMENSION)


@pytest.fixture
def pipeline(fake_embedder, vector_index, memory_store, retry_policy):
    from kbcore.retrieval.ingestion import IngestionPipeline

    return IngestionPipeline(
        embedder=fake_embedder,
        index=vector_index,
        store=memory_store,
        retry_policy=retry_policy,
        chunk_size=1000,
        overlap=200,
    )


# =============================================================================
# Sample Data Fixtures
# =============================================================================

def distinct_words(count: int, first: Optional[str] = None) -> list[str]:
    """Distinct 5-letter words, optionally starting with a given word."""
    words = [f"w{i:04d}" for i in range(count)]
    if first is not None:
        words[0] = first
    return words


@pytest.fixture
def sample_text():
    """Short multi-topic text for retrieval tests."""
    return (
        "Refunds are issued within fourteen days of purchase. "
        "Shipping takes three to five business days. "
        "Support is available by email around the clock."
    )


@pytest.fixture
def mock_embedding_response():
    """OpenAI-style embedding response body."""
    def _mock_response(vector: Optional[list[float]] = None) -> dict:
        return {
            "object": "list",
            "data": [
                {
                    "object": "embedding",
                    "index": 0,
                    "embedding": vector if vector is not None else [0.01] * DIMENSION,
                }
            ],
            "model": "text-embedding-ada-002",
            "usage": {"prompt_tokens": 5, "total_tokens": 5},
        }
    return _mock_response
