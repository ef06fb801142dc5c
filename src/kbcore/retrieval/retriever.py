"""
Query-time retrieval: embed the query, search the index, resolve chunks.
"""

import logging
from typing import Optional

from kbcore.models import Chunk, SimilarityMatch
from kbcore.retrieval.embeddings import EmbeddingClient, RetryPolicy, embed_with_retry
from kbcore.retrieval.indexer import VectorIndex
from kbcore.storage import ChunkStore

logger = logging.getLogger(__name__)


class RetrievalService:
    """
    Find the chunks most relevant to a free-text query.

    Example:
        >>> service = RetrievalService(client, index, store)
        >>> chunks = await service.retrieve("How do refunds work?", limit=3)
        >>> [chunk.text[:40] for chunk in chunks]
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        index: VectorIndex,
        store: ChunkStore,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy(rate_limit_delay=0.0)

    async def retrieve(self, query: str, limit: int = 3) -> list[Chunk]:
        """
        Return up to ``limit`` chunks, most relevant first.

        Raises:
            EmbeddingError: If the query cannot be embedded
        """
        matches = await self.retrieve_matches(query, limit=limit)
        return [match.chunk for match in matches]

    async def retrieve_matches(self, query: str, limit: int = 3) -> list[SimilarityMatch]:
        """
        Like ``retrieve`` but keeps the similarity score of each chunk.

        An empty index yields an empty list without calling the provider.
        """
        if self.index.size == 0 or limit <= 0:
            return []

        query_vector = await embed_with_retry(self.embedder, query, self.retry_policy)
        hits = self.index.search(query_vector, k=limit)
        if not hits:
            return []

        chunks_by_id = {chunk.id: chunk for chunk in self.store.fetch_all_chunks_with_embeddings()}

        matches: list[SimilarityMatch] = []
        for chunk_id, score in hits:
            chunk = chunks_by_id.get(chunk_id)
            if chunk is None:
                logger.warning(f"Chunk {chunk_id} is indexed but missing from the store, skipping")
                continue
            matches.append(SimilarityMatch(chunk=chunk, score=score))

        logger.debug(f"Retrieved {len(matches)} chunks for query {query[:50]!r}")
        return matches
