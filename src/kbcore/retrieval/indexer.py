"""
In-memory vector index for exact cosine-similarity search.

The index maps chunk ids to vectors and answers top-k queries with a full
scan. It holds nothing that cannot be rebuilt from the chunk store, so it is
safe to lose on restart.
"""

import logging
import threading
from typing import TYPE_CHECKING, Any, Optional

import numpy as np
from numpy.typing import NDArray

from kbcore.exceptions import DimensionMismatchError

if TYPE_CHECKING:
    from kbcore.storage import ChunkStore

logger = logging.getLogger(__name__)


def cosine_similarity(a: Any, b: Any) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude. The result is clipped
    to [-1, 1] and is exactly 1.0 for a non-zero vector compared with itself.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatchError(a.shape[0], b.shape[0])

    denominator = np.sqrt(np.dot(a, a) * np.dot(b, b))
    if denominator == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / denominator, -1.0, 1.0))


class VectorIndex:
    """
    Exact nearest-neighbour index over chunk embeddings.

    Ranks by descending cosine similarity and breaks exact ties by insertion
    order. Re-upserting an id replaces its vector but keeps its position.

    Example:
        >>> index = VectorIndex(dimension=1536)
        >>> index.upsert(chunk.id, chunk.embedding)
        >>> index.search(query_vector, k=3)
        [("3f2a...", 0.91), ("9b1c...", 0.87), ("04de...", 0.80)]
    """

    def __init__(self, dimension: Optional[int] = None) -> None:
        """
        Initialize an empty index.

        Args:
            dimension: Vector dimension; if None it is fixed by the first upsert
        """
        self._dimension = dimension
        self._entries: dict[str, tuple[int, NDArray[np.float64]]] = {}
        self._next_order = 0
        self._lock = threading.Lock()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def size(self) -> int:
        """Number of vectors in the index."""
        return len(self._entries)

    def __len__(self) -> int:
        return self.size

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self._entries

    def upsert(self, chunk_id: str, vector: Any) -> None:
        """
        Insert or replace the vector for ``chunk_id``.

        Raises:
            DimensionMismatchError: If the vector length differs from the index dimension
        """
        array = np.array(vector, dtype=np.float64)
        if array.ndim != 1:
            raise ValueError(f"Vector must be 1-D, got shape {array.shape}")
        array.setflags(write=False)

        with self._lock:
            if self._dimension is None:
                self._dimension = array.shape[0]
            elif array.shape[0] != self._dimension:
                raise DimensionMismatchError(self._dimension, array.shape[0], context=f"chunk {chunk_id}")

            existing = self._entries.get(chunk_id)
            if existing is not None:
                order = existing[0]
            else:
                order = self._next_order
                self._next_order += 1
            self._entries[chunk_id] = (order, array)

    def remove(self, chunk_id: str) -> bool:
        """Remove ``chunk_id``; returns False if it was not indexed."""
        with self._lock:
            return self._entries.pop(chunk_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def search(self, query_vector: Any, k: int = 3) -> list[tuple[str, float]]:
        """
        Find the ``k`` most similar vectors.

        Args:
            query_vector: Query of the index dimension
            k: Maximum number of results

        Returns:
            List of (chunk_id, score) tuples, best first

        Raises:
            DimensionMismatchError: If the query length differs from the index dimension
        """
        with self._lock:
            snapshot = list(self._entries.items())
            dimension = self._dimension

        if k <= 0 or not snapshot:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1 or query.shape[0] != dimension:
            raise DimensionMismatchError(dimension or 0, query.shape[-1] if query.ndim else 0, context="query")

        ids = [chunk_id for chunk_id, _ in snapshot]
        orders = np.array([order for _, (order, _) in snapshot])
        matrix = np.vstack([vector for _, (_, vector) in snapshot])

        denominators = np.sqrt(np.einsum("ij,ij->i", matrix, matrix) * np.dot(query, query))
        dots = matrix @ query
        scores = np.divide(dots, denominators, out=np.zeros_like(dots), where=denominators != 0)
        scores = np.clip(scores, -1.0, 1.0)

        # primary key: descending score, secondary: insertion order
        ranking = np.lexsort((orders, -scores))[:k]
        return [(ids[i], float(scores[i])) for i in ranking]

    @classmethod
    def from_store(cls, store: "ChunkStore", dimension: Optional[int] = None) -> "VectorIndex":
        """
        Rebuild an index by replaying every persisted chunk with an embedding.

        Chunks are replayed in ``created_order`` so tie-breaking survives a
        restart.
        """
        index = cls(dimension=dimension)
        chunks = sorted(store.fetch_all_chunks_with_embeddings(), key=lambda c: c.created_order)
        for chunk in chunks:
            if chunk.embedding is not None:
                index.upsert(chunk.id, chunk.embedding)

        logger.info(f"Rebuilt vector index from store ({index.size} vectors)")
        return index
