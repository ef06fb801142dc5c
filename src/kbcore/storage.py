"""
Chunk persistence.

The pipeline depends only on the three-operation ChunkStore protocol. Two
implementations ship with kbcore: an in-memory store for tests and embedding
into other applications, and a JSON-lines log store used by the CLI.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from kbcore.exceptions import StorageError
from kbcore.models import Chunk

logger = logging.getLogger(__name__)


@runtime_checkable
class ChunkStore(Protocol):
    """Persistence collaborator for chunks and their vectors."""

    def save(self, chunk: Chunk) -> None:
        """Insert or replace a chunk. Raises StorageError on failure."""
        ...

    def fetch_all_chunks_with_embeddings(self) -> list[Chunk]:
        """Return every persisted chunk that has an embedding."""
        ...

    def delete(self, chunk_id: str) -> None:
        """Delete a chunk; deleting an unknown id is not an error."""
        ...


class InMemoryChunkStore:
    """ChunkStore backed by a dict. Contents are lost with the process."""

    def __init__(self) -> None:
        self._chunks: dict[str, Chunk] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._chunks)

    def save(self, chunk: Chunk) -> None:
        with self._lock:
            self._chunks[chunk.id] = chunk

    def fetch_all_chunks_with_embeddings(self) -> list[Chunk]:
        with self._lock:
            return [chunk for chunk in self._chunks.values() if chunk.has_embedding]

    def delete(self, chunk_id: str) -> None:
        with self._lock:
            self._chunks.pop(chunk_id, None)


class JSONChunkStore:
    """
    ChunkStore persisted to an append-only JSON-lines log.

    Every save or delete appends one record, so the cost of a change does not
    grow with the number of stored chunks. On load the log is replayed and,
    when it holds superseded records, compacted: rewritten through a temporary
    file and an atomic rename with one record per live chunk.

    Example:
        >>> store = JSONChunkStore("data/chunks.jsonl")
        >>> store.save(chunk)
        >>> len(store.fetch_all_chunks_with_embeddings())
        1
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._needs_compaction = False
        self._chunks, record_count = self._load()
        if record_count > len(self._chunks):
            self._compact()

    def __len__(self) -> int:
        return len(self._chunks)

    def save(self, chunk: Chunk) -> None:
        with self._lock:
            self._append({"op": "save", "chunk": chunk.to_dict()})
            self._chunks[chunk.id] = chunk

    def fetch_all_chunks_with_embeddings(self) -> list[Chunk]:
        with self._lock:
            return [chunk for chunk in self._chunks.values() if chunk.has_embedding]

    def fetch_all_chunks(self) -> list[Chunk]:
        with self._lock:
            return list(self._chunks.values())

    def delete(self, chunk_id: str) -> None:
        with self._lock:
            if chunk_id not in self._chunks:
                return
            self._append({"op": "delete", "id": chunk_id})
            del self._chunks[chunk_id]

    def _load(self) -> tuple[dict[str, Chunk], int]:
        if not self.path.exists():
            return {}, 0

        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot load chunk store {self.path}: {e}") from e

        lines = text.split("\n")
        # Text after the last newline is a record whose append never finished
        trailing = lines.pop()

        chunks: dict[str, Chunk] = {}
        record_count = 0
        for number, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                self._replay(chunks, json.loads(line))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                raise StorageError(f"Cannot load chunk store {self.path} (line {number}): {e}") from e
            record_count += 1

        if trailing.strip():
            logger.warning(f"Ignoring incomplete trailing record in {self.path}")
            record_count += 1

        logger.debug(f"Loaded {len(chunks)} chunks from {record_count} records in {self.path}")
        return chunks, record_count

    @staticmethod
    def _replay(chunks: dict[str, Chunk], record: dict) -> None:
        op = record["op"]
        if op == "save":
            chunk = Chunk.from_dict(record["chunk"])
            chunks[chunk.id] = chunk
        elif op == "delete":
            chunks.pop(record["id"], None)
        else:
            raise ValueError(f"Unknown record op {op!r}")

    @staticmethod
    def _encode(record: dict) -> str:
        return json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n"

    def _append(self, record: dict) -> None:
        # A failed append may leave a partial line; rewrite before appending again
        if self._needs_compaction:
            self._compact()

        line = self._encode(record)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            self._needs_compaction = self.path.exists()
            raise StorageError(f"Cannot write chunk store {self.path}: {e}") from e

    def _compact(self) -> None:
        records = [self._encode({"op": "save", "chunk": chunk.to_dict()}) for chunk in self._chunks.values()]

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.writelines(records)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Cannot compact chunk store {self.path}: {e}") from e

        self._needs_compaction = False
        logger.info(f"Compacted {self.path} to {len(records)} records")
