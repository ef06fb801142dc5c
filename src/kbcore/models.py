"""
Domain records and provider wire schemas.

Chunks and documents are plain dataclasses owned by the caller. The request
and response bodies exchanged with the embedding provider are Pydantic models
so that a malformed payload is rejected at the boundary.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, Field

from kbcore.exceptions import StorageError


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Chunks
# =============================================================================

@dataclass(eq=False)
class Chunk:
    """A bounded piece of a document, the unit of embedding and retrieval."""

    text: str
    """The text content of the chunk."""

    owner_document_id: str
    """Identifier of the document this chunk belongs to."""

    created_order: int = 0
    """Insertion sequence, used for deterministic tie-breaking."""

    id: str = field(default_factory=new_id)
    """Opaque unique identifier."""

    embedding: Optional[NDArray[np.float32]] = None
    """Vector from the embedding provider, read-only once attached."""

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def attach_embedding(self, vector: Any) -> None:
        """
        Attach the provider vector to this chunk.

        The vector is copied and frozen; a chunk with an embedding is never
        mutated again.

        Raises:
            ValueError: If an embedding is already attached or the vector is not 1-D
        """
        if self.embedding is not None:
            raise ValueError(f"Chunk {self.id} already has an embedding")

        array = np.array(vector, dtype=np.float32)
        if array.ndim != 1 or array.size == 0:
            raise ValueError(f"Embedding must be a non-empty 1-D vector, got shape {array.shape}")
        array.setflags(write=False)
        self.embedding = array

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "owner_document_id": self.owner_document_id,
            "created_order": self.created_order,
            "embedding": None if self.embedding is None else self.embedding.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        chunk = cls(
            id=data["id"],
            text=data["text"],
            owner_document_id=data["owner_document_id"],
            created_order=int(data.get("created_order", 0)),
        )
        if data.get("embedding") is not None:
            chunk.attach_embedding(data["embedding"])
        return chunk


@dataclass(frozen=True)
class SimilarityMatch:
    """A chunk paired with its query-time similarity score. Never persisted."""

    chunk: Chunk
    score: float


# =============================================================================
# Documents
# =============================================================================

@dataclass
class Document(ABC):
    """Source of raw text plus the ordered chunks produced from it."""

    title: str
    id: str = field(default_factory=new_id)
    chunks: list[Chunk] = field(default_factory=list)
    is_processed: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    @abstractmethod
    def read_text(self) -> str:
        """Return the document's raw text."""


@dataclass
class TextDocument(Document):
    """Manually entered text."""

    content: str = ""
    last_modified_at: datetime = field(default_factory=_utcnow)

    def read_text(self) -> str:
        return self.content

    def update(self, content: str) -> None:
        """Replace the text; the caller re-ingests to refresh chunks."""
        self.content = content
        self.is_processed = False
        self.last_modified_at = _utcnow()


@dataclass
class FileDocument(Document):
    """A UTF-8 text file on local disk."""

    local_path: Path = field(default_factory=Path)

    @classmethod
    def from_path(cls, path: str | Path) -> "FileDocument":
        path = Path(path)
        return cls(title=path.name, local_path=path)

    @property
    def file_type(self) -> str:
        return self.local_path.suffix.lstrip(".").lower()

    @property
    def file_size(self) -> int:
        return self.local_path.stat().st_size

    def read_text(self) -> str:
        try:
            return self.local_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read {self.local_path}: {e}") from e


@dataclass
class IngestionResult:
    """Summary of a completed ingestion."""

    document_id: str
    chunk_count: int
    elapsed_seconds: float = 0.0


# =============================================================================
# Provider wire schemas
# =============================================================================

class EmbeddingRequest(BaseModel):
    """Body of a POST to the embeddings endpoint."""

    model: str
    input: str


class EmbeddingData(BaseModel):
    """A single embedding in a provider response."""

    embedding: list[float] = Field(min_length=1)
    index: int = 0


class EmbeddingResponse(BaseModel):
    """Successful provider response; only ``data`` is required."""

    data: list[EmbeddingData] = Field(min_length=1)
    model: Optional[str] = None


class ProviderErrorDetail(BaseModel):
    message: Optional[str] = None
    type: Optional[str] = None


class ProviderErrorResponse(BaseModel):
    """Error body returned with a non-200 status."""

    error: Optional[ProviderErrorDetail] = None
