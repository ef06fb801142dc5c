"""
Exception hierarchy for the ingestion and retrieval pipeline.

Every error raised by kbcore derives from KBCoreError so callers can catch
the whole family in one place. Embedding failures carry the number of attempts
made before they were surfaced.
"""

from typing import Optional


class KBCoreError(Exception):
    """Base class for all kbcore errors."""


class EmbeddingError(KBCoreError):
    """A call to the embedding provider did not produce a vector."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.attempts = 1


class TransportError(EmbeddingError):
    """The request never got a response (DNS, connect, timeout, read)."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Transport error: {cause}")
        self.cause = cause


class ProviderError(EmbeddingError):
    """The provider answered with a non-200 status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Provider error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class InvalidCredentialError(ProviderError):
    """The provider rejected the API key (HTTP 401)."""

    def __init__(self, message: str = "Invalid credential") -> None:
        super().__init__(401, message)


class MalformedResponseError(EmbeddingError):
    """The provider answered 200 but the payload is not a usable embedding."""


class DimensionMismatchError(KBCoreError):
    """A vector's length disagrees with the established index dimension."""

    def __init__(self, expected: int, actual: int, context: Optional[str] = None) -> None:
        message = f"Expected vector of dimension {expected}, got {actual}"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class StorageError(KBCoreError):
    """The persistence collaborator failed to read, write or delete."""


class IngestionCancelledError(KBCoreError):
    """Ingestion stopped at a cancellation checkpoint."""

    def __init__(self, document_id: str, completed_chunks: int) -> None:
        super().__init__(
            f"Ingestion of document {document_id} cancelled after {completed_chunks} chunks"
        )
        self.document_id = document_id
        self.completed_chunks = completed_chunks
