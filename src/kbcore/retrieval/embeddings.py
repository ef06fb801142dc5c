"""
Embedding generation via an OpenAI-compatible embeddings API.

EmbeddingClient performs exactly one HTTP round trip per call and maps every
failure onto the kbcore error taxonomy. The retry and rate-limit policy lives
in RetryPolicy / embed_with_retry so that callers decide how patient to be.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import httpx
import numpy as np
from numpy.typing import NDArray
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from kbcore.exceptions import (
    DimensionMismatchError,
    EmbeddingError,
    IngestionCancelledError,
    InvalidCredentialError,
    MalformedResponseError,
    ProviderError,
    TransportError,
)
from kbcore.models import EmbeddingRequest, EmbeddingResponse, ProviderErrorResponse

if TYPE_CHECKING:
    from kbcore.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1/embeddings"
DEFAULT_MODEL = "text-embedding-ada-002"
DEFAULT_DIMENSION = 1536


class EmbeddingClient:
    """
    Generate embeddings with a remote provider.

    Example:
        >>> client = EmbeddingClient(api_key="sk-...")
        >>> vector = await client.embed("What is the refund policy?")
        >>> vector.shape
        (1536,)
    """

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_MODEL,
        dimension: int = DEFAULT_DIMENSION,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the client.

        Args:
            api_key: Bearer credential for the provider
            endpoint: Full URL of the embeddings endpoint
            model: Model identifier sent with every request
            dimension: Expected vector length
            timeout: Seconds before a request fails with TransportError
        """
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model
        self.dimension = dimension
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EmbeddingClient":
        """Build a client from application settings."""
        if settings.openai_api_key_value is None:
            raise InvalidCredentialError("OPENAI_API_KEY is not configured")

        return cls(
            api_key=settings.openai_api_key_value,
            endpoint=settings.embedding_endpoint,
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            timeout=settings.request_timeout,
        )

    async def embed(self, text: str) -> NDArray[np.float32]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Array of shape (dimension,)

        Raises:
            TransportError: If no response was received in time
            InvalidCredentialError: If the provider answers 401
            ProviderError: If the provider answers any other non-200 status
            MalformedResponseError: If the 200 payload holds no usable embedding
            DimensionMismatchError: If the vector length differs from ``dimension``
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = EmbeddingRequest(model=self.model, input=text).model_dump()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.TransportError as e:
            raise TransportError(e) from e

        if response.status_code != 200:
            raise self._provider_error(response)

        return self._parse_embedding(response)

    def _provider_error(self, response: httpx.Response) -> ProviderError:
        message = None
        try:
            body = ProviderErrorResponse.model_validate_json(response.content)
            if body.error is not None:
                message = body.error.message
        except ValidationError:
            logger.debug(f"Unparseable error body from provider (status {response.status_code})")

        if response.status_code == 401:
            return InvalidCredentialError(message or "Invalid credential")
        return ProviderError(
            response.status_code,
            message or f"Unexpected response from embedding provider ({response.reason_phrase})",
        )

    def _parse_embedding(self, response: httpx.Response) -> NDArray[np.float32]:
        try:
            body = EmbeddingResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise MalformedResponseError(f"Invalid embedding response: {e.error_count()} validation errors") from e

        vector = np.asarray(body.data[0].embedding, dtype=np.float32)
        if not np.all(np.isfinite(vector)):
            raise MalformedResponseError("Embedding contains non-finite values")
        if vector.shape[0] != self.dimension:
            raise DimensionMismatchError(self.dimension, vector.shape[0], context=self.model)
        return vector


@dataclass
class RetryPolicy:
    """
    Bounded retry with a fixed delay, plus spacing after every success.

    ``rate_limit_delay`` is not a retry: it applies on the happy path to stay
    under provider rate limits.
    """

    max_attempts: int = 3
    retry_delay: float = 1.0
    rate_limit_delay: float = 0.2
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            retry_delay=settings.retry_delay,
            rate_limit_delay=settings.rate_limit_delay,
        )


async def embed_with_retry(
    client: EmbeddingClient,
    text: str,
    policy: RetryPolicy,
    cancel_event: Optional[asyncio.Event] = None,
    document_id: str = "",
    completed_chunks: int = 0,
) -> NDArray[np.float32]:
    """
    Embed text, retrying transient failures according to ``policy``.

    Transport, provider and malformed-response errors are retried uniformly.
    A dimension mismatch is fatal and propagates immediately.

    Args:
        client: Embedding client to call
        text: Text to embed
        policy: Retry and rate-limit policy
        cancel_event: Checked between attempts; set means stop
        document_id: Used in cancellation errors and log messages
        completed_chunks: Used in cancellation errors

    Returns:
        The embedding vector

    Raises:
        EmbeddingError: The last error once all attempts are exhausted
        IngestionCancelledError: If cancel_event is set between attempts
    """

    def log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            f"Embedding failed ({retry_state.outcome.exception()}), retrying in {policy.retry_delay:.1f}s "
            f"(attempt {retry_state.attempt_number}/{policy.max_attempts})"
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(EmbeddingError),
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_fixed(policy.retry_delay),
        sleep=policy.sleep,
        before_sleep=log_retry,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1 and cancel_event is not None and cancel_event.is_set():
                    raise IngestionCancelledError(document_id, completed_chunks)
                try:
                    vector = await client.embed(text)
                except EmbeddingError as e:
                    e.attempts = number
                    raise
    except EmbeddingError as e:
        logger.error(
            f"Embedding failed after {e.attempts} attempts"
            + (f" for document {document_id}" if document_id else "")
            + f": {e}"
        )
        raise

    if policy.rate_limit_delay > 0:
        await policy.sleep(policy.rate_limit_delay)
    return vector
