"""
Configuration management using Pydantic Settings.

All configuration is loaded from environment variables with sensible defaults.
Use a .env file for local development. Library components never read these
settings on their own; the CLI (or any other caller) builds them from a
``Settings`` instance and passes values in explicitly.

Environment Variables:
    OPENAI_API_KEY: Bearer credential for the embedding provider
    EMBEDDING_ENDPOINT: URL of the embeddings endpoint
    EMBEDDING_MODEL: Model identifier sent with every request
    EMBEDDING_DIMENSION: Length of every vector returned by the provider
    CHUNK_SIZE: Character budget per chunk
    CHUNK_OVERLAP: Words carried over between consecutive chunks
    STORE_PATH: JSON-lines log holding persisted chunks
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # ==========================================================================
    # Embedding Provider
    # ==========================================================================
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Bearer credential for the embedding provider",
    )
    embedding_endpoint: str = Field(
        default="https://api.openai.com/v1/embeddings",
        description="Embedding endpoint URL",
    )
    embedding_model: str = Field(
        default="text-embedding-ada-002",
        description="Model identifier sent in every embedding request",
    )
    embedding_dimension: int = Field(
        default=1536,
        ge=1,
        description="Dimension of embedding vectors (must match model)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout in seconds for a single embedding request",
    )

    # ==========================================================================
    # Retry Policy
    # ==========================================================================
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Embedding attempts per chunk before ingestion aborts",
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds to wait between failed attempts",
    )
    rate_limit_delay: float = Field(
        default=0.2,
        ge=0.0,
        description="Seconds to wait after every successful embedding call",
    )

    # ==========================================================================
    # Chunking Configuration
    # ==========================================================================
    chunk_size: int = Field(
        default=1000,
        ge=1,
        description="Character budget for a chunk (words plus separators)",
    )
    chunk_overlap: int = Field(
        default=200,
        ge=0,
        description="Number of trailing words repeated at the start of the next chunk",
    )

    # ==========================================================================
    # Retrieval Configuration
    # ==========================================================================
    retrieval_limit: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Number of chunks returned for a query",
    )
    store_path: Path = Field(
        default=Path("data/chunks.jsonl"),
        description="JSON-lines log used by the file-backed chunk store",
    )

    # ==========================================================================
    # Observability Configuration
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # ==========================================================================
    # Validators
    # ==========================================================================
    @field_validator("chunk_overlap")
    @classmethod
    def validate_chunk_overlap(cls, v: int, info) -> int:
        """Ensure overlap is less than chunk size."""
        chunk_size = info.data.get("chunk_size", 1000)
        if v >= chunk_size:
            raise ValueError(f"chunk_overlap ({v}) must be less than chunk_size ({chunk_size})")
        return v

    @field_validator("store_path")
    @classmethod
    def resolve_path(cls, v: Path) -> Path:
        """Resolve paths to absolute paths."""
        return v.resolve()

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def openai_api_key_value(self) -> Optional[str]:
        """Get the actual API key value (use sparingly)."""
        if self.openai_api_key:
            return self.openai_api_key.get_secret_value()
        return None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    Call `get_settings.cache_clear()` to reload settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
