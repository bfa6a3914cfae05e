"""Configuration management for the knowledge search services.

This module centralizes environment-driven configuration for the search
engine, its embedding provider, and the HTTP adapter. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly‑typed settings with sensible defaults
- One place to discover commonly used environment variables
- Small service‑specific subclasses to keep concerns clear

Usage
- Inject the appropriate config in your service entrypoint:
  ``config = SearchConfig()``
- Or select dynamically: ``config = get_config("search")``
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class for all services.

    Field names map to upper‑case environment variables (``ml_log_level`` is
    read from ``ML_LOG_LEVEL``). Defaults keep local development convenient
    while still being explicit.

    Notes
    - Add new shared settings here so downstream services inherit them.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ml_env: str = Field(default="local")

    # Events (empty disables publishing)
    ml_redis_url: Optional[str] = Field(default=None)
    ml_event_channel_prefix: str = Field(default="knowledge_events")

    # Logging
    ml_log_level: str = Field(default="INFO")
    ml_log_format: str = Field(default="json")

    # Vector store
    ml_vector_backend: str = Field(default="memory")
    ml_vector_dimension: Optional[int] = Field(default=None)


class EmbeddingConfig(BaseConfig):
    """Configuration for the remote embedding provider.

    The provider speaks the OpenAI ``/embeddings`` wire format; any
    compatible gateway can be targeted by changing the base URL.
    """

    ml_embedding_model: str = Field(default="text-embedding-3-small")
    ml_embedding_service_url: str = Field(default="https://api.openai.com/v1")
    ml_embedding_api_key: Optional[str] = Field(default=None)
    ml_embedding_timeout_seconds: float = Field(default=30.0)
    ml_embedding_batch_size: int = Field(default=100, gt=0, le=100)
    ml_embedding_batch_delay_seconds: float = Field(default=0.1, ge=0.0)
    ml_embedding_retry_attempts: int = Field(default=3, ge=1)
    ml_embedding_retry_base_delay: float = Field(default=1.0)
    ml_embedding_retry_max_delay: float = Field(default=8.0)
    ml_embedding_breaker_failure_threshold: int = Field(default=5)
    ml_embedding_breaker_recovery_timeout: float = Field(default=30.0)


class SearchConfig(EmbeddingConfig):
    """Configuration for the search engine and its HTTP adapter.

    Chunking, fusion, and scan parameters live here so the engine can be
    tuned without code changes.
    """

    ml_search_port: int = Field(default=9007)

    # Chunking
    ml_chunk_max_size: int = Field(default=1000, gt=0)
    ml_chunk_overlap_size: int = Field(default=200, ge=0)

    # Fusion
    ml_search_semantic_weight: float = Field(default=0.7, ge=0.0)
    ml_search_keyword_weight: float = Field(default=0.3, ge=0.0)
    ml_search_dedup_key: str = Field(default="chunk_id")

    # Query defaults and limits
    ml_search_default_max_results: int = Field(default=10, gt=0)
    ml_search_default_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    ml_search_scan_timeout_seconds: Optional[float] = Field(default=5.0)


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific service.

    Parameters
    - service_name: Literal name: ``search`` or ``embedding``.

    Returns
    - A concrete ``BaseConfig`` subclass pre‑wired to read the right env vars.
    """
    config_map = {
        "search": SearchConfig,
        "embedding": EmbeddingConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()

