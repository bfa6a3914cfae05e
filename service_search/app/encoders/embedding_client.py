"""Embedding provider clients.

``EmbeddingClient`` is the contract the engine consumes: a batch of texts in,
one vector per text out, aligned by position. ``HttpEmbeddingClient`` speaks
the OpenAI-compatible ``/embeddings`` API; ``BatchEmbedder`` enforces the
provider batch cap and paces consecutive batches.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
import httpx
import numpy as np
import structlog

from libs.common.config import EmbeddingConfig
from libs.common.metrics import MetricsCollector
from ..errors import EmbeddingProviderError
from .circuit_breaker import CircuitBreaker, CircuitBreakerError
from .retry_handler import RetryHandler, create_embedding_retry_handler

logger = structlog.get_logger("search_service.embedding_client")

MAX_BATCH_SIZE = 100


class EmbeddingClient(ABC):
    """Turns a batch of texts into embedding vectors."""

    model_name: str = "unknown"

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Return one vector per input text, in input order."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None


class HttpEmbeddingClient(EmbeddingClient):
    """Client for an OpenAI-compatible embeddings endpoint.

    Each request runs through a circuit breaker and a retry handler. Only
    transport errors, 429 and 5xx responses are retried; anything that still
    fails surfaces as ``EmbeddingProviderError``.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_handler: Optional[RetryHandler] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.config = config
        self.model_name = config.ml_embedding_model
        self.base_url = config.ml_embedding_service_url.rstrip("/")
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=config.ml_embedding_timeout_seconds)
        self.retry_handler = retry_handler or create_embedding_retry_handler(config)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=config.ml_embedding_breaker_failure_threshold,
            recovery_timeout=config.ml_embedding_breaker_recovery_timeout,
            expected_exception=httpx.HTTPError,
            name="embedding_provider",
            metrics=metrics
        )
        self.metrics = metrics

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.ml_embedding_api_key:
            headers["Authorization"] = f"Bearer {self.config.ml_embedding_api_key}"
        return headers

    async def _post_embeddings(self, texts: List[str]) -> Dict[str, Any]:
        response = await self.http_client.post(
            f"{self.base_url}/embeddings",
            json={"model": self.model_name, "input": texts},
            headers=self._headers()
        )
        response.raise_for_status()
        return response.json()

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed ``texts`` in a single provider request."""
        texts = list(texts)
        if not texts:
            return []

        start_time = time.time()
        try:
            payload = await self.retry_handler.execute_with_retry(
                lambda: self.circuit_breaker.call(self._post_embeddings, texts),
                operation_name="embedding_provider_request"
            )
            vectors = self._parse_vectors(payload, len(texts))
        except (httpx.HTTPError, CircuitBreakerError, ValueError) as e:
            self._record(time.time() - start_time, "error")
            logger.error(
                "Embedding request failed",
                model_name=self.model_name,
                batch_size=len(texts),
                error=str(e)
            )
            raise EmbeddingProviderError(f"Embedding provider request failed: {e}") from e

        duration = time.time() - start_time
        self._record(duration, "success")
        logger.debug(
            "Embeddings generated",
            model_name=self.model_name,
            batch_size=len(texts),
            duration_ms=duration * 1000
        )
        return vectors

    @staticmethod
    def _parse_vectors(payload: Dict[str, Any], expected: int) -> List[List[float]]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise ValueError("response has no 'data' list")
        if len(data) != expected:
            raise ValueError(f"expected {expected} embeddings, got {len(data)}")

        if not all(isinstance(item, dict) for item in data):
            raise ValueError("response items must be objects")

        # ``index`` is authoritative when the provider sends it
        if all("index" in item for item in data):
            data = sorted(data, key=lambda item: item["index"])

        vectors = []
        for item in data:
            embedding = item.get("embedding")
            if not isinstance(embedding, list) or not embedding:
                raise ValueError("response item has no embedding")
            vectors.append([float(x) for x in embedding])
        return vectors

    def _record(self, duration: float, status: str) -> None:
        if self.metrics:
            self.metrics.record_embedding(self.model_name, duration, status=status)

    async def close(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()


class BatchEmbedder:
    """Embeds arbitrarily many texts in capped, paced batches.

    Parameters
    - client: Provider client
    - batch_size: Maximum texts per provider call (capped at 100)
    - batch_delay: Seconds to pause between consecutive batches
    """

    def __init__(self, client: EmbeddingClient, batch_size: int = MAX_BATCH_SIZE, batch_delay: float = 0.1):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.client = client
        self.batch_size = min(batch_size, MAX_BATCH_SIZE)
        self.batch_delay = batch_delay

    @property
    def model_name(self) -> str:
        return self.client.model_name

    async def embed_all(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed every text; vectors come back as float32 arrays in input order."""
        texts = list(texts)
        vectors: List[np.ndarray] = []

        for offset in range(0, len(texts), self.batch_size):
            if offset and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

            batch = texts[offset:offset + self.batch_size]
            embeddings = await self.client.embed(batch)
            if len(embeddings) != len(batch):
                raise EmbeddingProviderError(
                    f"Embedding provider returned {len(embeddings)} vectors for {len(batch)} texts"
                )
            vectors.extend(np.asarray(embedding, dtype=np.float32) for embedding in embeddings)

        return vectors

    async def embed_one(self, text: str) -> np.ndarray:
        """Embed a single text as a one-element batch."""
        vectors = await self.embed_all([text])
        return vectors[0]

    async def close(self) -> None:
        await self.client.close()


def create_embedding_client(config: EmbeddingConfig, metrics: Optional[MetricsCollector] = None) -> BatchEmbedder:
    """Create the batched HTTP embedding client from settings."""
    client = HttpEmbeddingClient(config, metrics=metrics)
    return BatchEmbedder(
        client,
        batch_size=config.ml_embedding_batch_size,
        batch_delay=config.ml_embedding_batch_delay_seconds
    )
