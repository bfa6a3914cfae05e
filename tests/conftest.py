"""Shared fixtures: deterministic embedding provider and a wired index manager."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest
from prometheus_client import CollectorRegistry

from libs.common.metrics import MetricsCollector
from libs.vector_store.memory import InMemoryVectorStore
from service_search.app.chunking.chunker import DocumentChunker
from service_search.app.encoders.embedding_client import BatchEmbedder, EmbeddingClient
from service_search.app.errors import EmbeddingProviderError
from service_search.app.hybrid.index_manager import IndexManager
from service_search.app.models import Document


class FakeEmbeddingClient(EmbeddingClient):
    """Embeds by lookup: exact text first, then the first registered keyword
    contained in the text, then ``default``."""

    model_name = "fake-embedding"

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        default: Optional[List[float]] = None
    ):
        self.vectors = dict(vectors or {})
        self.default = default if default is not None else [0.0, 0.0, 1.0]
        self.calls: List[List[str]] = []
        self.fail = False
        self.closed = False

    def vector_for(self, text: str) -> List[float]:
        if text in self.vectors:
            return self.vectors[text]
        lowered = text.lower()
        for keyword, vector in self.vectors.items():
            if keyword.lower() in lowered:
                return vector
        return self.default

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingProviderError("provider unavailable")
        return [list(self.vector_for(text)) for text in texts]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client():
    return FakeEmbeddingClient()


@pytest.fixture
def embedder(fake_client):
    return BatchEmbedder(fake_client, batch_size=100, batch_delay=0.0)


@pytest.fixture
def store():
    return InMemoryVectorStore()


@pytest.fixture
def metrics():
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def manager(store, embedder, metrics):
    return IndexManager(
        store=store,
        embedder=embedder,
        chunker=DocumentChunker(1000, 200),
        metrics=metrics
    )


@pytest.fixture
def make_document():
    def _make(document_id: str, content: str, **fields) -> Document:
        fields.setdefault("title", f"Title {document_id}")
        fields.setdefault("type", "text")
        fields.setdefault("created_at", datetime(2024, 1, 15, tzinfo=timezone.utc))
        return Document(document_id=document_id, content=content, **fields)
    return _make
