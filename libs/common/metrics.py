"""Metrics collection for the knowledge search services.

Provides a thin convenience wrapper around ``prometheus_client`` so the
engine and its HTTP adapter record search, embedding, and index metrics with
consistent label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (inject one for tests)
"""

from typing import Optional
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest

BREAKER_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class MetricsCollector:
    """Centralized metrics collection for the search service.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.embedding_requests = Counter(
            'knowledge_embedding_requests_total',
            'Total embedding provider calls',
            ['model_name', 'status'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'knowledge_embedding_duration_seconds',
            'Embedding provider call duration',
            ['model_name'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'knowledge_search_requests_total',
            'Total search requests',
            ['mode', 'status'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'knowledge_search_duration_seconds',
            'Search duration',
            ['mode'],
            registry=self.registry
        )

        self.indexing_operations = Counter(
            'knowledge_indexing_operations_total',
            'Document indexing operations',
            ['operation', 'status'],
            registry=self.registry
        )

        self.indexing_duration = Histogram(
            'knowledge_indexing_duration_seconds',
            'Document indexing duration (chunk + embed + insert)',
            registry=self.registry
        )

        self.indexed_documents = Gauge(
            'knowledge_indexed_documents',
            'Documents currently present in the index',
            registry=self.registry
        )

        self.indexed_chunks = Gauge(
            'knowledge_indexed_chunks',
            'Chunks currently present in the index',
            registry=self.registry
        )

        self.breaker_state = Gauge(
            'knowledge_embedding_breaker_state',
            'Embedding provider circuit breaker state (0 closed, 1 half open, 2 open)',
            ['breaker'],
            registry=self.registry
        )

        self.breaker_rejections = Counter(
            'knowledge_embedding_breaker_rejections_total',
            'Embedding calls rejected while the circuit breaker was open',
            ['breaker'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_embedding(
        self,
        model_name: str,
        duration: float,
        status: str = "success"
    ) -> None:
        """Record one embedding provider call."""
        self.embedding_requests.labels(model_name=model_name, status=status).inc()
        self.embedding_duration.labels(model_name=model_name).observe(duration)

    def record_search(
        self,
        mode: str,
        duration: float,
        status: str = "success"
    ) -> None:
        """Record search metrics."""
        self.search_requests.labels(mode=mode, status=status).inc()
        self.search_duration.labels(mode=mode).observe(duration)

    def record_indexing(
        self,
        operation: str,
        status: str,
        duration: Optional[float] = None
    ) -> None:
        """Record an index mutation (``index``, ``remove``, ``rebuild``)."""
        self.indexing_operations.labels(operation=operation, status=status).inc()
        if duration is not None:
            self.indexing_duration.observe(duration)

    def set_index_size(self, document_count: int, chunk_count: int) -> None:
        """Publish the current index size."""
        self.indexed_documents.set(document_count)
        self.indexed_chunks.set(chunk_count)

    def set_breaker_state(self, breaker: str, state: str) -> None:
        """Publish a circuit breaker state (``closed``, ``half_open``, ``open``)."""
        self.breaker_state.labels(breaker=breaker).set(BREAKER_STATE_VALUES[state])

    def record_breaker_rejection(self, breaker: str) -> None:
        self.breaker_rejections.labels(breaker=breaker).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process‑wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
