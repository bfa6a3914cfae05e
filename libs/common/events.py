"""Domain events for the knowledge search engine.

Index mutations and searches are announced on Redis pub/sub so downstream
consumers (analytics, document store status sync) can react without coupling
to the engine. Producers publish JSON payloads on namespaced channels derived
from ``EventType``.

Key concepts
- "EventType" stable identifiers are versioned (``.v1`` suffix)
- ``EventPublisher`` composes channel names as ``{prefix}:{event_type}``
"""

import json
import time
from typing import Any, Dict, Optional
from dataclasses import dataclass, asdict, field
from enum import Enum
import redis
import structlog

logger = structlog.get_logger("events")


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventType(Enum):
    """Event types emitted by the search engine."""
    DOCUMENT_INDEXED = "knowledge.document.indexed.v1"
    DOCUMENT_INDEX_FAILED = "knowledge.document.failed.v1"
    DOCUMENT_REMOVED = "knowledge.document.removed.v1"
    SEARCH_PERFORMED = "knowledge.search.performed.v1"


@dataclass
class BaseEvent:
    """Base event class.

    Child events set their ``event_type`` in ``__post_init__`` and extend the
    payload with fields relevant to the domain.
    """
    timestamp: int = 0
    event_type: str = field(init=False, default="")

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class DocumentIndexedEvent(BaseEvent):
    """Emitted after a document's chunks are committed to the index."""
    document_id: str = ""
    chunk_count: int = 0
    organization_id: Optional[str] = None
    duration_ms: float = 0.0

    def __post_init__(self):
        self.event_type = EventType.DOCUMENT_INDEXED.value
        if not self.timestamp:
            self.timestamp = _now_ms()


@dataclass
class DocumentIndexFailedEvent(BaseEvent):
    """Emitted when chunking, embedding, or insert fails for a document."""
    document_id: str = ""
    error: str = ""
    organization_id: Optional[str] = None

    def __post_init__(self):
        self.event_type = EventType.DOCUMENT_INDEX_FAILED.value
        if not self.timestamp:
            self.timestamp = _now_ms()


@dataclass
class DocumentRemovedEvent(BaseEvent):
    """Emitted after a document's chunks are removed from the index."""
    document_id: str = ""
    chunk_count: int = 0

    def __post_init__(self):
        self.event_type = EventType.DOCUMENT_REMOVED.value
        if not self.timestamp:
            self.timestamp = _now_ms()


@dataclass
class SearchPerformedEvent(BaseEvent):
    """Emitted for every completed search (usage analytics)."""
    search_id: str = ""
    query: str = ""
    mode: str = ""
    result_count: int = 0
    execution_time_ms: float = 0.0
    organization_id: Optional[str] = None

    def __post_init__(self):
        self.event_type = EventType.SEARCH_PERFORMED.value
        if not self.timestamp:
            self.timestamp = _now_ms()


class EventPublisher:
    """Publishes events to Redis.

    Notes
    - Failures are retried with backoff, then logged and re‑raised.
    - Messages are serialized as JSON to keep consumers language‑agnostic.
    - The client connects lazily, so construction never touches the network.
    """

    def __init__(self, redis_url: str, channel_prefix: str = "knowledge_events"):
        self.redis_client = redis.from_url(redis_url)
        self.channel_prefix = channel_prefix

    def channel_for(self, event: BaseEvent) -> str:
        """Channel name for an event."""
        return f"{self.channel_prefix}:{event.event_type}"

    def publish(self, event: BaseEvent) -> None:
        """Publish an event with retry logic.

        Blocking; async callers should run it in a worker thread.
        """
        max_retries = 3
        base_delay = 0.5

        for attempt in range(max_retries):
            try:
                channel = self.channel_for(event)
                self.redis_client.publish(channel, event.to_json())
                logger.debug(
                    "Event published",
                    event_type=event.event_type,
                    channel=channel
                )
                return
            except redis.RedisError as e:
                if attempt == max_retries - 1:
                    logger.error(
                        "Failed to publish event after all retries",
                        event_type=event.event_type,
                        error=str(e)
                    )
                    raise

                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "Event publish failed, retrying",
                    event_type=event.event_type,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error=str(e)
                )
                time.sleep(delay)

    def close(self) -> None:
        """Close the underlying Redis connection pool."""
        self.redis_client.close()


def create_event_publisher(
    redis_url: Optional[str],
    channel_prefix: str = "knowledge_events"
) -> Optional[EventPublisher]:
    """Create an event publisher, or ``None`` when events are disabled."""
    if not redis_url:
        logger.info("Event publishing disabled (no redis url configured)")
        return None
    return EventPublisher(redis_url, channel_prefix=channel_prefix)
