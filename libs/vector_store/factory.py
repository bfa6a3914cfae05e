"""Vector store factory for creating different implementations.

Centralizes creation of concrete ``VectorStore`` backends so callers don't
depend on implementation details. New stores (e.g. an HNSW-backed one) can be
added without changing call sites.
"""

from typing import Any, Dict
from enum import Enum
import structlog

from libs.common.config import BaseConfig
from .base import VectorStore
from .memory import InMemoryVectorStore

logger = structlog.get_logger("vector_store.factory")


class VectorStoreType(Enum):
    """Supported vector store types."""
    MEMORY = "memory"


class VectorStoreFactory:
    """Factory for creating vector store instances."""

    @staticmethod
    def create(
        store_type: VectorStoreType,
        config: Dict[str, Any]
    ) -> VectorStore:
        """Create a vector store instance.

        Parameters
        - store_type: A ``VectorStoreType`` enum value
        - config: Backend‑specific parameters (e.g. ``dimension``)
        """
        if store_type == VectorStoreType.MEMORY:
            return InMemoryVectorStore(dimension=config.get("dimension"))

        raise ValueError(f"Unsupported vector store type: {store_type}")

    @staticmethod
    def create_from_config(config: Dict[str, Any]) -> VectorStore:
        """Create vector store from configuration dictionary.

        Expects a ``type`` key and any implementation‑specific fields.
        """
        store_type_str = config.get("type", "memory")

        try:
            store_type = VectorStoreType(store_type_str)
        except ValueError:
            raise ValueError(f"Unsupported vector store type: {store_type_str}")

        return VectorStoreFactory.create(store_type, config)


def create_vector_store_from_settings(config: BaseConfig) -> VectorStore:
    """Create the vector store selected by service settings.

    Parameters
    - config: Any ``BaseConfig``; reads ``ml_vector_backend`` and
      ``ml_vector_dimension``
    """
    store = VectorStoreFactory.create_from_config({
        "type": config.ml_vector_backend,
        "dimension": config.ml_vector_dimension,
    })
    logger.info(
        "Vector store created",
        backend=config.ml_vector_backend,
        dimension=config.ml_vector_dimension
    )
    return store
