"""Vector store adapters and utilities.

Primary components:
- ``base``: abstract ``VectorStore`` interface, record types, and exceptions.
- ``memory``: copy-on-write in-memory store with exhaustive cosine scan.
- ``factory``: helpers to construct a store from typed config.

Guidance:
- Prefer constructing via ``factory.create_vector_store_from_settings`` so
  the engine stays decoupled from specific backends.
"""
