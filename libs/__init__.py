"""Shared libraries for the knowledge search service.

Subpackages:
- ``libs.common``: configuration, logging, metrics, and events.
- ``libs.vector_store``: vector store abstractions and the in-memory backend.

Notes:
- Avoid search-engine logic here; keep modules cohesive and broadly useful.
"""
