"""Tests for the knowledge search service.

Unit tests run against the in-memory vector store and a deterministic fake
embedding provider; no external services are required.
"""
