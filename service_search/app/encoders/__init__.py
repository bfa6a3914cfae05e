"""Embedding provider access.

Contents
- ``embedding_client``: provider contract, HTTP client, batcher
- ``retry_handler``: exponential backoff for transient provider failures
- ``circuit_breaker``: fail fast while the provider is down
"""
