"""API subpackage for the search service.

Routers expose search, document (de)indexing, similar-document lookup, and
index statistics. The transport layer stays thin and delegates to
``IndexManager``.
"""
