"""Knowledge search service package.

Layout:
- ``api``: HTTP endpoints for search and indexing operations.
- ``chunking``: document text to chunks.
- ``encoders``: embedding provider client.
- ``retrievers``: keyword scoring.
- ``ranking``: hybrid fusion and result filters.
- ``hybrid``: search orchestration and document lifecycle.
"""
