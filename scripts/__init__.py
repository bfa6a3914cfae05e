"""Operational scripts for the knowledge search service.

Scripts include:
- ``rebuild_index.py``: repopulate a running service's index from a document export.
"""
