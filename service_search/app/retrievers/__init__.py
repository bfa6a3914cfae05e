"""Candidate retrieval for the search pipeline.

Retrievers decide which chunks are candidates and score them. The semantic
scan lives in the vector store; this package holds the lexical one.

Contents
- ``keyword``: length-normalized term-frequency scoring
"""
