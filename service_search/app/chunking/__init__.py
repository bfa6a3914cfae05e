"""Document chunking.

Contents
- ``chunker``: paragraph-packing and fixed-stride chunkers
"""
