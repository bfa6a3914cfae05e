"""Search orchestration.

Contents
- ``scorer``: mode dispatch over semantic, keyword, and hybrid retrieval
- ``index_manager``: document lifecycle and the query pipeline
"""
