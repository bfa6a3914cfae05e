"""Search ranking components.

Contents
- ``fusion``: weighted score fusion for hybrid search
- ``filters``: metadata predicates applied before the final sort
"""
