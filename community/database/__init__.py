"""
Community database utilities.

Provides collection names and index setup.
"""

from community.database import collections
from community.database.indexes import ensure_indexes

__all__ = [
    "collections",
    "ensure_indexes",
]
