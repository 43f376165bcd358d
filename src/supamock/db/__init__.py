"""
Supamock - In-memory relational store.
"""

from supamock.db.store import IDENTITY_KEY, RelationalStore, qualify

__all__ = [
    "IDENTITY_KEY",
    "RelationalStore",
    "qualify",
]
