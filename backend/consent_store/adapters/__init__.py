"""
Storage adapters for the consent store.

This package provides:
- Adapter: Protocol every backend implements
- InMemoryAdapter: Process-local backend ("memory")
- SqliteAdapter: SQL-building backend over sqlite3 ("sql-builder")
- create_adapter: Factory keyed by backend name
"""

from .base import (
    Adapter,
    Operator,
    RecordMapper,
    SortBy,
    WhereCondition,
    create_adapter,
    eq,
    normalize_where,
)
from .memory import InMemoryAdapter
from .sqlite import SqliteAdapter

__all__ = [
    "Adapter",
    "InMemoryAdapter",
    "Operator",
    "RecordMapper",
    "SortBy",
    "SqliteAdapter",
    "WhereCondition",
    "create_adapter",
    "eq",
    "normalize_where",
]
