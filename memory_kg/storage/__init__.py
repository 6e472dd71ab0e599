"""
Storage Layer

Modules:
    base: GraphStorage abstract interface
    duckdb/: Embedded DuckDB implementation

Example:
    >>> from memory_kg.storage import DuckDBGraphStore
    >>> async with DuckDBGraphStore(":memory:") as store:
    ...     print(await store.count())
"""

from memory_kg.storage.base import GraphStorage
from memory_kg.storage.duckdb import DuckDBGraphStore

__all__ = ["GraphStorage", "DuckDBGraphStore"]
