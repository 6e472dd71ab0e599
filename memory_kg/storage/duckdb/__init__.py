"""
DuckDB Graph Store

Modules:
    store: DuckDBGraphStore (tables, inserts, provenance joins, search)

Search Patterns:
    - Substring: name/summary ILIKE '%term%'
    - Fuzzy: jaro_winkler_similarity(lower(name), term) >= threshold
    - Vector: cosine similarity computed with numpy over stored DOUBLE[]

Example Queries:

    -- Nodes mentioned by a source
    SELECT n.* FROM nodes n
    JOIN source_nodes sn ON sn.node_id = n.id
    WHERE sn.source_id = ?

    -- Edges touching candidate nodes
    SELECT * FROM edges
    WHERE source_id IN (...) OR destination_id IN (...)
"""

from memory_kg.storage.duckdb.store import DuckDBGraphStore

__all__ = ["DuckDBGraphStore"]
