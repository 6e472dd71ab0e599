"""
DuckDB Graph Store

Embedded graph storage on a single DuckDB database (file-backed or
":memory:").

Tables:
    sources        one row per ingestion event
    nodes          entity nodes (name_embedding DOUBLE[])
    edges          directed relationships (fact/type embeddings DOUBLE[])
    source_nodes   Source -> Node provenance (MENTIONED_IN)
    source_edges   Source -> Edge provenance (EXTRACTED_FROM)

Timestamps are stored as ISO-8601 strings; JSON columns as VARCHAR.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar
from uuid import uuid4

import duckdb
import numpy as np
from filelock import FileLock

from memory_kg.errors import StorageError
from memory_kg.storage.base import GraphStorage
from memory_kg.types import (
    Edge,
    NewEdge,
    NewNode,
    NewSource,
    Node,
    PageGraph,
    Source,
    SourceEdge,
    SourceNode,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

MEMORY_PATH = ":memory:"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sources (
        id VARCHAR PRIMARY KEY,
        target_type VARCHAR NOT NULL,
        target_id VARCHAR NOT NULL,
        name VARCHAR NOT NULL,
        metadata VARCHAR,
        reference_time VARCHAR NOT NULL,
        weight DOUBLE NOT NULL,
        created_at VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS nodes (
        id VARCHAR PRIMARY KEY,
        node_type VARCHAR NOT NULL,
        name VARCHAR NOT NULL,
        summary VARCHAR,
        attributes VARCHAR,
        name_embedding DOUBLE[],
        created_at VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS edges (
        id VARCHAR PRIMARY KEY,
        source_id VARCHAR NOT NULL,
        destination_id VARCHAR NOT NULL,
        edge_type VARCHAR NOT NULL,
        fact_text VARCHAR NOT NULL,
        valid_at VARCHAR,
        invalid_at VARCHAR,
        recorded_at VARCHAR NOT NULL,
        attributes VARCHAR,
        fact_embedding DOUBLE[],
        type_embedding DOUBLE[],
        created_at VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS source_nodes (
        source_id VARCHAR NOT NULL,
        node_id VARCHAR NOT NULL,
        relation VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS source_edges (
        source_id VARCHAR NOT NULL,
        edge_id VARCHAR NOT NULL,
        relation VARCHAR NOT NULL,
        link_weight DOUBLE NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_edges_source ON edges (source_id)",
    "CREATE INDEX IF NOT EXISTS idx_edges_destination ON edges (destination_id)",
    "CREATE INDEX IF NOT EXISTS idx_sources_target ON sources (target_type, target_id)",
)

_COUNTED_TABLES = ("sources", "nodes", "edges", "source_nodes", "source_edges")


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _placeholders(values: list[Any]) -> str:
    return ",".join("?" for _ in values)


def _cosine_rank(
    query: list[float],
    rows: list[tuple[str, list[float]]],
    threshold: float,
    limit: int,
) -> list[str]:
    """Ids of rows ranked by cosine similarity to query, best first."""
    if not query or not rows:
        return []
    q = np.asarray(query, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    if q_norm == 0:
        return []

    candidates = [(row_id, vec) for row_id, vec in rows if vec is not None and len(vec) == len(q)]
    if not candidates:
        return []

    matrix = np.asarray([vec for _, vec in candidates], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    norms[norms == 0] = 1.0
    scores = (matrix @ q) / (norms * q_norm)

    order = np.argsort(-scores)
    ranked = []
    for idx in order:
        if scores[idx] < threshold:
            break
        ranked.append(candidates[idx][0])
        if len(ranked) >= limit:
            break
    return ranked


class DuckDBGraphStore(GraphStorage):
    """
    GraphStorage on DuckDB.

    Thread safety:
        DuckDB connections are not thread-safe and asyncio.to_thread() may run
        each call on a different worker thread, so every thread gets its own
        cursor on the shared root connection. An asyncio.Lock serializes
        operations issued from one event loop; file-backed stores also take a
        FileLock around writes.

    Args:
        path: Database file path, or ":memory:"
    """

    def __init__(self, path: str | Path = MEMORY_PATH) -> None:
        self._path = str(path)
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._local = threading.local()
        self._lock = asyncio.Lock()
        self._file_lock = (
            FileLock(f"{self._path}.lock", timeout=30) if self._path != MEMORY_PATH else None
        )

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_memory(self) -> bool:
        return self._path == MEMORY_PATH

    async def initialize(self) -> None:
        """Open the database and create tables."""
        if self._conn is not None:
            return

        def _init() -> None:
            if not self.is_memory:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            conn = duckdb.connect(self._path)
            for statement in _SCHEMA:
                conn.execute(statement)
            self._conn = conn

        async with self._lock:
            await asyncio.to_thread(_init)
        logger.info(f"DuckDB graph store ready at {self._path}")

    async def close(self) -> None:
        """Close the root connection (and with it every cursor)."""
        async with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._local = threading.local()

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        """Get this thread's cursor on the root connection, creating if needed."""
        if self._conn is None:
            raise StorageError("DuckDB store not initialized. Call initialize() first.")
        cursors = getattr(self._local, "cursors", None)
        if cursors is None:
            cursors = self._local.cursors = {}
        cursor = cursors.get(id(self._conn))
        if cursor is None:
            cursor = cursors[id(self._conn)] = self._conn.cursor()
        return cursor

    async def _read(self, fn: Callable[[duckdb.DuckDBPyConnection], R]) -> R:
        def _call() -> R:
            try:
                return fn(self._cursor())
            except duckdb.Error as e:
                raise StorageError(str(e)) from e

        async with self._lock:
            return await asyncio.to_thread(_call)

    async def _write(self, fn: Callable[[duckdb.DuckDBPyConnection], R]) -> R:
        def _call() -> R:
            try:
                if self._file_lock is not None:
                    with self._file_lock:
                        return fn(self._cursor())
                return fn(self._cursor())
            except duckdb.Error as e:
                raise StorageError(str(e)) from e

        async with self._lock:
            return await asyncio.to_thread(_call)

    # -------------------------------------------------------------------------
    # Row Conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _rows(cursor: duckdb.DuckDBPyConnection, rows: list[tuple[Any, ...]]) -> list[dict[str, Any]]:
        col_names = [desc[0] for desc in cursor.description]
        return [dict(zip(col_names, row)) for row in rows]

    @staticmethod
    def _row_to_node(row: dict[str, Any]) -> Node:
        return Node(
            id=row["id"],
            node_type=row["node_type"],
            name=row["name"],
            summary=row.get("summary"),
            attributes=json.loads(row["attributes"]) if row.get("attributes") else {},
            name_embedding=row.get("name_embedding"),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_edge(row: dict[str, Any]) -> Edge:
        return Edge(
            id=row["id"],
            source_id=row["source_id"],
            destination_id=row["destination_id"],
            edge_type=row["edge_type"],
            fact_text=row["fact_text"],
            valid_at=row.get("valid_at"),
            invalid_at=row.get("invalid_at"),
            recorded_at=row["recorded_at"],
            attributes=json.loads(row["attributes"]) if row.get("attributes") else {},
            fact_embedding=row.get("fact_embedding"),
            type_embedding=row.get("type_embedding"),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_source(row: dict[str, Any]) -> Source:
        return Source(
            id=row["id"],
            target_type=row["target_type"],
            target_id=row["target_id"],
            name=row["name"],
            metadata=json.loads(row["metadata"]) if row.get("metadata") else {},
            reference_time=row["reference_time"],
            weight=row["weight"],
            created_at=row["created_at"],
        )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def create_source(self, source: NewSource) -> Source:
        stored = Source(id=str(uuid4()), created_at=_utcnow_iso(), **source.model_dump())

        def _insert(cur: duckdb.DuckDBPyConnection) -> None:
            cur.execute(
                "INSERT INTO sources VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    stored.id,
                    stored.target_type,
                    stored.target_id,
                    stored.name,
                    json.dumps(stored.metadata, default=str),
                    _iso(stored.reference_time),
                    stored.weight,
                    _iso(stored.created_at),
                ],
            )

        await self._write(_insert)
        return stored

    async def create_node(self, node: NewNode) -> Node:
        stored = Node(id=str(uuid4()), created_at=_utcnow_iso(), **node.model_dump())

        def _insert(cur: duckdb.DuckDBPyConnection) -> None:
            cur.execute(
                "INSERT INTO nodes VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    stored.id,
                    stored.node_type,
                    stored.name,
                    stored.summary,
                    json.dumps(stored.attributes, default=str),
                    stored.name_embedding,
                    _iso(stored.created_at),
                ],
            )

        await self._write(_insert)
        return stored

    async def create_edge(self, edge: NewEdge) -> Edge:
        stored = Edge(id=str(uuid4()), created_at=_utcnow_iso(), **edge.model_dump())

        def _insert(cur: duckdb.DuckDBPyConnection) -> None:
            cur.execute(
                "INSERT INTO edges VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    stored.id,
                    stored.source_id,
                    stored.destination_id,
                    stored.edge_type,
                    stored.fact_text,
                    _iso(stored.valid_at),
                    _iso(stored.invalid_at),
                    _iso(stored.recorded_at),
                    json.dumps(stored.attributes, default=str),
                    stored.fact_embedding,
                    stored.type_embedding,
                    _iso(stored.created_at),
                ],
            )

        await self._write(_insert)
        return stored

    async def link_source_node(self, link: SourceNode) -> None:
        await self._write(
            lambda cur: cur.execute(
                "INSERT INTO source_nodes VALUES (?, ?, ?)",
                [link.source_id, link.node_id, link.relation],
            )
        )

    async def link_source_edge(self, link: SourceEdge) -> None:
        await self._write(
            lambda cur: cur.execute(
                "INSERT INTO source_edges VALUES (?, ?, ?, ?)",
                [link.source_id, link.edge_id, link.relation, link.link_weight],
            )
        )

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def get_source_by_target(self, target_type: str, target_id: str) -> Source | None:
        def _query(cur: duckdb.DuckDBPyConnection) -> Source | None:
            rows = cur.execute(
                """
                SELECT * FROM sources
                WHERE target_type = ? AND target_id = ?
                ORDER BY created_at DESC
                LIMIT 1
                """,
                [target_type, target_id],
            ).fetchall()
            found = self._rows(cur, rows)
            return self._row_to_source(found[0]) if found else None

        return await self._read(_query)

    async def list_sources(self, limit: int = 50) -> list[Source]:
        def _query(cur: duckdb.DuckDBPyConnection) -> list[Source]:
            rows = cur.execute(
                "SELECT * FROM sources ORDER BY created_at DESC LIMIT ?", [limit]
            ).fetchall()
            return [self._row_to_source(r) for r in self._rows(cur, rows)]

        return await self._read(_query)

    async def get_node(self, node_id: str) -> Node | None:
        nodes = await self.get_nodes([node_id])
        return nodes[0] if nodes else None

    async def get_nodes(self, node_ids: list[str]) -> list[Node]:
        if not node_ids:
            return []

        def _query(cur: duckdb.DuckDBPyConnection) -> list[Node]:
            rows = cur.execute(
                f"SELECT * FROM nodes WHERE id IN ({_placeholders(node_ids)})",
                list(node_ids),
            ).fetchall()
            by_id = {r["id"]: self._row_to_node(r) for r in self._rows(cur, rows)}
            # Preserve the caller's order
            return [by_id[i] for i in dict.fromkeys(node_ids) if i in by_id]

        return await self._read(_query)

    async def existing_node_ids(self, node_ids: list[str]) -> set[str]:
        if not node_ids:
            return set()

        def _query(cur: duckdb.DuckDBPyConnection) -> set[str]:
            rows = cur.execute(
                f"SELECT id FROM nodes WHERE id IN ({_placeholders(node_ids)})",
                list(node_ids),
            ).fetchall()
            return {row[0] for row in rows}

        return await self._read(_query)

    async def get_edges_for_nodes(self, node_ids: list[str], limit: int) -> list[Edge]:
        if not node_ids or limit <= 0:
            return []

        def _query(cur: duckdb.DuckDBPyConnection) -> list[Edge]:
            marks = _placeholders(node_ids)
            rows = cur.execute(
                f"""
                SELECT * FROM edges
                WHERE source_id IN ({marks}) OR destination_id IN ({marks})
                ORDER BY created_at DESC
                LIMIT ?
                """,
                [*node_ids, *node_ids, limit],
            ).fetchall()
            return [self._row_to_edge(r) for r in self._rows(cur, rows)]

        return await self._read(_query)

    async def get_edges_between(self, node_ids: list[str], limit: int) -> list[Edge]:
        if not node_ids or limit <= 0:
            return []

        def _query(cur: duckdb.DuckDBPyConnection) -> list[Edge]:
            marks = _placeholders(node_ids)
            rows = cur.execute(
                f"""
                SELECT * FROM edges
                WHERE source_id IN ({marks}) AND destination_id IN ({marks})
                ORDER BY created_at DESC
                LIMIT ?
                """,
                [*node_ids, *node_ids, limit],
            ).fetchall()
            return [self._row_to_edge(r) for r in self._rows(cur, rows)]

        return await self._read(_query)

    async def get_graph_for_source(self, source_id: str) -> PageGraph | None:
        def _query(cur: duckdb.DuckDBPyConnection) -> PageGraph | None:
            rows = cur.execute("SELECT * FROM sources WHERE id = ?", [source_id]).fetchall()
            found = self._rows(cur, rows)
            if not found:
                return None
            source = self._row_to_source(found[0])

            rows = cur.execute(
                """
                SELECT n.* FROM nodes n
                JOIN source_nodes sn ON sn.node_id = n.id
                WHERE sn.source_id = ?
                ORDER BY n.created_at
                """,
                [source_id],
            ).fetchall()
            nodes = [self._row_to_node(r) for r in self._rows(cur, rows)]

            rows = cur.execute(
                """
                SELECT e.* FROM edges e
                JOIN source_edges se ON se.edge_id = e.id
                WHERE se.source_id = ?
                ORDER BY e.created_at
                """,
                [source_id],
            ).fetchall()
            edges = [self._row_to_edge(r) for r in self._rows(cur, rows)]

            return PageGraph(source=source, nodes=nodes, edges=edges)

        return await self._read(_query)

    async def count(self) -> dict[str, int]:
        def _query(cur: duckdb.DuckDBPyConnection) -> dict[str, int]:
            counts = {}
            for table in _COUNTED_TABLES:
                counts[table] = cur.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            return counts

        return await self._read(_query)

    # -------------------------------------------------------------------------
    # Search Operations
    # -------------------------------------------------------------------------

    async def search_nodes_text(self, terms: list[str], limit: int) -> list[Node]:
        terms = [t for t in terms if t and t.strip()]
        if not terms or limit <= 0:
            return []

        def _query(cur: duckdb.DuckDBPyConnection) -> list[Node]:
            clauses = " OR ".join("name ILIKE ? OR summary ILIKE ?" for _ in terms)
            params: list[Any] = []
            for term in terms:
                pattern = f"%{term.strip()}%"
                params.extend([pattern, pattern])
            rows = cur.execute(
                f"SELECT * FROM nodes WHERE {clauses} ORDER BY created_at LIMIT ?",
                [*params, limit],
            ).fetchall()
            return [self._row_to_node(r) for r in self._rows(cur, rows)]

        return await self._read(_query)

    async def search_nodes_fuzzy(
        self, terms: list[str], threshold: float, limit: int
    ) -> list[Node]:
        terms = [t.strip().lower() for t in terms if t and t.strip()]
        if not terms or limit <= 0:
            return []

        def _query(cur: duckdb.DuckDBPyConnection) -> list[Node]:
            best: dict[str, tuple[float, Node]] = {}
            for term in terms:
                rows = cur.execute(
                    """
                    SELECT * FROM (
                        SELECT n.*, jaro_winkler_similarity(lower(n.name), ?) AS score
                        FROM nodes n
                    )
                    WHERE score >= ?
                    ORDER BY score DESC
                    LIMIT ?
                    """,
                    [term, threshold, limit],
                ).fetchall()
                for row in self._rows(cur, rows):
                    score = float(row["score"])
                    if row["id"] not in best or best[row["id"]][0] < score:
                        best[row["id"]] = (score, self._row_to_node(row))
            ranked = sorted(best.values(), key=lambda item: item[0], reverse=True)
            return [node for _, node in ranked[:limit]]

        return await self._read(_query)

    async def search_nodes_vector(
        self, vector: list[float], threshold: float, limit: int
    ) -> list[Node]:
        if not vector or limit <= 0:
            return []

        def _query(cur: duckdb.DuckDBPyConnection) -> list[str]:
            rows = cur.execute(
                "SELECT id, name_embedding FROM nodes WHERE name_embedding IS NOT NULL"
            ).fetchall()
            return _cosine_rank(vector, rows, threshold, limit)

        ranked_ids = await self._read(_query)
        return await self.get_nodes(ranked_ids)

    async def search_edges_fuzzy(
        self, terms: list[str], threshold: float, limit: int
    ) -> list[Edge]:
        terms = [t.strip().lower() for t in terms if t and t.strip()]
        if not terms or limit <= 0:
            return []

        def _query(cur: duckdb.DuckDBPyConnection) -> list[Edge]:
            best: dict[str, tuple[float, Edge]] = {}
            for term in terms:
                rows = cur.execute(
                    """
                    SELECT * FROM (
                        SELECT e.*, jaro_winkler_similarity(
                            lower(e.edge_type || ' ' || e.fact_text), ?
                        ) AS score
                        FROM edges e
                    )
                    WHERE score >= ?
                    ORDER BY score DESC
                    LIMIT ?
                    """,
                    [term, threshold, limit],
                ).fetchall()
                for row in self._rows(cur, rows):
                    score = float(row["score"])
                    if row["id"] not in best or best[row["id"]][0] < score:
                        best[row["id"]] = (score, self._row_to_edge(row))
            ranked = sorted(best.values(), key=lambda item: item[0], reverse=True)
            return [edge for _, edge in ranked[:limit]]

        return await self._read(_query)

    async def search_edges_vector(
        self, vector: list[float], threshold: float, limit: int
    ) -> list[Edge]:
        if not vector or limit <= 0:
            return []

        def _query(cur: duckdb.DuckDBPyConnection) -> list[Edge]:
            rows = cur.execute(
                "SELECT id, fact_embedding FROM edges WHERE fact_embedding IS NOT NULL"
            ).fetchall()
            ranked_ids = _cosine_rank(vector, rows, threshold, limit)
            if not ranked_ids:
                return []
            rows = cur.execute(
                f"SELECT * FROM edges WHERE id IN ({_placeholders(ranked_ids)})",
                ranked_ids,
            ).fetchall()
            by_id = {r["id"]: self._row_to_edge(r) for r in self._rows(cur, rows)}
            return [by_id[i] for i in ranked_ids if i in by_id]

        return await self._read(_query)
