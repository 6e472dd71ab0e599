"""Tests for the DuckDB graph store."""

import asyncio
from datetime import datetime, timezone

import pytest

from memory_kg.errors import StorageError
from memory_kg.storage.duckdb import DuckDBGraphStore
from memory_kg.types.graph import NewEdge, NewNode, NewSource, SourceEdge, SourceNode


async def _seed(store: DuckDBGraphStore):
    alice = await store.create_node(
        NewNode(node_type="PERSON", name="Alice", summary="Engineer at Acme", attributes={"age": 30})
    )
    acme = await store.create_node(NewNode(node_type="COMPANY", name="Acme Corp"))
    berlin = await store.create_node(NewNode(node_type="CITY", name="Berlin"))
    works = await store.create_edge(
        NewEdge(
            source_id=alice.id,
            destination_id=acme.id,
            edge_type="WORKS_AT",
            fact_text="Alice works at Acme Corp",
            valid_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )
    )
    located = await store.create_edge(
        NewEdge(
            source_id=acme.id,
            destination_id=berlin.id,
            edge_type="LOCATED_IN",
            fact_text="Acme Corp is based in Berlin",
        )
    )
    return alice, acme, berlin, works, located


class TestLifecycle:
    """Test open and close."""

    @pytest.mark.asyncio
    async def test_requires_initialize(self):
        store = DuckDBGraphStore()
        with pytest.raises(StorageError, match="not initialized"):
            await store.count()

    @pytest.mark.asyncio
    async def test_file_backed_persists(self, tmp_path):
        path = tmp_path / "nested" / "graph.duckdb"
        async with DuckDBGraphStore(path) as store:
            await store.create_node(NewNode(node_type="PERSON", name="Alice"))
            assert not store.is_memory

        async with DuckDBGraphStore(path) as reopened:
            assert (await reopened.count())["nodes"] == 1

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store):
        await store.initialize()
        assert (await store.count())["nodes"] == 0


class TestWritesAndReads:
    """Test inserts and lookups."""

    @pytest.mark.asyncio
    async def test_round_trip_node_and_edge(self, store):
        alice, acme, _, works, _ = await _seed(store)

        loaded = await store.get_node(alice.id)
        assert loaded.name == "Alice"
        assert loaded.attributes == {"age": 30}
        assert loaded.summary == "Engineer at Acme"
        assert await store.get_node("missing") is None

        edges = await store.get_edges_for_nodes([alice.id], 10)
        assert [edge.id for edge in edges] == [works.id]
        assert edges[0].valid_at == datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert edges[0].invalid_at is None

    @pytest.mark.asyncio
    async def test_get_nodes_preserves_order(self, store):
        alice, acme, berlin, _, _ = await _seed(store)
        nodes = await store.get_nodes([berlin.id, "missing", alice.id, berlin.id])
        assert [node.id for node in nodes] == [berlin.id, alice.id]

    @pytest.mark.asyncio
    async def test_existing_node_ids(self, store):
        alice, _, _, _, _ = await _seed(store)
        assert await store.existing_node_ids([alice.id, "missing"]) == {alice.id}
        assert await store.existing_node_ids([]) == set()

    @pytest.mark.asyncio
    async def test_edges_between(self, store):
        alice, acme, berlin, works, located = await _seed(store)
        between = await store.get_edges_between([alice.id, acme.id], 10)
        assert [edge.id for edge in between] == [works.id]
        touching = await store.get_edges_for_nodes([acme.id], 10)
        assert {edge.id for edge in touching} == {works.id, located.id}

    @pytest.mark.asyncio
    async def test_sources_and_page_graph(self, store):
        alice, acme, _, works, _ = await _seed(store)
        first = await store.create_source(
            NewSource(target_type="remembered_pages", target_id="page-1", name="First", metadata={"k": "v"})
        )
        await store.link_source_node(SourceNode(source_id=first.id, node_id=alice.id))
        await store.link_source_node(SourceNode(source_id=first.id, node_id=acme.id))
        await store.link_source_edge(SourceEdge(source_id=first.id, edge_id=works.id))
        await asyncio.sleep(0.01)
        second = await store.create_source(
            NewSource(target_type="remembered_pages", target_id="page-1", name="Second")
        )

        latest = await store.get_source_by_target("remembered_pages", "page-1")
        assert latest.id == second.id
        assert await store.get_source_by_target("remembered_pages", "nope") is None
        assert [s.id for s in await store.list_sources()] == [second.id, first.id]

        graph = await store.get_graph_for_source(first.id)
        assert graph.source.metadata == {"k": "v"}
        assert {node.id for node in graph.nodes} == {alice.id, acme.id}
        assert [edge.id for edge in graph.edges] == [works.id]
        assert await store.get_graph_for_source("missing") is None

        counts = await store.count()
        assert counts == {"sources": 2, "nodes": 3, "edges": 2, "source_nodes": 2, "source_edges": 1}


class TestSearch:
    """Test candidate searches."""

    @pytest.mark.asyncio
    async def test_text_search_name_and_summary(self, store):
        alice, acme, _, _, _ = await _seed(store)
        found = await store.search_nodes_text(["acme"], 10)
        assert {node.id for node in found} == {alice.id, acme.id}
        assert await store.search_nodes_text(["  "], 10) == []
        assert len(await store.search_nodes_text(["acme"], 1)) == 1

    @pytest.mark.asyncio
    async def test_fuzzy_node_search(self, store):
        _, acme, _, _, _ = await _seed(store)
        found = await store.search_nodes_fuzzy(["Acme Crop"], 0.85, 10)
        assert [node.id for node in found] == [acme.id]
        assert await store.search_nodes_fuzzy(["zzzz"], 0.85, 10) == []

    @pytest.mark.asyncio
    async def test_fuzzy_edge_search(self, store):
        _, _, _, works, _ = await _seed(store)
        found = await store.search_edges_fuzzy(["WORKS_AT Alice works at Acme Corp"], 0.9, 10)
        assert [edge.id for edge in found] == [works.id]

    @pytest.mark.asyncio
    async def test_vector_search(self, store):
        near = await store.create_node(
            NewNode(node_type="PERSON", name="Near", name_embedding=[1.0, 0.0, 0.0])
        )
        await store.create_node(
            NewNode(node_type="PERSON", name="Far", name_embedding=[0.0, 1.0, 0.0])
        )
        await store.create_node(NewNode(node_type="PERSON", name="None"))
        await store.create_node(
            NewNode(node_type="PERSON", name="WrongDim", name_embedding=[1.0, 0.0])
        )

        found = await store.search_nodes_vector([0.9, 0.1, 0.0], 0.5, 10)
        assert [node.id for node in found] == [near.id]
        assert await store.search_nodes_vector([], 0.5, 10) == []

    @pytest.mark.asyncio
    async def test_edge_vector_search(self, store):
        alice, acme, _, _, _ = await _seed(store)
        edge = await store.create_edge(
            NewEdge(
                source_id=alice.id,
                destination_id=acme.id,
                edge_type="FOUNDED",
                fact_text="Alice founded Acme",
                fact_embedding=[0.0, 0.0, 1.0],
            )
        )
        found = await store.search_edges_vector([0.0, 0.1, 1.0], 0.9, 5)
        assert [e.id for e in found] == [edge.id]
