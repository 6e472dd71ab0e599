"""Tests for GraphAssembler persistence."""

from datetime import datetime, timezone

import pytest

from conftest import FakeEmbeddingService, LetterEmbedder, make_state
from memory_kg.ingestion.assembly.assembler import (
    FAILURE_MESSAGE,
    SOURCE_TARGET_TYPE,
    GraphAssembler,
    safe_text_to_vector,
)
from memory_kg.storage.duckdb import DuckDBGraphStore
from memory_kg.types.entities import ExtractedEntity, ResolvedEntity
from memory_kg.types.facts import EnrichedFact, ResolvedFact, TemporalInfo
from memory_kg.types.graph import NewNode


class FlakyStore(DuckDBGraphStore):
    """DuckDB store whose node inserts fail for chosen names."""

    def __init__(self, failing_names: set[str]) -> None:
        super().__init__(":memory:")
        self.failing_names = failing_names

    async def create_node(self, node):
        if node.name in self.failing_names:
            raise RuntimeError(f"insert rejected for {node.name}")
        return await super().create_node(node)


def _new(name: str, node_type: str = "ENTITY") -> ResolvedEntity:
    return ResolvedEntity.as_new(ExtractedEntity(name=name, node_type=node_type))


def _fact(source: ResolvedEntity, destination: ResolvedEntity, relation: str, **temporal) -> EnrichedFact:
    return EnrichedFact(
        source_entity_id=source.uuid,
        destination_entity_id=destination.uuid,
        relation_type=relation,
        fact_text=f"{source.final_name} {relation} {destination.final_name}",
        temporal=TemporalInfo(**temporal),
    )


def _state(entities, facts, existing_nodes=(), **kwargs):
    return make_state("Alice works at Acme.", title="Team Page", **kwargs).model_copy(
        update={
            "resolved_entities": list(entities),
            "enriched_facts": list(facts),
            "existing_nodes": list(existing_nodes),
        }
    )


class TestSafeTextToVector:
    """Test best-effort embedding."""

    @pytest.mark.asyncio
    async def test_blank_and_missing(self):
        assert await safe_text_to_vector(None, "text", "ctx") is None
        assert await safe_text_to_vector(FakeEmbeddingService(LetterEmbedder()), "  ", "ctx") is None
        assert await safe_text_to_vector(FakeEmbeddingService(None), "text", "ctx") is None
        assert await safe_text_to_vector(FakeEmbeddingService(LetterEmbedder(ready=False)), "text", "ctx") is None

    @pytest.mark.asyncio
    async def test_failure_swallowed(self):
        service = FakeEmbeddingService(LetterEmbedder(fail=True))
        assert await safe_text_to_vector(service, "text", "ctx") is None

    @pytest.mark.asyncio
    async def test_vector(self):
        vector = await safe_text_to_vector(FakeEmbeddingService(LetterEmbedder()), "ab", "ctx")
        assert vector[0] == 1.0
        assert vector[1] == 1.0
        assert len(vector) == 27


class TestGraphAssembler:
    """Test persistence of one ingestion."""

    @pytest.mark.asyncio
    async def test_persists_source_nodes_and_edges(self, store, embeddings):
        alice, acme = _new("Alice", "PERSON"), _new("Acme Corp", "COMPANY")
        fact = _fact(alice, acme, "WORKS_AT", valid_at="2020-01-01T00:00:00+00:00")
        state = _state([alice, acme], [fact], metadata={"lang": "en"})

        patch = await GraphAssembler(store, embeddings).persist(state)

        source = patch["created_source"]
        assert source.target_type == SOURCE_TARGET_TYPE
        assert source.target_id == "page-1"
        assert source.name == "Team Page"
        assert source.metadata == {"lang": "en"}
        assert source.reference_time == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)

        assert [node.name for node in patch["created_nodes"]] == ["Alice", "Acme Corp"]
        assert patch["created_nodes"][0].name_embedding is not None

        edge = patch["created_edges"][0]
        ids = {node.name: node.id for node in patch["created_nodes"]}
        assert edge.source_id == ids["Alice"]
        assert edge.destination_id == ids["Acme Corp"]
        assert edge.valid_at == datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert edge.invalid_at is None
        assert edge.fact_embedding is not None
        assert edge.type_embedding is not None

        assert patch["final_message"] == (
            'Knowledge graph creation completed. Created 2 new nodes and 1 new edges from "Team Page".'
        )
        assert patch["actions"][0].name == "Knowledge Graph Saved"

        counts = await store.count()
        assert counts == {"sources": 1, "nodes": 2, "edges": 1, "source_nodes": 2, "source_edges": 1}

        graph = await store.get_graph_for_source(source.id)
        assert {node.name for node in graph.nodes} == {"Alice", "Acme Corp"}
        assert [e.id for e in graph.edges] == [edge.id]

    @pytest.mark.asyncio
    async def test_existing_entities_and_facts_not_recreated(self, store):
        stored_acme = await store.create_node(NewNode(node_type="COMPANY", name="Acme Corp"))
        alice = _new("Alice")
        acme = ResolvedEntity.as_existing(ExtractedEntity(name="Acme"), stored_acme.id, "Acme Corp")
        new_fact = _fact(alice, acme, "WORKS_AT")
        known_fact = EnrichedFact.from_resolved(
            ResolvedFact.as_existing(_fact(alice, acme, "KNOWS"), "edge-1")
        )

        patch = await GraphAssembler(store).persist(
            _state([alice, acme], [new_fact, known_fact], [stored_acme])
        )

        assert [node.name for node in patch["created_nodes"]] == ["Alice"]
        assert [edge.edge_type for edge in patch["created_edges"]] == ["WORKS_AT"]
        assert patch["created_edges"][0].destination_id == stored_acme.id
        assert patch["created_nodes"][0].name_embedding is None

    @pytest.mark.asyncio
    async def test_falls_back_to_resolved_facts(self, store):
        alice, acme = _new("Alice"), _new("Acme")
        resolved = ResolvedFact(
            source_entity_id=alice.uuid,
            destination_entity_id=acme.uuid,
            relation_type="WORKS_AT",
            fact_text="Alice works at Acme",
        )
        state = _state([alice, acme], []).model_copy(update={"resolved_facts": [resolved]})

        patch = await GraphAssembler(store).persist(state)

        assert len(patch["created_edges"]) == 1
        assert patch["created_edges"][0].valid_at is None

    @pytest.mark.asyncio
    async def test_missing_page_id_fails_without_writes(self, store):
        state = _state([_new("Alice")], [], page_id="  ")

        patch = await GraphAssembler(store).persist(state)

        assert "created_source" not in patch
        assert patch["final_message"] == FAILURE_MESSAGE
        assert "page_id" in patch["errors"][0]
        assert patch["actions"][0].name == "Database Save Failed"
        assert (await store.count())["sources"] == 0
        assert (await store.count())["nodes"] == 0

    @pytest.mark.asyncio
    async def test_missing_title_fails(self, store):
        state = _state([], []).model_copy(update={"title": ""})
        patch = await GraphAssembler(store).persist(state)
        assert "title" in patch["errors"][0]

    @pytest.mark.asyncio
    async def test_one_failed_node_does_not_stop_the_rest(self):
        store = FlakyStore({"Globex"})
        await store.initialize()
        try:
            alice, acme, globex = _new("Alice"), _new("Acme"), _new("Globex")
            facts = [_fact(alice, acme, "WORKS_AT"), _fact(alice, globex, "ADVISES")]

            patch = await GraphAssembler(store).persist(_state([alice, acme, globex], facts))

            assert [node.name for node in patch["created_nodes"]] == ["Alice", "Acme"]
            assert [edge.edge_type for edge in patch["created_edges"]] == ["WORKS_AT"]
            assert patch["created_source"] is not None
            assert "errors" not in patch
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_failed_node_resolved_to_stored_match(self):
        """A new entity whose insert fails still anchors edges via a similar stored node."""
        store = FlakyStore({"ACME corp"})
        await store.initialize()
        try:
            stored_acme = await store.create_node(NewNode(node_type="COMPANY", name="Acme Corp"))
            alice, acme = _new("Alice"), _new("ACME corp")

            patch = await GraphAssembler(store).persist(
                _state([alice, acme], [_fact(alice, acme, "WORKS_AT")], [stored_acme])
            )

            assert [node.name for node in patch["created_nodes"]] == ["Alice"]
            assert patch["created_edges"][0].destination_id == stored_acme.id
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_fact_with_unknown_entity_skipped(self, store):
        alice, acme = _new("Alice"), _new("Acme")
        dangling = EnrichedFact(
            source_entity_id="ghost", destination_entity_id=acme.uuid, fact_text="ghost"
        )
        patch = await GraphAssembler(store).persist(_state([alice, acme], [dangling]))
        assert patch["created_edges"] == []
        assert len(patch["created_nodes"]) == 2

    @pytest.mark.asyncio
    async def test_embedding_failure_does_not_block_writes(self, store):
        alice, acme = _new("Alice"), _new("Acme")
        embeddings = FakeEmbeddingService(LetterEmbedder(fail=True))

        patch = await GraphAssembler(store, embeddings).persist(
            _state([alice, acme], [_fact(alice, acme, "WORKS_AT")])
        )

        assert len(patch["created_nodes"]) == 2
        assert patch["created_edges"][0].fact_embedding is None
