"""Tests for candidate loading."""

from unittest.mock import AsyncMock

import pytest

from conftest import FakeEmbeddingService, LetterEmbedder, make_state
from memory_kg.config import KGConfig
from memory_kg.ingestion.candidates import combine_unique, load_entities, load_facts
from memory_kg.types.entities import ExtractedEntity, ResolvedEntity
from memory_kg.types.facts import ExtractedFact
from memory_kg.types.graph import NewEdge, NewNode


def _entities_state(*names: str):
    return make_state("text").model_copy(
        update={"extracted_entities": [ExtractedEntity(name=name) for name in names]}
    )


class TestCombineUnique:
    """Test ordered de-duplication."""

    def test_first_occurrence_wins_and_limit(self):
        combined = combine_unique([["a", "b"], ["b", "c"], ["d"]], str, 3)
        assert combined == ["a", "b", "c"]


class TestLoadEntities:
    """Test candidate node loading."""

    @pytest.mark.asyncio
    async def test_no_entities(self, store, config):
        patch = await load_entities(make_state("text"), store, None, config)
        assert patch == {"existing_nodes": [], "existing_edges": []}

    @pytest.mark.asyncio
    async def test_substring_and_fuzzy(self, store, config):
        acme = await store.create_node(NewNode(node_type="COMPANY", name="Acme Corporation"))
        alicia = await store.create_node(NewNode(node_type="PERSON", name="Alicia"))
        await store.create_node(NewNode(node_type="CITY", name="Berlin"))

        patch = await load_entities(_entities_state("Acme", "Alice"), store, None, config)

        ids = [node.id for node in patch["existing_nodes"]]
        assert ids[0] == acme.id
        assert alicia.id in ids
        assert patch["existing_edges"] == []
        assert patch["actions"][0].name == "Existing Nodes Loaded"
        assert patch["actions"][0].metadata["text_count"] == 1

    @pytest.mark.asyncio
    async def test_vector_fallback(self, store):
        config = KGConfig(vector_threshold=0.95, fuzzy_threshold=0.99)
        embedder = LetterEmbedder()
        vector = await embedder.text_to_vector("Rbo")
        robert = await store.create_node(
            NewNode(node_type="PERSON", name="Rbo", name_embedding=vector)
        )

        patch = await load_entities(
            _entities_state("Bor"), store, FakeEmbeddingService(embedder), config
        )

        assert [node.id for node in patch["existing_nodes"]] == [robert.id]
        assert patch["actions"][0].metadata["vector_count"] == 1

    @pytest.mark.asyncio
    async def test_storage_failure_returns_error(self, config):
        storage = AsyncMock()
        storage.search_nodes_text.side_effect = RuntimeError("disk gone")

        patch = await load_entities(_entities_state("Acme"), storage, None, config)

        assert patch["existing_nodes"] == []
        assert patch["errors"] == ["Failed to load existing nodes: disk gone"]

    @pytest.mark.asyncio
    async def test_fuzzy_failure_is_not_fatal(self, config):
        storage = AsyncMock()
        storage.search_nodes_text.return_value = []
        storage.search_nodes_fuzzy.side_effect = RuntimeError("no extension")

        patch = await load_entities(_entities_state("Acme"), storage, None, config)

        assert patch["existing_nodes"] == []
        assert "errors" not in patch


class TestLoadFacts:
    """Test candidate edge loading."""

    @pytest.mark.asyncio
    async def test_no_facts(self, store, config):
        assert await load_facts(make_state("text"), store, None, config) == {"existing_edges": []}

    @pytest.mark.asyncio
    async def test_edges_around_resolved_nodes(self, store, config):
        alice = await store.create_node(NewNode(node_type="PERSON", name="Alice"))
        acme = await store.create_node(NewNode(node_type="COMPANY", name="Acme"))
        globex = await store.create_node(NewNode(node_type="COMPANY", name="Globex"))
        works = await store.create_edge(
            NewEdge(source_id=alice.id, destination_id=acme.id, edge_type="WORKS_AT", fact_text="Alice works at Acme")
        )
        await store.create_edge(
            NewEdge(source_id=acme.id, destination_id=globex.id, edge_type="COMPETES_WITH", fact_text="Acme competes with Globex")
        )

        resolved_alice = ResolvedEntity.as_existing(ExtractedEntity(name="Alice"), alice.id, "Alice")
        new_bob = ResolvedEntity.as_new(ExtractedEntity(name="Bob"))
        fact = ExtractedFact(
            source_entity_id=resolved_alice.uuid,
            destination_entity_id=new_bob.uuid,
            relation_type="KNOWS",
            fact_text="Alice knows Bob",
        )
        state = make_state("text").model_copy(
            update={
                "resolved_entities": [resolved_alice, new_bob],
                "extracted_facts": [fact],
                "existing_nodes": [alice],
            }
        )

        patch = await load_facts(state, store, None, config)

        edge_ids = {edge.id for edge in patch["existing_edges"]}
        assert works.id in edge_ids
        node_ids = [node.id for node in patch["existing_nodes"]]
        assert node_ids[0] == alice.id
        assert acme.id in node_ids
        assert len(node_ids) == len(set(node_ids))
        assert patch["actions"][0].name == "Existing Edges Loaded"

    @pytest.mark.asyncio
    async def test_unresolved_names_searched(self, store, config):
        bob = await store.create_node(NewNode(node_type="PERSON", name="Bob"))
        carol = await store.create_node(NewNode(node_type="PERSON", name="Carol"))
        edge = await store.create_edge(
            NewEdge(source_id=bob.id, destination_id=carol.id, edge_type="KNOWS", fact_text="Bob knows Carol")
        )
        new_bob = ResolvedEntity.as_new(ExtractedEntity(name="Bob"))
        new_dan = ResolvedEntity.as_new(ExtractedEntity(name="Dan"))
        fact = ExtractedFact(
            source_entity_id=new_bob.uuid,
            destination_entity_id=new_dan.uuid,
            relation_type="MENTORS",
            fact_text="Bob mentors Dan",
        )
        state = make_state("text").model_copy(
            update={"resolved_entities": [new_bob, new_dan], "extracted_facts": [fact]}
        )

        patch = await load_facts(state, store, None, config)

        assert [e.id for e in patch["existing_edges"]] == [edge.id]
        assert {node.id for node in patch["existing_nodes"]} == {bob.id, carol.id}

    @pytest.mark.asyncio
    async def test_storage_failure_returns_error(self, config):
        storage = AsyncMock()
        storage.search_nodes_text.side_effect = RuntimeError("disk gone")
        new_bob = ResolvedEntity.as_new(ExtractedEntity(name="Bob"))
        fact = ExtractedFact(
            source_entity_id=new_bob.uuid,
            destination_entity_id=new_bob.uuid,
            fact_text="x",
        )
        state = make_state("text").model_copy(
            update={"resolved_entities": [new_bob], "extracted_facts": [fact]}
        )

        patch = await load_facts(state, storage, None, config)

        assert patch == {"existing_edges": [], "errors": ["Failed to load existing edges: disk gone"]}
