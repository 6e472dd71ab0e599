"""Tests for the fact extraction stage."""

import json

import pytest

from conftest import ScriptedLLM, make_state
from memory_kg.errors import LLMNotReadyError, ResponseParseError
from memory_kg.ingestion.extraction.facts import (
    FactAccumulator,
    build_name_lookup,
    extract_facts,
)
from memory_kg.types.entities import ExtractedEntity, ResolvedEntity


def _entity(name: str, final_name: str | None = None, summary: str | None = None) -> ResolvedEntity:
    resolved = ResolvedEntity.as_new(ExtractedEntity(name=name, summary=summary))
    if final_name:
        resolved = resolved.model_copy(update={"final_name": final_name})
    return resolved


def _fact(source: str, destination: str, relation: str, text: str) -> dict:
    return {
        "source_entity": source,
        "destination_entity": destination,
        "relation_type": relation,
        "fact_text": text,
    }


class TestBuildNameLookup:
    """Test name to uuid lookup."""

    def test_final_name_wins(self):
        alice = _entity("Al", final_name="Alice")
        bob = _entity("Alice", final_name="Bob")
        lookup = build_name_lookup([alice, bob])
        assert lookup["alice"] == alice.uuid
        assert lookup["al"] == alice.uuid
        assert lookup["bob"] == bob.uuid


class TestFactAccumulator:
    """Test fact keying and merging."""

    def test_add_and_merge(self):
        alice, acme = _entity("Alice"), _entity("Acme Corp")
        accumulator = FactAccumulator(build_name_lookup([alice, acme]))

        first = accumulator.add("Alice", "Acme Corp", "works at", "Alice works at Acme.", {"since": 2020})
        assert first is not None
        assert first.relation_type == "WORKS_AT"
        assert first.source_entity_id == alice.uuid

        merged = accumulator.add("alice", "ACME CORP", "WORKS_AT", "She leads a team.", {"team": "ML"})
        assert merged is None
        assert len(accumulator) == 1
        fact = accumulator.facts[0]
        assert fact.fact_text == "Alice works at Acme.. She leads a team."
        assert fact.attributes == {"since": 2020, "team": "ML"}

    def test_same_text_not_repeated(self):
        alice, acme = _entity("Alice"), _entity("Acme")
        accumulator = FactAccumulator(build_name_lookup([alice, acme]))
        accumulator.add("Alice", "Acme", "WORKS_AT", "Alice works at Acme")
        accumulator.add("Alice", "Acme", "WORKS_AT", "Alice works at Acme")
        assert accumulator.facts[0].fact_text == "Alice works at Acme"

    def test_unknown_entity_dropped(self):
        accumulator = FactAccumulator(build_name_lookup([_entity("Alice")]))
        assert accumulator.add("Alice", "Globex", "WORKS_AT", "text") is None
        assert len(accumulator) == 0

    def test_missing_text_synthesized(self):
        alice, acme = _entity("Alice"), _entity("Acme")
        accumulator = FactAccumulator(build_name_lookup([alice, acme]))
        fact = accumulator.add("Alice", "Acme", None, "  ")
        assert fact.relation_type == "RELATED_TO"
        assert fact.fact_text == "Alice RELATED_TO Acme"

    def test_parse_requires_array(self):
        accumulator = FactAccumulator({})
        with pytest.raises(ResponseParseError):
            accumulator.parse("no json")


class TestExtractFacts:
    """Test the fact extraction stage."""

    @pytest.mark.asyncio
    async def test_all_connected_single_pass(self, config):
        alice, acme = _entity("Alice", summary="Engineer"), _entity("Acme Corp")
        state = make_state("Alice works at Acme Corp.").model_copy(
            update={"resolved_entities": [alice, acme]}
        )
        llm = ScriptedLLM([json.dumps([_fact("Alice", "Acme Corp", "WORKS_AT", "Alice works at Acme Corp.")])])

        patch = await extract_facts(state, llm, config)

        facts = patch["extracted_facts"]
        assert len(facts) == 1
        assert facts[0].source_entity_id == alice.uuid
        assert facts[0].destination_entity_id == acme.uuid
        assert len(llm.calls) == 1
        assert "- Alice: Engineer" in llm.calls[0]["user"]
        assert "- Acme Corp: No description" in llm.calls[0]["user"]
        assert patch["actions"][0].metadata == {
            "fact_count": 1,
            "initial_facts": 1,
            "additional_facts": 0,
            "unconnected_entities_found": 0,
        }

    @pytest.mark.asyncio
    async def test_unconnected_pass(self, config):
        alice, acme, berlin = _entity("Alice"), _entity("Acme Corp"), _entity("Berlin")
        state = make_state("Alice works at Acme Corp in Berlin.").model_copy(
            update={"resolved_entities": [alice, acme, berlin]}
        )
        llm = ScriptedLLM([
            json.dumps([_fact("Alice", "Acme Corp", "WORKS_AT", "Alice works at Acme Corp.")]),
            json.dumps([
                _fact("Acme Corp", "Berlin", "LOCATED_IN", "Acme Corp is in Berlin."),
                _fact("Alice", "Acme Corp", "KNOWS", "Unrelated to the unconnected entity."),
            ]),
        ])

        patch = await extract_facts(state, llm, config)

        relations = [fact.relation_type for fact in patch["extracted_facts"]]
        assert relations == ["WORKS_AT", "LOCATED_IN"]
        assert len(llm.calls) == 2
        assert "UNCONNECTED ENTITIES:\n- Berlin" in llm.calls[1]["system"]
        assert llm.calls[1]["temperature"] == 0.2
        assert llm.calls[1]["max_tokens"] == 3000
        metadata = patch["actions"][0].metadata
        assert metadata["additional_facts"] == 1
        assert metadata["unconnected_entities_found"] == 1

    @pytest.mark.asyncio
    async def test_unconnected_failure_keeps_primary_facts(self, config):
        alice, acme, berlin = _entity("Alice"), _entity("Acme Corp"), _entity("Berlin")
        state = make_state("text").model_copy(update={"resolved_entities": [alice, acme, berlin]})
        llm = ScriptedLLM(
            [json.dumps([_fact("Alice", "Acme Corp", "WORKS_AT", "Alice works at Acme Corp.")])],
            default="still not json",
        )

        patch = await extract_facts(state, llm, config)

        assert len(patch["extracted_facts"]) == 1

    @pytest.mark.asyncio
    async def test_llm_not_ready(self, config):
        with pytest.raises(LLMNotReadyError):
            await extract_facts(make_state("x"), ScriptedLLM(ready=False), config)
