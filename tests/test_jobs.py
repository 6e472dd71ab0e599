"""Tests for the job registry."""

import json

import pytest
from pydantic import BaseModel

from conftest import ScriptedLLM
from memory_kg.errors import JobValidationError, UnknownJobKindError
from memory_kg.jobs import (
    KNOWLEDGE_GRAPH_JOB,
    JobRegistry,
    JobServices,
    JobSpec,
    default_registry,
)
from memory_kg.types.results import KnowledgeGraphInput, KnowledgeGraphResult


class EchoInput(BaseModel):
    text: str


class EchoOutput(BaseModel):
    text: str
    length: int


def _echo_spec(kind: str = "echo", broken: bool = False) -> JobSpec:
    def factory(services: JobServices):
        async def handle(job_input: EchoInput):
            if broken:
                return {"text": job_input.text}
            return EchoOutput(text=job_input.text, length=len(job_input.text))

        return handle

    return JobSpec(kind=kind, input_model=EchoInput, output_model=EchoOutput, factory=factory)


class TestJobRegistry:
    """Test registration and lookup."""

    def test_register_and_lookup(self):
        registry = JobRegistry()
        spec = _echo_spec()
        registry.register(spec)
        assert registry.get("echo") is spec
        assert registry.kinds == ["echo"]
        assert "echo" in registry
        assert "other" not in registry

    def test_duplicate_kind_rejected(self):
        registry = JobRegistry()
        registry.register(_echo_spec())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(_echo_spec())

    def test_unknown_kind(self):
        with pytest.raises(UnknownJobKindError):
            JobRegistry().get("missing")

    def test_default_registry_has_knowledge_graph(self):
        assert KNOWLEDGE_GRAPH_JOB in default_registry()


class TestJobRun:
    """Test validated job execution."""

    @pytest.mark.asyncio
    async def test_run_validates_output(self, store):
        registry = JobRegistry()
        registry.register(_echo_spec())
        result = await registry.run("echo", {"text": "hello"}, JobServices(llm=ScriptedLLM(), storage=store))
        assert result == EchoOutput(text="hello", length=5)

    @pytest.mark.asyncio
    async def test_invalid_payload(self, store):
        registry = JobRegistry()
        registry.register(_echo_spec())
        with pytest.raises(JobValidationError, match="Invalid payload"):
            await registry.run("echo", {"text": 5}, JobServices(llm=ScriptedLLM(), storage=store))

    @pytest.mark.asyncio
    async def test_invalid_result(self, store):
        registry = JobRegistry()
        registry.register(_echo_spec(broken=True))
        with pytest.raises(JobValidationError, match="Invalid result"):
            await registry.run("echo", {"text": "hi"}, JobServices(llm=ScriptedLLM(), storage=store))

    @pytest.mark.asyncio
    async def test_unknown_kind_on_run(self, store):
        with pytest.raises(UnknownJobKindError):
            await JobRegistry().run("missing", {}, JobServices(llm=ScriptedLLM(), storage=store))

    @pytest.mark.asyncio
    async def test_knowledge_graph_job(self, store, config):
        llm = ScriptedLLM([
            json.dumps([{"name": "Alice", "nodeType": "PERSON"}, {"name": "Acme Corp", "nodeType": "COMPANY"}]),
            json.dumps([{
                "source_entity": "Alice",
                "destination_entity": "Acme Corp",
                "relation_type": "WORKS_AT",
                "fact_text": "Alice works at Acme Corp.",
            }]),
            json.dumps([{"valid_at": None, "invalid_at": None}]),
        ])
        updates = []
        services = JobServices(llm=llm, storage=store, config=config, on_progress=updates.append)

        payload = KnowledgeGraphInput(content="Alice works at Acme Corp.", title="Notes", page_id="p1")
        result = await default_registry().run(KNOWLEDGE_GRAPH_JOB, payload, services)

        assert isinstance(result, KnowledgeGraphResult)
        assert result.success
        assert len(result.created_nodes) == 2
        assert len(result.created_edges) == 1
        assert updates[-1].progress == 100

    @pytest.mark.asyncio
    async def test_knowledge_graph_job_rejects_bad_payload(self, store):
        with pytest.raises(JobValidationError):
            await default_registry().run(
                KNOWLEDGE_GRAPH_JOB, {"title": 5}, JobServices(llm=ScriptedLLM(), storage=store)
            )

    @pytest.mark.asyncio
    async def test_knowledge_graph_handler_rejects_wrong_model(self, store):
        handler = default_registry().create(
            KNOWLEDGE_GRAPH_JOB, JobServices(llm=ScriptedLLM(), storage=store)
        )
        with pytest.raises(JobValidationError, match="expects KnowledgeGraphInput"):
            await handler(EchoInput(text="hello"))
