"""
Tests for KnowledgeGraph facade class.

Tests cover:
- Instantiation and lazy initialization
- remember / remember_sync
- Page graph navigation and stats
- Cost debugging
- Context manager support
"""

import json
import uuid

import pytest

from conftest import FakeEmbeddingService, LetterEmbedder, ScriptedLLM
from memory_kg.api.knowledge_graph import KnowledgeGraph
from memory_kg.config import KGConfig
from memory_kg.types.results import CostUsageRecord
from memory_kg.utils.cost_telemetry import current_stage, record_usage

ENTITIES_RESPONSE = json.dumps([
    {"name": "Alice", "nodeType": "PERSON", "summary": "Engineer"},
    {"name": "Acme Corp", "nodeType": "COMPANY"},
])
FACTS_RESPONSE = json.dumps([
    {
        "source_entity": "Alice",
        "destination_entity": "Acme Corp",
        "relation_type": "WORKS_AT",
        "fact_text": "Alice works at Acme Corp.",
    }
])
TEMPORAL_RESPONSE = json.dumps([{"valid_at": None, "invalid_at": None}])


class MeteredLLM(ScriptedLLM):
    """ScriptedLLM that reports a fixed usage record per call."""

    async def chat_completions(self, messages, *, max_tokens, temperature, stream=False):
        completion = await super().chat_completions(
            messages, max_tokens=max_tokens, temperature=temperature, stream=stream
        )
        record_usage(
            CostUsageRecord(
                provider="scripted",
                model="gpt-4o-mini",
                operation="chat_completions",
                stage=current_stage(),
                input_tokens=1000,
                output_tokens=100,
                total_tokens=1100,
                estimated_cost_usd=0.001,
            )
        )
        return completion


def _kg(config: KGConfig, llm=None) -> KnowledgeGraph:
    return KnowledgeGraph(
        ":memory:",
        config=config,
        llm=llm or ScriptedLLM([ENTITIES_RESPONSE, FACTS_RESPONSE, TEMPORAL_RESPONSE]),
        embeddings=FakeEmbeddingService(LetterEmbedder()),
    )


class TestKnowledgeGraphInstantiation:
    """Tests for KnowledgeGraph instantiation."""

    def test_path_defaults_to_config(self):
        config = KGConfig(db_path="./graph.duckdb")
        kg = KnowledgeGraph(config=config)
        assert kg.path == "./graph.duckdb"
        assert kg.config is config

    def test_explicit_path(self, config):
        assert KnowledgeGraph(":memory:", config=config).path == ":memory:"

    def test_instantiation_does_not_initialize(self, config):
        kg = KnowledgeGraph(":memory:", config=config)
        assert kg.is_initialized is False
        assert kg._storage is None

    @pytest.mark.asyncio
    async def test_unknown_llm_provider(self, config):
        kg = KnowledgeGraph(":memory:", config=config.with_overrides(llm_provider="x"))
        try:
            with pytest.raises(ValueError, match="Unknown LLM provider: x"):
                await kg.stats()
        finally:
            await kg.close()

    @pytest.mark.asyncio
    async def test_unknown_embedding_provider(self, config):
        kg = KnowledgeGraph(
            ":memory:", config=config.with_overrides(embedding_provider="x"), llm=ScriptedLLM()
        )
        try:
            with pytest.raises(ValueError, match="Unknown embedding provider: x"):
                await kg.stats()
        finally:
            await kg.close()


class TestKnowledgeGraphRemember:
    """Tests for ingestion through the facade."""

    @pytest.mark.asyncio
    async def test_remember_and_navigate(self, config):
        async with _kg(config) as kg:
            assert kg.is_initialized
            result = await kg.remember(
                "Alice works at Acme Corp.",
                title="Team Notes",
                page_id="page-1",
                metadata={"tab": 3},
            )

            assert result.success
            assert result.cost_debug is None
            assert {node.name for node in result.created_nodes} == {"Alice", "Acme Corp"}

            graph = await kg.get_graph_for_page("page-1")
            assert graph.source.name == "Team Notes"
            assert graph.source.metadata == {"tab": 3}
            assert {node.name for node in graph.nodes} == {"Alice", "Acme Corp"}
            assert [edge.edge_type for edge in graph.edges] == ["WORKS_AT"]

            assert await kg.get_graph_for_page("unknown") is None
            stats = await kg.stats()
            assert stats["nodes"] == 2
            assert stats["edges"] == 1

        assert kg.is_initialized is False

    @pytest.mark.asyncio
    async def test_page_id_defaults_to_uuid(self, config):
        async with _kg(config) as kg:
            result = await kg.remember("Alice works at Acme Corp.", title="Notes")
            uuid.UUID(result.created_source.target_id)

    @pytest.mark.asyncio
    async def test_progress_callback(self, config):
        updates = []
        async with _kg(config) as kg:
            await kg.remember("Alice works at Acme Corp.", title="Notes", page_id="p", on_progress=updates.append)
        assert updates[-1].progress == 100

    @pytest.mark.asyncio
    async def test_cost_debug_report(self, config):
        llm = MeteredLLM([ENTITIES_RESPONSE, FACTS_RESPONSE, TEMPORAL_RESPONSE])
        async with _kg(config, llm=llm) as kg:
            result = await kg.remember("Alice works at Acme Corp.", title="Notes", cost_debug=True)

        report = result.cost_debug
        assert report.enabled
        assert report.breakdown.total_calls == 3
        stages = {stage.stage for stage in report.breakdown.by_stage}
        assert stages == {"extract_entities", "extract_facts", "extract_temporal"}

    def test_remember_sync(self, config):
        kg = _kg(config, llm=ScriptedLLM())
        result = kg.remember_sync("Nothing notable here.", title="Empty", page_id="p")
        assert result.success
        assert result.created_nodes == []
        assert kg.is_initialized is False

    def test_stats_sync(self, config):
        stats = _kg(config).stats_sync()
        assert stats["nodes"] == 0


class TestCLI:
    """Tests for CLI commands."""

    def test_cli_help(self):
        """Test CLI help command."""
        from typer.testing import CliRunner
        from memory_kg.cli import app

        runner = CliRunner()
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "ingest" in result.stdout
        assert "show" in result.stdout
        assert "info" in result.stdout

    def test_cli_ingest_help(self):
        """Test ingest command help."""
        from typer.testing import CliRunner
        from memory_kg.cli import app

        runner = CliRunner()
        result = runner.invoke(app, ["ingest", "--help"])

        assert result.exit_code == 0
        assert "--db" in result.stdout
        assert "--source-type" in result.stdout
        assert "--cost-debug" in result.stdout

    def test_cli_info_on_empty_database(self, tmp_path):
        """Test info command against a fresh database file."""
        from typer.testing import CliRunner
        from memory_kg.cli import app

        runner = CliRunner()
        result = runner.invoke(app, ["info", "--db", str(tmp_path / "graph.duckdb")])

        assert result.exit_code == 0
        assert "Sources" in result.stdout
        assert "Nodes" in result.stdout

    def test_cli_show_unknown_page(self, tmp_path):
        """Test show command exits non-zero for an unknown page."""
        from typer.testing import CliRunner
        from memory_kg.cli import app

        runner = CliRunner()
        result = runner.invoke(app, ["show", "nope", "--db", str(tmp_path / "graph.duckdb")])

        assert result.exit_code == 1
        assert "No source found" in result.stdout
