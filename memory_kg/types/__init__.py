"""
Type Definitions

Pydantic models for every data shape used by memory-kg.

Modules:
    entities: ExtractedEntity, ResolvedEntity
    facts: ExtractedFact, ResolvedFact, TemporalInfo, EnrichedFact
    graph: Node, Edge, Source, provenance links and insert payloads
    results: KnowledgeGraphInput, KnowledgeGraphResult, telemetry models
    state: IngestionState and patch merge rules
"""

from memory_kg.types.entities import ExtractedEntity, ResolvedEntity
from memory_kg.types.facts import (
    EnrichedFact,
    ExtractedFact,
    ResolvedFact,
    TemporalInfo,
)
from memory_kg.types.graph import (
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
from memory_kg.types.results import (
    Action,
    ConversionProgress,
    ConversionStatus,
    CostBreakdown,
    CostDebugReport,
    CostUsageRecord,
    KnowledgeGraphInput,
    KnowledgeGraphResult,
    SourceType,
    StageCostBreakdown,
)
from memory_kg.types.state import (
    STATE_MERGE_RULES,
    IngestionState,
    StatePatch,
    merge_patch,
)

__all__ = [
    # Entities
    "ExtractedEntity",
    "ResolvedEntity",
    # Facts
    "ExtractedFact",
    "ResolvedFact",
    "TemporalInfo",
    "EnrichedFact",
    # Graph
    "Node",
    "Edge",
    "Source",
    "SourceNode",
    "SourceEdge",
    "NewNode",
    "NewEdge",
    "NewSource",
    "PageGraph",
    # Results
    "Action",
    "ConversionProgress",
    "ConversionStatus",
    "KnowledgeGraphInput",
    "KnowledgeGraphResult",
    "SourceType",
    "CostUsageRecord",
    "StageCostBreakdown",
    "CostBreakdown",
    "CostDebugReport",
    # State
    "IngestionState",
    "StatePatch",
    "STATE_MERGE_RULES",
    "merge_patch",
]
