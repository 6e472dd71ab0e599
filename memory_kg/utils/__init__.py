"""
Utility Functions

Core algorithms and helper functions used throughout the package.

Modules:
    cost_telemetry: Request-scoped usage collection
    dates: ISO-8601 normalization for LLM output
    matching: Layered name matching for edge endpoints
    parsing: Tiered LLM response parsing
    text: Entity name cleaning and normalization
    token_count: Budget estimates and tokenizer counts
"""

from memory_kg.utils.cost_telemetry import CostCollector, telemetry_collector, telemetry_stage
from memory_kg.utils.dates import normalize_iso_datetime, parse_iso_datetime
from memory_kg.utils.matching import find_node_id, levenshtein_distance
from memory_kg.utils.parsing import ParseResult, parse_json_array, strip_code_fences
from memory_kg.utils.text import clean_entity_name, normalize_name, normalize_relation_type
from memory_kg.utils.token_count import estimate_tokens

__all__ = [
    "CostCollector",
    "telemetry_collector",
    "telemetry_stage",
    "normalize_iso_datetime",
    "parse_iso_datetime",
    "find_node_id",
    "levenshtein_distance",
    "ParseResult",
    "parse_json_array",
    "strip_code_fences",
    "clean_entity_name",
    "normalize_name",
    "normalize_relation_type",
    "estimate_tokens",
]
