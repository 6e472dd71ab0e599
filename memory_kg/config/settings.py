"""
KGConfig - Configuration Management

Sensible defaults with full override capability.

Example:
    >>> # Use defaults (reads from environment)
    >>> kg = KnowledgeGraph("./memory.duckdb")

    >>> # Explicit configuration
    >>> config = KGConfig(
    ...     llm_model="gpt-4o-mini",
    ...     owner_entity_name="Me",
    ... )
    >>> kg = KnowledgeGraph("./memory.duckdb", config=config)

    >>> # From config file
    >>> config = KGConfig.from_file("./memory_kg.toml")

Environment Variables:
    MEMORY_KG_LLM_PROVIDER - LLM provider name
    MEMORY_KG_LLM_MODEL - Model for extraction and resolution
    MEMORY_KG_LLM_MAX_MODEL_TOKENS - Context window reported to the pipeline
    MEMORY_KG_EMBEDDING_PROVIDER - Embedding provider name
    MEMORY_KG_EMBEDDING_MODEL - Embedding model name
    MEMORY_KG_OWNER_ENTITY_NAME - Canonical name for first-person references
    MEMORY_KG_DB_PATH - Default DuckDB database path
    MEMORY_KG_FACT_MATCH_BIDIRECTIONAL - "true"/"false"
    OPENAI_API_KEY - OpenAI API key (standard name)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, cast

# TOML support: tomllib is built-in for Python 3.11+, use tomli for 3.10
try:
    import tomllib

    def _load_toml(path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return cast(dict[str, Any], tomllib.load(f))

except ImportError:
    import tomli

    def _load_toml(path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return cast(dict[str, Any], tomli.load(f))


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class KGConfig:
    """Configuration for memory-kg."""

    # === LLM Configuration ===

    llm_provider: str = "openai"
    """LLM provider: "openai" """

    llm_model: str = "gpt-4o-mini"
    """Model for extraction, resolution and temporal enrichment"""

    llm_max_model_tokens: int = 16000
    """Context window the provider reports to token-budgeted stages"""

    # === Embedding Configuration ===

    embedding_provider: str = "openai"
    """Embedding provider: "openai", "none" """

    embedding_model: str = "text-embedding-3-small"
    """Embedding model name"""

    # === API Keys ===

    openai_api_key: str | None = None

    # === Extraction Configuration ===

    owner_entity_name: str = "Graph Owner"
    """Canonical entity that first-person pronouns resolve to in personal notes"""

    map_refine_max_retries: int = 2
    """Retries per chunk in every map-refine stage"""

    # === Resolution Configuration ===

    candidate_node_limit: int = 200
    """Maximum existing nodes loaded as entity-resolution candidates"""

    candidate_edge_limit: int = 500
    """Maximum existing edges loaded as fact-resolution candidates"""

    fuzzy_threshold: float = 0.85
    """Minimum Jaro-Winkler similarity for fuzzy candidate search"""

    vector_threshold: float = 0.3
    """Minimum cosine similarity for vector candidate search"""

    fact_match_bidirectional: bool = True
    """Treat an existing edge B->A as a deterministic match for a new fact A->B"""

    # === Storage Configuration ===

    db_path: str = "./memory_kg.duckdb"
    """Default DuckDB database path (":memory:" for an in-process store)"""

    # === Cost Telemetry Configuration ===

    cost_debug_warn_threshold_usd: float | None = None
    """Optional warning threshold for per-ingestion estimated cost"""

    def __init__(self, **kwargs: Any) -> None:
        """
        Initialize configuration.

        Args:
            **kwargs: Override any configuration option
        """
        # Load from environment first
        self._load_from_env()

        # Apply explicit overrides
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                raise ValueError(f"Unknown configuration option: {key}")

    def _load_from_env(self) -> None:
        """Load configuration from environment variables."""
        import os

        self.openai_api_key = os.getenv("OPENAI_API_KEY")

        if provider := os.getenv("MEMORY_KG_LLM_PROVIDER"):
            self.llm_provider = provider
        if model := os.getenv("MEMORY_KG_LLM_MODEL"):
            self.llm_model = model
        if max_tokens := os.getenv("MEMORY_KG_LLM_MAX_MODEL_TOKENS"):
            self.llm_max_model_tokens = int(max_tokens)
        if provider := os.getenv("MEMORY_KG_EMBEDDING_PROVIDER"):
            self.embedding_provider = provider
        if model := os.getenv("MEMORY_KG_EMBEDDING_MODEL"):
            self.embedding_model = model
        if owner := os.getenv("MEMORY_KG_OWNER_ENTITY_NAME"):
            self.owner_entity_name = owner
        if db_path := os.getenv("MEMORY_KG_DB_PATH"):
            self.db_path = db_path
        if bidirectional := os.getenv("MEMORY_KG_FACT_MATCH_BIDIRECTIONAL"):
            self.fact_match_bidirectional = _parse_bool(bidirectional)
        if threshold := os.getenv("MEMORY_KG_COST_DEBUG_WARN_THRESHOLD_USD"):
            self.cost_debug_warn_threshold_usd = float(threshold)

    @classmethod
    def from_file(cls, path: str | Path) -> "KGConfig":
        """
        Load configuration from TOML file.

        Nested sections are flattened with their prefix.

        Example TOML:
            [llm]
            provider = "openai"
            model = "gpt-4o-mini"

            [extraction]
            owner_entity_name = "Me"

            [resolution]
            candidate_node_limit = 100

            [api_keys]
            openai = "sk-..."

        Args:
            path: Path to TOML configuration file

        Returns:
            KGConfig instance with values from file

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        data = _load_toml(path)

        flat_config: dict[str, Any] = {}

        # Map section names to config key prefixes
        section_mapping = {
            "llm": "llm_",
            "embedding": "embedding_",
            "api_keys": "",  # api_keys.openai -> openai_api_key
            "extraction": "",
            "resolution": "",
            "storage": "",
            "cost_telemetry": "cost_debug_",
        }

        for section, prefix in section_mapping.items():
            if section in data:
                for key, value in data[section].items():
                    if section == "api_keys":
                        flat_config[f"{key}_api_key"] = value
                    else:
                        flat_config[f"{prefix}{key}"] = value

        # Also support flat top-level keys
        for key, value in data.items():
            if key not in section_mapping and not isinstance(value, dict):
                flat_config[key] = value

        return cls(**flat_config)

    @classmethod
    def from_env(cls) -> "KGConfig":
        """Load configuration from environment variables only."""
        return cls()

    def to_file(self, path: str | Path) -> None:
        """
        Save configuration to TOML file.

        API keys are never written.

        Args:
            path: Path to write TOML configuration file
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        sections: dict[str, dict[str, str | int | float | bool | None]] = {
            "llm": {
                "provider": self.llm_provider,
                "model": self.llm_model,
                "max_model_tokens": self.llm_max_model_tokens,
            },
            "embedding": {
                "provider": self.embedding_provider,
                "model": self.embedding_model,
            },
            "extraction": {
                "owner_entity_name": self.owner_entity_name,
                "map_refine_max_retries": self.map_refine_max_retries,
            },
            "resolution": {
                "candidate_node_limit": self.candidate_node_limit,
                "candidate_edge_limit": self.candidate_edge_limit,
                "fuzzy_threshold": self.fuzzy_threshold,
                "vector_threshold": self.vector_threshold,
                "fact_match_bidirectional": self.fact_match_bidirectional,
            },
            "storage": {
                "db_path": self.db_path,
            },
            "cost_telemetry": {
                "warn_threshold_usd": self.cost_debug_warn_threshold_usd,
            },
        }

        lines = ["# memory-kg configuration", ""]

        for section_name, section_values in sections.items():
            lines.append(f"[{section_name}]")
            for key, value in section_values.items():
                if isinstance(value, str):
                    lines.append(f'{key} = "{value}"')
                elif isinstance(value, bool):
                    lines.append(f"{key} = {str(value).lower()}")
                elif isinstance(value, (int, float)):
                    lines.append(f"{key} = {value}")
            lines.append("")

        lines.extend([
            "# API keys should be set via environment variables:",
            "# OPENAI_API_KEY",
            "",
        ])

        path.write_text("\n".join(lines))

    def with_overrides(self, **kwargs: Any) -> "KGConfig":
        """Return new config with specified overrides."""
        new_config = KGConfig.__new__(KGConfig)
        for key in dir(self):
            if not key.startswith("_") and not callable(getattr(self, key)):
                setattr(new_config, key, getattr(self, key))
        for key, value in kwargs.items():
            if not hasattr(new_config, key):
                raise ValueError(f"Unknown configuration option: {key}")
            setattr(new_config, key, value)
        return new_config
