"""
Configuration System

Configuration Priority (highest to lowest):
    1. Programmatic (passed to KGConfig())
    2. Environment variables (MEMORY_KG_* prefix)
    3. Config file (KGConfig.from_file)
    4. Built-in defaults

Modules:
    settings: KGConfig class
    pricing: Model pricing for usage telemetry
"""

from memory_kg.config.settings import KGConfig

__all__ = ["KGConfig"]
