"""
StakeGov Unified Configuration

Loads all sections of config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    DatabaseConfig,
    GovernanceSectionConfig,
    NodeConfig,
    NodeSectionConfig,
    SQLiteConfig,
    load_config,
)

__all__ = [
    "DatabaseConfig",
    "GovernanceSectionConfig",
    "NodeConfig",
    "NodeSectionConfig",
    "SQLiteConfig",
    "load_config",
]
