"""
Recall Core

Configuration and logging shared by every Recall subsystem.
"""

from recall.core.config import (
    RecallConfig,
    RouterConfig,
    AggregatorConfig,
    DedupConfig,
    QueryConfig,
    IngestionConfig,
    OracleConfig,
    MonitoringConfig,
    SessionsConfig,
    get_config,
    set_config,
    reset_config,
)
from recall.core.logging import setup_logging

__all__ = [
    "RecallConfig",
    "RouterConfig",
    "AggregatorConfig",
    "DedupConfig",
    "QueryConfig",
    "IngestionConfig",
    "OracleConfig",
    "MonitoringConfig",
    "SessionsConfig",
    "get_config",
    "set_config",
    "reset_config",
    "setup_logging",
]
