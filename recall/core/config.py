"""
Recall Configuration Management

Centralized configuration for the reconciliation engine with:
- Environment-based configuration (RECALL_ prefix)
- Type-safe settings with Pydantic
- JSON file loading and saving
- A lazily created global instance
"""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels for Recall."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RouterConfig(BaseModel):
    """Confidence thresholds shared by every proposal type."""
    auto_apply_above: float = 90.0  # strictly greater than
    suggest_at_or_above: float = 60.0

    @model_validator(mode="after")
    def check_ordering(self) -> "RouterConfig":
        if self.suggest_at_or_above > self.auto_apply_above:
            raise ValueError("suggest_at_or_above must not exceed auto_apply_above")
        return self


class AggregatorConfig(BaseModel):
    """Configuration for the Candidate Aggregator."""
    self_names: list[str] = Field(default_factory=list)
    action_item_overlap: float = 0.5  # fraction of significant terms
    snippet_chars: int = 200
    max_action_items: Optional[int] = None

    @field_validator("self_names", mode="before")
    @classmethod
    def split_names(cls, v):
        """Accept a comma separated string from the environment."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v


class DedupConfig(BaseModel):
    """Configuration for the Duplicate Detector."""
    # Exact-name rule (a)
    exact_with_company_confidence: float = 96.0
    exact_with_role_confidence: float = 92.0
    exact_name_only_confidence: float = 70.0
    # First-name / full-name rule (b)
    prefix_with_company_confidence: float = 93.0
    prefix_with_role_confidence: float = 80.0
    # Oracle-backed pass
    oracle_interval_seconds: float = 300.0
    oracle_max_pairs: int = 20


class QueryConfig(BaseModel):
    """Configuration for the Query Resolver."""
    min_score: float = 15.0
    switch_ratio: float = 1.3
    clear_gap: float = 0.15


class IngestionConfig(BaseModel):
    """Debounce and trigger settings for the transcript stream."""
    min_transcript_chars: int = 15
    extraction_min_new_chars: int = 30
    extraction_debounce_seconds: float = 2.0
    reconcile_min_new_chars: int = 500
    reconcile_interval_seconds: float = 30.0
    min_reconcile_chars: int = 20
    persist_debounce_seconds: float = 3.0
    max_segments: int = Field(default=5000, ge=1)  # oldest dropped first


class OracleConfig(BaseModel):
    """Configuration for the LLM-backed oracles."""
    provider: Literal["anthropic", "mock"] = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: int = 800
    temperature: float = 0.1
    timeout: float = 15.0  # seconds per oracle call
    usage_log_size: int = 500


class MonitoringConfig(BaseModel):
    """Configuration for logging."""
    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "console"] = "json"


class SessionsConfig(BaseModel):
    """Configuration for the per-user session manager."""
    max_users: int = 1000
    idle_ttl_minutes: int = 120
    cleanup_interval_seconds: float = 300.0


class RecallConfig(BaseSettings):
    """
    Main Recall Configuration

    Loads configuration from environment variables and/or config files.
    Environment variables are prefixed with RECALL_ (e.g., RECALL_ORACLE__TIMEOUT=5)
    """

    instance_id: str = Field(default="recall-primary")
    environment: Literal["development", "staging", "production"] = "development"

    router: RouterConfig = Field(default_factory=RouterConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)

    data_dir: Path = Field(default=Path("./data"))

    model_config = {
        "env_prefix": "RECALL_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @field_validator("data_dir", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Ensure value is converted to Path."""
        if isinstance(v, str):
            return Path(v)
        return v

    @classmethod
    def from_file(cls, config_path: Path) -> "RecallConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

    def get_oracle_api_key(self) -> Optional[str]:
        """Get the oracle API key from config or environment."""
        if self.oracle.api_key:
            return self.oracle.api_key
        if self.oracle.provider == "anthropic":
            return os.environ.get("ANTHROPIC_API_KEY")
        return None


# Global configuration instance (lazy loaded)
_config: Optional[RecallConfig] = None


def get_config() -> RecallConfig:
    """Get the global Recall configuration instance."""
    global _config
    if _config is None:
        _config = RecallConfig()
    return _config


def set_config(config: RecallConfig) -> None:
    """Set the global Recall configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration to default."""
    global _config
    _config = None
