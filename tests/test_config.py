"""
Tests for Recall configuration.
"""

import pytest
from pydantic import ValidationError

from recall.core.config import (
    AggregatorConfig,
    OracleConfig,
    RecallConfig,
    RouterConfig,
    get_config,
    reset_config,
    set_config,
)


# ==================== Config Tests ====================

class TestRecallConfig:
    """Tests for RecallConfig."""

    def test_defaults(self):
        """Test default thresholds and timeouts."""
        config = RecallConfig()

        assert config.router.auto_apply_above == 90
        assert config.router.suggest_at_or_above == 60
        assert config.dedup.prefix_with_company_confidence == 93
        assert config.query.min_score == 15
        assert config.oracle.timeout > 0

    def test_router_ordering_validated(self):
        """Test inverted thresholds are rejected."""
        with pytest.raises(ValidationError):
            RouterConfig(auto_apply_above=50, suggest_at_or_above=70)

    def test_self_names_from_string(self):
        """Test comma separated operator names."""
        config = AggregatorConfig(self_names="Navi, Navi Rao,")
        assert config.self_names == ["Navi", "Navi Rao"]

    def test_environment_override(self, monkeypatch):
        """Test nested environment variables."""
        monkeypatch.setenv("RECALL_ORACLE__TIMEOUT", "5")
        monkeypatch.setenv("RECALL_ROUTER__AUTO_APPLY_ABOVE", "95")

        config = RecallConfig()

        assert config.oracle.timeout == 5.0
        assert config.router.auto_apply_above == 95.0

    def test_file_round_trip(self, tmp_path):
        """Test saving and loading a config file."""
        path = tmp_path / "config" / "recall.json"
        config = RecallConfig(oracle=OracleConfig(provider="mock", timeout=3))

        config.to_file(path)
        loaded = RecallConfig.from_file(path)

        assert loaded.oracle.provider == "mock"
        assert loaded.oracle.timeout == 3

    def test_missing_file(self, tmp_path):
        """Test loading a missing file."""
        with pytest.raises(FileNotFoundError):
            RecallConfig.from_file(tmp_path / "missing.json")

    def test_api_key_fallback(self, monkeypatch):
        """Test the oracle key falls back to the environment."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")

        assert RecallConfig().get_oracle_api_key() == "sk-env"
        assert RecallConfig(oracle=OracleConfig(api_key="sk-file")).get_oracle_api_key() == "sk-file"
        assert RecallConfig(oracle=OracleConfig(provider="mock")).get_oracle_api_key() is None

    def test_global_instance(self):
        """Test get/set/reset of the global config."""
        custom = RecallConfig(instance_id="custom")
        set_config(custom)
        try:
            assert get_config() is custom
        finally:
            reset_config()

        assert get_config() is not custom
        reset_config()
