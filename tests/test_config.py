"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for router configs.
"""

import os
import tempfile

import pytest
import yaml

from ai_cost_router.config.loader import (
    BudgetConfig,
    CacheConfig,
    RouterConfig,
    RoutingConfig,
    load_router_config,
)
from ai_cost_router.core.catalog import FeatureType, ModelId, Tier
from ai_cost_router.core.errors import ConfigError
from ai_cost_router.core.quota import TierLimits


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_no_path_gives_defaults(self):
        config = load_router_config(None)
        assert config == RouterConfig()
        assert config.budget.monthly_cents == 1500
        assert config.tier_limits[Tier.FREE] == TierLimits(daily=5, monthly=150)
        assert config.profile_ttl_seconds == 300.0

    def test_valid_config_loads_correctly(self):
        config_path = self._write_config({
            "budget": {"monthly_cents": 2000, "free_credits_cents": {"grok-4-fast": 1000}},
            "cache": {"max_entries": 500, "ttls": {"quick_chat": 60}},
            "routing": {"free_diversion_rate": 0.5},
            "tiers": {"pro": {"daily": 80}},
            "profiles": {"ttl_seconds": 120},
        })
        config = load_router_config(config_path)

        assert config.budget.monthly_cents == 2000
        assert config.budget.free_credits_cents == {ModelId.GROK_4_FAST: 1000}
        assert config.cache.max_entries == 500
        assert config.cache.ttls[FeatureType.QUICK_CHAT] == 60
        assert config.cache.ttls[FeatureType.NOTE_SUMMARY] == 86400
        assert config.routing.free_diversion_rate == 0.5
        assert config.tier_limits[Tier.PRO] == TierLimits(daily=80, monthly=1500)
        assert config.tier_limits[Tier.FREE] == TierLimits(daily=5, monthly=150)
        assert config.profile_ttl_seconds == 120.0

    def test_missing_file_raises_error(self):
        with pytest.raises(FileNotFoundError, match="Router config file not found"):
            load_router_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file_raises_error(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")
        with pytest.raises(ConfigError, match="Configuration file is empty"):
            load_router_config(config_path)

    def test_invalid_yaml_raises_error(self):
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("budget: [unclosed")
        with pytest.raises(yaml.YAMLError):
            load_router_config(config_path)

    def test_unknown_top_level_key(self):
        config_path = self._write_config({"budget": {"monthly_cents": 100}, "extra": 1})
        with pytest.raises(ConfigError, match="Unknown keys in configuration"):
            load_router_config(config_path)

    def test_unknown_nested_key(self):
        config_path = self._write_config({"cache": {"max_entries": 10, "size": 5}})
        with pytest.raises(ConfigError, match="Unknown keys in cache"):
            load_router_config(config_path)

    def test_unknown_tier(self):
        config_path = self._write_config({"tiers": {"platinum": {"daily": 1000}}})
        with pytest.raises(ConfigError, match="Unknown keys in tiers"):
            load_router_config(config_path)

    def test_unknown_feature_ttl(self):
        config_path = self._write_config({"cache": {"ttls": {"telepathy": 10}}})
        with pytest.raises(ConfigError, match="Unknown feature type"):
            load_router_config(config_path)

    def test_unknown_credit_model(self):
        config_path = self._write_config({"budget": {"free_credits_cents": {"gpt-9": 10}}})
        with pytest.raises(ConfigError, match="Unknown model 'gpt-9'"):
            load_router_config(config_path)

    def test_non_numeric_value(self):
        config_path = self._write_config({"routing": {"free_diversion_rate": "lots"}})
        with pytest.raises(ConfigError, match="must be a number"):
            load_router_config(config_path)

    def test_boolean_is_not_a_number(self):
        config_path = self._write_config({"cache": {"max_entries": True}})
        with pytest.raises(ConfigError, match="must be a number"):
            load_router_config(config_path)

    def test_zero_tier_limit(self):
        config_path = self._write_config({"tiers": {"free": {"daily": 0}}})
        with pytest.raises(ConfigError, match="tiers.free"):
            load_router_config(config_path)

    def test_config_errors_are_value_errors(self):
        config_path = self._write_config({"routing": {"free_diversion_rate": 2.0}})
        with pytest.raises(ValueError):
            load_router_config(config_path)


class TestConfigValidation:
    """Test configuration dataclass validation."""

    def test_negative_budget(self):
        with pytest.raises(ConfigError, match="monthly_cents must be >= 0"):
            BudgetConfig(monthly_cents=-1)

    def test_negative_credits(self):
        with pytest.raises(ConfigError):
            BudgetConfig(free_credits_cents={ModelId.GROK_4_FAST: -5})

    def test_cache_bounds(self):
        with pytest.raises(ConfigError, match="max_entries must be > 0"):
            CacheConfig(max_entries=0)
        with pytest.raises(ConfigError):
            CacheConfig(ttls={FeatureType.QUICK_CHAT: 0})

    def test_routing_bounds(self):
        with pytest.raises(ConfigError):
            RoutingConfig(free_diversion_rate=-0.1)

    def test_profile_ttl(self):
        with pytest.raises(ConfigError):
            RouterConfig(profile_ttl_seconds=0)
