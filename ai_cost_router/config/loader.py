"""
Configuration management and loading.

Router settings come from an optional YAML file; every section is optional
and falls back to the built-in defaults. Provider API keys are read from
the environment, never from the file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ai_cost_router.core.catalog import FeatureType, ModelId, Tier
from ai_cost_router.core.errors import ConfigError
from ai_cost_router.core.ledger import DEFAULT_MONTHLY_BUDGET_CENTS
from ai_cost_router.core.profile_cache import DEFAULT_PROFILE_TTL_SECONDS
from ai_cost_router.core.quota import TIER_LIMITS, TierLimits
from ai_cost_router.core.response_cache import DEFAULT_TTL_SECONDS, FEATURE_TTLS
from ai_cost_router.core.selector import DEFAULT_FREE_DIVERSION_RATE, DEFAULT_MID_TIER_MIN_BUDGET_CENTS

DEFAULT_CONFIG_FILE = "ai-cost-router.yaml"


def _default_credits() -> Dict[ModelId, int]:
    return {ModelId.GROK_4_FAST: 2500}


@dataclass(frozen=True)
class BudgetConfig:
    """Per-user spend limits, in cents."""
    monthly_cents: int = DEFAULT_MONTHLY_BUDGET_CENTS
    free_credits_cents: Dict[ModelId, int] = field(default_factory=_default_credits)

    def __post_init__(self):
        """Validate budget values are non-negative."""
        if self.monthly_cents < 0:
            raise ConfigError("monthly_cents must be >= 0")
        for model, credits in self.free_credits_cents.items():
            if credits < 0:
                raise ConfigError(f"free credits for {model.value} must be >= 0")


@dataclass(frozen=True)
class CacheConfig:
    """Response cache sizing and per-feature TTLs."""
    default_ttl_seconds: int = DEFAULT_TTL_SECONDS
    max_entries: int = 10_000
    ttls: Dict[FeatureType, int] = field(default_factory=lambda: dict(FEATURE_TTLS))

    def __post_init__(self):
        if self.default_ttl_seconds <= 0:
            raise ConfigError("default_ttl_seconds must be > 0")
        if self.max_entries <= 0:
            raise ConfigError("max_entries must be > 0")
        for feature, ttl in self.ttls.items():
            if ttl <= 0:
                raise ConfigError(f"ttl for {feature.value} must be > 0")


@dataclass(frozen=True)
class RoutingConfig:
    free_diversion_rate: float = DEFAULT_FREE_DIVERSION_RATE
    mid_tier_min_budget_cents: int = DEFAULT_MID_TIER_MIN_BUDGET_CENTS

    def __post_init__(self):
        if not 0.0 <= self.free_diversion_rate <= 1.0:
            raise ConfigError("free_diversion_rate must be between 0 and 1")
        if self.mid_tier_min_budget_cents < 0:
            raise ConfigError("mid_tier_min_budget_cents must be >= 0")


@dataclass(frozen=True)
class RouterConfig:
    """Complete router configuration."""
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    tier_limits: Dict[Tier, TierLimits] = field(default_factory=lambda: dict(TIER_LIMITS))
    profile_ttl_seconds: float = DEFAULT_PROFILE_TTL_SECONDS

    def __post_init__(self):
        if self.profile_ttl_seconds <= 0:
            raise ConfigError("profile_ttl_seconds must be > 0")


def load_router_config(path: Optional[str] = None) -> RouterConfig:
    """Load and validate router configuration from a YAML file.

    Unknown keys are rejected so a typo never silently falls back to a
    default limit.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated RouterConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ConfigError: If configuration is invalid
    """
    if path is None:
        return RouterConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Router config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ConfigError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigError("Configuration root must be a dictionary")

    _check_keys(raw_config, {'budget', 'cache', 'routing', 'tiers', 'profiles'}, "configuration")

    profiles = _section(raw_config, 'profiles')
    _check_keys(profiles, {'ttl_seconds'}, "profiles")

    return RouterConfig(
        budget=_parse_budget(_section(raw_config, 'budget')),
        cache=_parse_cache(_section(raw_config, 'cache')),
        routing=_parse_routing(_section(raw_config, 'routing')),
        tier_limits=_parse_tiers(_section(raw_config, 'tiers')),
        profile_ttl_seconds=_number(profiles, 'ttl_seconds', "profiles", DEFAULT_PROFILE_TTL_SECONDS),
    )


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    data = raw.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict[str, Any], allowed: set, path: str) -> None:
    unknown = set(data.keys()) - allowed
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {sorted(unknown)}")


def _number(data: Dict[str, Any], key: str, path: str, default):
    if key not in data:
        return default
    value = data[key]
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{key}' in {path} must be a number")
    return type(default)(value)


def _parse_budget(data: Dict[str, Any]) -> BudgetConfig:
    _check_keys(data, {'monthly_cents', 'free_credits_cents'}, "budget")
    credits_data = data.get('free_credits_cents')
    credits = _default_credits()
    if credits_data is not None:
        if not isinstance(credits_data, dict):
            raise ConfigError("'free_credits_cents' must map model names to cents")
        credits = {}
        for name, cents in credits_data.items():
            try:
                model = ModelId(name)
            except ValueError:
                valid = [m.value for m in ModelId]
                raise ConfigError(f"Unknown model '{name}' in budget.free_credits_cents, expected one of: {valid}")
            credits[model] = _number(credits_data, name, "budget.free_credits_cents", 0)
    return BudgetConfig(
        monthly_cents=_number(data, 'monthly_cents', "budget", DEFAULT_MONTHLY_BUDGET_CENTS),
        free_credits_cents=credits,
    )


def _parse_cache(data: Dict[str, Any]) -> CacheConfig:
    _check_keys(data, {'default_ttl_seconds', 'max_entries', 'ttls'}, "cache")
    ttls = dict(FEATURE_TTLS)
    ttl_data = data.get('ttls') or {}
    if not isinstance(ttl_data, dict):
        raise ConfigError("'cache.ttls' must map feature types to seconds")
    for name, seconds in ttl_data.items():
        try:
            feature = FeatureType.parse(name)
        except ValueError as e:
            raise ConfigError(f"cache.ttls: {e}")
        ttls[feature] = _number(ttl_data, name, "cache.ttls", 0)
    return CacheConfig(
        default_ttl_seconds=_number(data, 'default_ttl_seconds', "cache", DEFAULT_TTL_SECONDS),
        max_entries=_number(data, 'max_entries', "cache", 10_000),
        ttls=ttls,
    )


def _parse_routing(data: Dict[str, Any]) -> RoutingConfig:
    _check_keys(data, {'free_diversion_rate', 'mid_tier_min_budget_cents'}, "routing")
    return RoutingConfig(
        free_diversion_rate=_number(data, 'free_diversion_rate', "routing", DEFAULT_FREE_DIVERSION_RATE),
        mid_tier_min_budget_cents=_number(
            data, 'mid_tier_min_budget_cents', "routing", DEFAULT_MID_TIER_MIN_BUDGET_CENTS
        ),
    )


def _parse_tiers(data: Dict[str, Any]) -> Dict[Tier, TierLimits]:
    valid_tiers = {tier.value for tier in Tier}
    _check_keys(data, valid_tiers, "tiers")
    limits = dict(TIER_LIMITS)
    for name, tier_data in data.items():
        path = f"tiers.{name}"
        if not isinstance(tier_data, dict):
            raise ConfigError(f"'{path}' must be a dictionary")
        _check_keys(tier_data, {'daily', 'monthly'}, path)
        tier = Tier(name)
        current = limits[tier]
        try:
            limits[tier] = TierLimits(
                daily=_number(tier_data, 'daily', path, current.daily),
                monthly=_number(tier_data, 'monthly', path, current.monthly),
            )
        except ValueError as e:
            raise ConfigError(f"{path}: {e}")
    return limits
