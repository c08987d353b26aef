"""
Configuration management and loading.

Read-only configuration surface for the analysis core: provider credentials
and ordering, budget limits, trust-tier cache lifetimes, circuit breaker
thresholds, retry policy and coalescing timings.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ai_automod.core.models import TrustTier
from ai_automod.core.pricing import PRICING_TABLE, ModelPricing, usd_to_minor_units

KNOWN_PROVIDERS = ("claude", "openai", "openai-compatible")

DEFAULT_MODELS = {
    "claude": "claude-3-5-haiku-20241022",
    "openai": "gpt-4o-mini",
    "openai-compatible": "deepseek-chat",
}

DEFAULT_BASE_URLS = {
    "openai-compatible": "https://api.deepseek.com",
}

HOUR = 3600


@dataclass(frozen=True)
class ProviderConfig:
    """Credentials and pricing for one AI vendor."""
    provider_id: str
    enabled: bool = True
    api_key: Optional[str] = None
    model: str = ""
    base_url: Optional[str] = None
    input_cost_per_mtok: Optional[Decimal] = None
    output_cost_per_mtok: Optional[Decimal] = None

    def __post_init__(self):
        """Validate provider identity and prices."""
        if self.provider_id not in KNOWN_PROVIDERS:
            raise ValueError(f"Unknown provider: {self.provider_id}")
        for price in (self.input_cost_per_mtok, self.output_cost_per_mtok):
            if price is not None and price < 0:
                raise ValueError(f"prices for {self.provider_id} must be >= 0")

    @property
    def usable(self) -> bool:
        """Enabled and holding a credential."""
        return self.enabled and bool(self.api_key)

    def pricing(self) -> ModelPricing:
        """Explicit prices from config, falling back to the default table.

        Raises:
            ValueError: If neither config nor the table prices the model
        """
        if self.input_cost_per_mtok is not None and self.output_cost_per_mtok is not None:
            return ModelPricing(self.input_cost_per_mtok, self.output_cost_per_mtok)
        return PRICING_TABLE.get_pricing(self.model)


@dataclass(frozen=True)
class SelectionConfig:
    """Primary provider and ordered fallbacks."""
    primary: str
    fallbacks: Tuple[str, ...] = ()

    def __post_init__(self):
        for provider in (self.primary,) + tuple(self.fallbacks):
            if provider not in KNOWN_PROVIDERS:
                raise ValueError(f"Unknown provider in selection: {provider}")


@dataclass(frozen=True)
class BudgetConfig:
    """Budget limits in minor units."""
    daily: int = usd_to_minor_units("5.00")
    monthly: int = usd_to_minor_units("150.00")
    estimated_cost_per_analysis: int = usd_to_minor_units("0.08")
    alert_thresholds: Tuple[float, ...] = (0.5, 0.75, 0.9)

    def __post_init__(self):
        """Validate budget values are positive."""
        if self.daily <= 0:
            raise ValueError("daily budget must be > 0")
        if self.monthly <= 0:
            raise ValueError("monthly budget must be > 0")
        if self.estimated_cost_per_analysis < 0:
            raise ValueError("estimated_cost_per_analysis must be >= 0")
        for threshold in self.alert_thresholds:
            if not 0 < threshold <= 1:
                raise ValueError("alert thresholds must be in (0, 1]")


@dataclass(frozen=True)
class CacheConfig:
    """Cache lifetime per trust tier, in seconds."""
    high: int = 48 * HOUR
    medium: int = 24 * HOUR
    low: int = 12 * HOUR
    known_bad: int = 7 * 24 * HOUR

    def __post_init__(self):
        for name in ("high", "medium", "low", "known_bad"):
            if getattr(self, name) <= 0:
                raise ValueError(f"cache lifetime '{name}' must be > 0")

    @property
    def lifetimes(self) -> Dict[TrustTier, int]:
        return {
            TrustTier.HIGH: self.high,
            TrustTier.MEDIUM: self.medium,
            TrustTier.LOW: self.low,
            TrustTier.KNOWN_BAD: self.known_bad,
        }


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds and timings for per-provider circuits."""
    failure_threshold: int = 5
    success_threshold: int = 2
    cooldown_seconds: float = 30.0
    timeout_seconds: float = 10.0

    def __post_init__(self):
        if self.failure_threshold < 1 or self.success_threshold < 1:
            raise ValueError("circuit thresholds must be >= 1")
        if self.cooldown_seconds <= 0 or self.timeout_seconds <= 0:
            raise ValueError("circuit timings must be > 0")


@dataclass(frozen=True)
class RetryConfig:
    """Adapter retry policy for transient errors."""
    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_seconds: float = 4.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` (1-indexed) failed."""
        delay = self.initial_delay_seconds * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


@dataclass(frozen=True)
class CoalescerConfig:
    """Lock lifetime and polling schedule for duplicate requests."""
    lock_ttl_seconds: float = 30.0
    max_wait_seconds: float = 30.0
    initial_poll_seconds: float = 0.5
    poll_multiplier: float = 1.5
    max_poll_seconds: float = 1.0

    def __post_init__(self):
        if self.lock_ttl_seconds <= 0 or self.max_wait_seconds < 0:
            raise ValueError("coalescer timings must be positive")
        if self.initial_poll_seconds <= 0 or self.max_poll_seconds <= 0:
            raise ValueError("poll delays must be > 0")
        if self.poll_multiplier < 1:
            raise ValueError("poll_multiplier must be >= 1")


@dataclass(frozen=True)
class AutomodConfig:
    """Complete configuration for the analysis core."""
    providers: Dict[str, ProviderConfig]
    selection: SelectionConfig
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    coalescer: CoalescerConfig = field(default_factory=CoalescerConfig)
    store_path: str = "ai_automod.db"
    log_level: str = "INFO"

    @classmethod
    def default(cls) -> "AutomodConfig":
        """Configuration with every provider disabled and default policies."""
        return cls(
            providers={},
            selection=SelectionConfig(primary="claude", fallbacks=("openai",)),
        )


_TOP_LEVEL_KEYS = {
    'providers', 'selection', 'budget', 'cache', 'circuit_breaker',
    'retry', 'coalescer', 'store', 'logging'
}


def load_config(path: str) -> AutomodConfig:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfiguration that could lead to
    unexpected spend.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AutomodConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - _TOP_LEVEL_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'providers' not in raw_config:
        raise ValueError("Missing required 'providers' section")
    if 'selection' not in raw_config:
        raise ValueError("Missing required 'selection' section")

    providers_data = _section(raw_config, 'providers')
    providers = {}
    for provider_id, provider_data in providers_data.items():
        if not isinstance(provider_data, dict):
            raise ValueError(f"Provider '{provider_id}' must be a dictionary")
        providers[provider_id] = _parse_provider(provider_id, provider_data)

    selection_data = _section(raw_config, 'selection')
    _check_keys(selection_data, {'primary', 'fallbacks'}, 'selection')
    if 'primary' not in selection_data:
        raise ValueError("Missing required 'primary' in selection")
    fallbacks = selection_data.get('fallbacks') or []
    if not isinstance(fallbacks, list):
        raise ValueError("'selection.fallbacks' must be a list")
    selection = SelectionConfig(
        primary=str(selection_data['primary']),
        fallbacks=tuple(str(f) for f in fallbacks if str(f) != "none"),
    )

    store_data = _section(raw_config, 'store')
    _check_keys(store_data, {'path'}, 'store')
    logging_data = _section(raw_config, 'logging')
    _check_keys(logging_data, {'level'}, 'logging')

    return AutomodConfig(
        providers=providers,
        selection=selection,
        budget=_parse_budget(_section(raw_config, 'budget')),
        cache=_build(CacheConfig, _section(raw_config, 'cache'), 'cache', int),
        circuit_breaker=_build(
            CircuitBreakerConfig, _section(raw_config, 'circuit_breaker'), 'circuit_breaker'
        ),
        retry=_build(RetryConfig, _section(raw_config, 'retry'), 'retry'),
        coalescer=_build(CoalescerConfig, _section(raw_config, 'coalescer'), 'coalescer'),
        store_path=str(store_data.get('path', "ai_automod.db")),
        log_level=str(logging_data.get('level', "INFO")).upper(),
    )


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict[str, Any], allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return value


def _decimal(value: Any, path: str) -> Decimal:
    try:
        return Decimal(str(_number(value, path)))
    except InvalidOperation:
        raise ValueError(f"'{path}' must be a number")


def _build(cls, data: Dict[str, Any], path: str, cast=None):
    """Construct a numeric config dataclass from a YAML section."""
    allowed = set(cls.__dataclass_fields__.keys())
    _check_keys(data, allowed, path)
    kwargs = {}
    for key, value in data.items():
        number = _number(value, f"{path}.{key}")
        field_type = cls.__dataclass_fields__[key].type
        kwargs[key] = (cast or (int if field_type is int else float))(number)
    return cls(**kwargs)


def _parse_provider(provider_id: str, data: Dict[str, Any]) -> ProviderConfig:
    """Parse and validate one provider entry.

    The credential comes from ``api_key`` or from the environment variable
    named by ``api_key_env``.
    """
    allowed_keys = {
        'enabled', 'api_key', 'api_key_env', 'model', 'base_url',
        'input_cost_per_mtok', 'output_cost_per_mtok'
    }
    _check_keys(data, allowed_keys, f"providers.{provider_id}")

    if provider_id not in KNOWN_PROVIDERS:
        raise ValueError(f"Unknown provider: {provider_id}")

    enabled = data.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ValueError(f"'providers.{provider_id}.enabled' must be a boolean")

    api_key = data.get('api_key')
    if api_key is None and data.get('api_key_env'):
        api_key = os.environ.get(str(data['api_key_env']))

    def _price(key: str) -> Optional[Decimal]:
        if key not in data:
            return None
        return _decimal(data[key], f"providers.{provider_id}.{key}")

    return ProviderConfig(
        provider_id=provider_id,
        enabled=enabled,
        api_key=str(api_key) if api_key else None,
        model=str(data.get('model', DEFAULT_MODELS[provider_id])),
        base_url=data.get('base_url', DEFAULT_BASE_URLS.get(provider_id)),
        input_cost_per_mtok=_price('input_cost_per_mtok'),
        output_cost_per_mtok=_price('output_cost_per_mtok'),
    )


def _parse_budget(data: Dict[str, Any]) -> BudgetConfig:
    """Parse the budget section. Amounts are dollars in YAML, minor units in memory."""
    allowed = {'daily', 'monthly', 'estimated_cost_per_analysis', 'alert_thresholds'}
    _check_keys(data, allowed, 'budget')

    kwargs: Dict[str, Any] = {}
    for key in ('daily', 'monthly', 'estimated_cost_per_analysis'):
        if key in data:
            amount = _decimal(data[key], f"budget.{key}")
            if amount < 0:
                raise ValueError(f"'budget.{key}' must be >= 0")
            kwargs[key] = usd_to_minor_units(amount)

    if 'alert_thresholds' in data:
        thresholds = data['alert_thresholds']
        if not isinstance(thresholds, list):
            raise ValueError("'budget.alert_thresholds' must be a list")
        kwargs['alert_thresholds'] = tuple(
            float(_number(t, "budget.alert_thresholds")) for t in thresholds
        )

    return BudgetConfig(**kwargs)
