"""
Analytics configuration - thresholds, windows and statistical cutoffs.
Defaults live here; a YAML file and environment variables can override them.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from analytics.models import RiskLevel, Timeframe

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""
    pass


@dataclass(frozen=True)
class RiskThresholds:
    """Upper bounds (exclusive) for the low/medium/high buckets; anything above is critical."""
    low: float
    medium: float
    high: float

    def __post_init__(self):
        if not (0 <= self.low < self.medium < self.high):
            raise ConfigError(
                f"Risk thresholds must be increasing and non-negative: "
                f"{self.low}, {self.medium}, {self.high}"
            )

    def classify(self, value: float) -> RiskLevel:
        """Map a value onto a risk bucket."""
        if value < self.low:
            return RiskLevel.LOW
        if value < self.medium:
            return RiskLevel.MEDIUM
        if value < self.high:
            return RiskLevel.HIGH
        return RiskLevel.CRITICAL


def _default_allocation_limits() -> Dict[RiskLevel, float]:
    return {
        RiskLevel.LOW: 0.40,
        RiskLevel.MEDIUM: 0.25,
        RiskLevel.HIGH: 0.15,
        RiskLevel.CRITICAL: 0.05,
    }


@dataclass
class AnalyticsConfig:
    """Configuration for the performance and risk engines."""
    min_correlation_sample_size: int = 3
    rolling_volatility_window: int = 30
    timeframes: List[Timeframe] = field(default_factory=lambda: list(Timeframe))
    annualization_days: int = 365
    significance_level: float = 0.05
    high_correlation_threshold: float = 0.7
    volatility_thresholds: RiskThresholds = field(
        default_factory=lambda: RiskThresholds(low=0.20, medium=0.50, high=1.00)
    )
    concentration_thresholds: RiskThresholds = field(
        default_factory=lambda: RiskThresholds(low=0.20, medium=0.40, high=0.60)
    )
    allocation_limits: Dict[RiskLevel, float] = field(default_factory=_default_allocation_limits)
    db_path: str = './data/analytics.db'

    def __post_init__(self):
        """Validate values and coerce plain strings into enums."""
        if self.min_correlation_sample_size < 2:
            raise ConfigError("min_correlation_sample_size must be >= 2")

        if self.rolling_volatility_window < 2:
            raise ConfigError("rolling_volatility_window must be >= 2")

        if self.annualization_days <= 0:
            raise ConfigError("annualization_days must be positive")

        if not (0 < self.significance_level < 1):
            raise ConfigError("significance_level must be in (0, 1)")

        if not (0 < self.high_correlation_threshold <= 1):
            raise ConfigError("high_correlation_threshold must be in (0, 1]")

        try:
            self.timeframes = [Timeframe(tf) for tf in self.timeframes]
            self.allocation_limits = {
                RiskLevel(level): float(limit) for level, limit in self.allocation_limits.items()
            }
        except ValueError as e:
            raise ConfigError(f"Invalid enumerated value: {e}")

        if not self.timeframes:
            raise ConfigError("At least one timeframe must be configured")

        missing = set(RiskLevel) - set(self.allocation_limits)
        if missing:
            raise ConfigError(f"allocation_limits missing levels: {sorted(m.value for m in missing)}")

        for level, limit in self.allocation_limits.items():
            if not (0 <= limit <= 1):
                raise ConfigError(f"allocation limit for {level.value} must be in [0, 1], got {limit}")


# Environment variable -> (field name, parser)
_ENV_OVERRIDES = {
    'MIN_CORRELATION_SAMPLE_SIZE': ('min_correlation_sample_size', int),
    'ROLLING_VOLATILITY_WINDOW': ('rolling_volatility_window', int),
    'ANNUALIZATION_DAYS': ('annualization_days', int),
    'SIGNIFICANCE_LEVEL': ('significance_level', float),
    'HIGH_CORRELATION_THRESHOLD': ('high_correlation_threshold', float),
    'ANALYTICS_TIMEFRAMES': ('timeframes', lambda raw: [tf.strip() for tf in raw.split(',') if tf.strip()]),
    'ANALYTICS_DB_PATH': ('db_path', str),
}


def _thresholds_from(raw: Any, name: str) -> RiskThresholds:
    if not isinstance(raw, dict):
        raise ConfigError(f"{name} must be a mapping with low/medium/high keys")
    try:
        return RiskThresholds(low=float(raw['low']), medium=float(raw['medium']), high=float(raw['high']))
    except KeyError as e:
        raise ConfigError(f"{name} missing key {e}")
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} thresholds must be numeric: {e}")


def load_config(config_path: Optional[str] = None) -> AnalyticsConfig:
    """
    Load analytics configuration from YAML (optional) plus environment overrides.

    Args:
        config_path: Path to YAML config file. Defaults to ANALYTICS_CONFIG_PATH
            or ./config/analytics.yml; a missing default file is not an error.

    Returns:
        Validated AnalyticsConfig

    Raises:
        ConfigError: If the file is unreadable or any value is invalid
    """
    explicit = config_path is not None or 'ANALYTICS_CONFIG_PATH' in os.environ
    if config_path is None:
        config_path = os.getenv('ANALYTICS_CONFIG_PATH', './config/analytics.yml')

    values: Dict[str, Any] = {}
    config_file = Path(config_path)

    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load analytics config: {e}")

        if not isinstance(raw, dict):
            raise ConfigError("Analytics config must be a mapping")

        known = {f.name for f in fields(AnalyticsConfig)}
        unknown = set(raw) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

        values.update(raw)
        logger.debug(f"Loaded analytics config from {config_file}")
    elif explicit:
        raise ConfigError(f"Analytics config file not found: {config_path}")

    for env_name, (field_name, parser) in _ENV_OVERRIDES.items():
        raw_value = os.getenv(env_name)
        if raw_value is None or raw_value == '':
            continue
        try:
            values[field_name] = parser(raw_value)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {env_name}: {raw_value!r} ({e})")

    for name in ('volatility_thresholds', 'concentration_thresholds'):
        if name in values and not isinstance(values[name], RiskThresholds):
            values[name] = _thresholds_from(values[name], name)

    try:
        return AnalyticsConfig(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid analytics config: {e}")
