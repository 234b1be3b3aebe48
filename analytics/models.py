"""
Domain types produced and consumed by the analytics engines.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional


class Timeframe(str, Enum):
    """Enumeration of supported analysis windows."""
    DAY = '24h'
    WEEK = '7d'
    MONTH = '30d'
    QUARTER = '90d'
    YEAR = '1y'
    ALL = 'all'

    @property
    def window(self) -> Optional[timedelta]:
        """Look-back length, or None for the full history."""
        return _TIMEFRAME_WINDOWS[self]


_TIMEFRAME_WINDOWS = {
    Timeframe.DAY: timedelta(hours=24),
    Timeframe.WEEK: timedelta(days=7),
    Timeframe.MONTH: timedelta(days=30),
    Timeframe.QUARTER: timedelta(days=90),
    Timeframe.YEAR: timedelta(days=365),
    Timeframe.ALL: None,
}


class RiskLevel(str, Enum):
    """Enumeration of risk buckets, ordered from safest to riskiest."""
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class CorrelationStrength(str, Enum):
    """What a correlation coefficient implies for diversification."""
    DIVERSIFIED = 'diversified'
    MODERATE = 'moderate'
    CONCENTRATED = 'concentrated'
    EXTREME = 'extreme'


class TransactionType(str, Enum):
    """Enumeration of transaction history entry types."""
    BUY = 'buy'
    SELL = 'sell'
    TRANSFER = 'transfer'


@dataclass(frozen=True)
class ValuationPoint:
    """Portfolio (or asset) value at a point in time."""
    timestamp: datetime
    value: Decimal


@dataclass(frozen=True)
class Transaction:
    """One entry of a wallet's transaction history."""
    asset_id: str
    type: TransactionType
    quantity: Decimal
    price_usd: Decimal
    timestamp: datetime
    wallet_id: Optional[str] = None


@dataclass(frozen=True)
class PerformanceMetric:
    """Return and risk statistics for one scope over one timeframe."""
    scope: str
    timeframe: Timeframe
    total_return: Optional[Decimal]
    return_pct: Optional[Decimal]
    volatility: Optional[Decimal]
    sharpe_ratio: Optional[Decimal]
    max_drawdown: Optional[Decimal]
    win_rate: Optional[Decimal]
    computed_at: datetime
    sample_size: int = 0
    realized_pnl: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None
    trades_count: Optional[int] = None


@dataclass(frozen=True)
class PriceChange:
    """Price move of a single token over a timeframe."""
    token_id: str
    previous_price: Decimal
    current_price: Decimal
    change_usd: Decimal
    change_pct: Decimal


@dataclass(frozen=True)
class CorrelationPair:
    """Pearson correlation between two tokens' return series."""
    token_a: str
    token_b: str
    coefficient: Optional[float]
    p_value: Optional[float]
    sample_size: int
    significant: bool
    computed_at: datetime
    strength: Optional[CorrelationStrength] = None


@dataclass(frozen=True)
class VolatilityProfile:
    """Volatility decomposition for a token or portfolio."""
    scope: str
    upside_deviation: Optional[float]
    downside_deviation: Optional[float]
    rolling_volatility: Optional[float]
    risk_category: Optional[RiskLevel]
    volatility: Optional[float] = None
    sample_size: int = 0


@dataclass(frozen=True)
class ExposureAssessment:
    """Concentration of portfolio value in a single protocol."""
    protocol_id: str
    concentration_pct: float
    risk_level: RiskLevel
    recommended_allocation_limit: float
    exposure_usd: float = 0.0


@dataclass(frozen=True)
class DiversificationScore:
    """Aggregate 0-100 measure of how uncorrelated and evenly spread a portfolio is."""
    portfolio_id: str
    score: float
    computed_at: datetime
    average_correlation: Optional[float] = None
    high_correlation_pairs: int = 0
    evenness: Optional[float] = None
    asset_count: int = 0
