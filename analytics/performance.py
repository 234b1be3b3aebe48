"""
Performance metrics engine - composes return, volatility, drawdown, Sharpe
and win-rate calculations into a PerformanceMetric per (scope, timeframe).

Pure: identical input yields identical output apart from computed_at. The
timeframe window is anchored on ``as_of`` (defaults to the latest
observation), never on the wall clock.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from analytics.calculations.cost_basis import Disposal
from analytics.calculations.drawdown import max_drawdown
from analytics.calculations.returns import daily_returns, percent_change, return_pct, total_return
from analytics.calculations.volatility import annualized_volatility_decimal, mean_decimal
from analytics.config import AnalyticsConfig
from analytics.guardrails import InputValidationError, to_decimal
from analytics.models import PerformanceMetric, PriceChange, Timeframe, ValuationPoint
from analytics.precision import ZERO, decimal_context

logger = logging.getLogger(__name__)

SeriesInput = Iterable[Union[ValuationPoint, Sequence[Any]]]


def as_timeframe(timeframe: Union[Timeframe, str]) -> Timeframe:
    """Coerce a timeframe label into the closed Timeframe enum."""
    try:
        return Timeframe(timeframe)
    except ValueError:
        valid = ', '.join(tf.value for tf in Timeframe)
        raise InputValidationError(f"Unknown timeframe {timeframe!r} (expected one of: {valid})")


def to_valuation_points(series: SeriesInput, field: str = 'value') -> List[ValuationPoint]:
    """
    Normalize (timestamp, value) pairs or ValuationPoints into validated points.

    Returns:
        Points sorted by timestamp (stable for equal timestamps)

    Raises:
        InputValidationError: If a value is negative, non-finite or malformed
    """
    points = []
    for item in series:
        if isinstance(item, ValuationPoint):
            timestamp, raw_value = item.timestamp, item.value
        else:
            try:
                timestamp, raw_value = item
            except (TypeError, ValueError):
                raise InputValidationError(f"Expected (timestamp, {field}) pair, got {item!r}")

        if not isinstance(timestamp, datetime):
            raise InputValidationError(f"timestamp must be datetime, got {type(timestamp).__name__}")

        points.append(ValuationPoint(timestamp=timestamp, value=to_decimal(raw_value, field)))

    return sorted(points, key=lambda p: p.timestamp)


def in_window(timestamp: datetime, timeframe: Timeframe, as_of: datetime) -> bool:
    """True when as_of - window <= timestamp <= as_of (ALL has no lower bound)."""
    if timestamp > as_of:
        return False
    window = timeframe.window
    return window is None or timestamp >= as_of - window


def filter_window(
    points: Sequence[ValuationPoint],
    timeframe: Timeframe,
    as_of: Optional[datetime] = None
) -> List[ValuationPoint]:
    """
    Keep points inside [as_of - window, as_of].

    Args:
        points: Chronologically ordered points
        timeframe: Window to keep (ALL keeps everything up to as_of)
        as_of: Window end; defaults to the latest point

    Returns:
        Points inside the window, still ordered
    """
    if not points:
        return []

    if as_of is None:
        as_of = points[-1].timestamp

    return [p for p in points if in_window(p.timestamp, timeframe, as_of)]


def compute_metrics(
    valuation_series: SeriesInput,
    timeframe: Union[Timeframe, str],
    scope: str = 'portfolio',
    as_of: Optional[datetime] = None,
    *,
    realized_pnl: Optional[Any] = None,
    unrealized_pnl: Optional[Any] = None,
    trades_count: Optional[int] = None,
    computed_at: Optional[datetime] = None,
    config: Optional[AnalyticsConfig] = None
) -> PerformanceMetric:
    """
    Compute return and risk statistics for one scope over one timeframe.

    Args:
        valuation_series: (timestamp, total_usd_value) observations
        timeframe: One of 24h, 7d, 30d, 90d, 1y, all
        scope: Portfolio/wallet identifier the metric belongs to
        as_of: End of the window (defaults to the latest observation)
        realized_pnl: Realized P&L for the window, typically from the ledger
        unrealized_pnl: Mark-to-market P&L of open lots
        trades_count: Buy/sell transactions inside the window
        computed_at: Stamp for the result (defaults to now, UTC)
        config: Engine configuration (annualization day count)

    Returns:
        PerformanceMetric; statistics that cannot be computed are None

    Raises:
        InputValidationError: If any valuation or pass-through value is malformed
    """
    config = config or AnalyticsConfig()
    timeframe = as_timeframe(timeframe)
    computed_at = computed_at or datetime.now(timezone.utc)

    points = filter_window(to_valuation_points(valuation_series), timeframe, as_of)
    values = [p.value for p in points]

    extras = {
        'realized_pnl': to_decimal(realized_pnl, 'realized_pnl', allow_negative=True)
        if realized_pnl is not None else None,
        'unrealized_pnl': to_decimal(unrealized_pnl, 'unrealized_pnl', allow_negative=True)
        if unrealized_pnl is not None else None,
        'trades_count': trades_count,
    }

    if len(values) < 2:
        logger.debug(f"{scope}/{timeframe.value}: {len(values)} points in window, metrics left empty")
        return PerformanceMetric(
            scope=scope,
            timeframe=timeframe,
            total_return=None,
            return_pct=None,
            volatility=None,
            sharpe_ratio=None,
            max_drawdown=None,
            win_rate=None,
            computed_at=computed_at,
            sample_size=len(values),
            **extras
        )

    returns = daily_returns(values)
    volatility = annualized_volatility_decimal(returns, annualize=config.annualization_days)

    return PerformanceMetric(
        scope=scope,
        timeframe=timeframe,
        total_return=total_return(values[0], values[-1]),
        return_pct=return_pct(values[0], values[-1]),
        volatility=volatility,
        sharpe_ratio=_sharpe_ratio(returns, volatility),
        max_drawdown=max_drawdown(values),
        win_rate=_win_rate(returns),
        computed_at=computed_at,
        sample_size=len(values),
        **extras
    )


def compute_all_timeframes(
    valuation_series: SeriesInput,
    scope: str = 'portfolio',
    timeframes: Optional[Iterable[Union[Timeframe, str]]] = None,
    as_of: Optional[datetime] = None,
    computed_at: Optional[datetime] = None,
    config: Optional[AnalyticsConfig] = None
) -> List[PerformanceMetric]:
    """Compute metrics for every configured timeframe with a shared computed_at stamp."""
    config = config or AnalyticsConfig()
    computed_at = computed_at or datetime.now(timezone.utc)
    points = to_valuation_points(valuation_series)

    return [
        compute_metrics(points, tf, scope=scope, as_of=as_of, computed_at=computed_at, config=config)
        for tf in (timeframes if timeframes is not None else config.timeframes)
    ]


def _sharpe_ratio(returns: List[Decimal], volatility: Optional[Decimal]) -> Optional[Decimal]:
    """Mean daily return over annualized volatility; None when volatility is 0."""
    if volatility is None or volatility == 0:
        return None
    with decimal_context():
        return mean_decimal(returns) / volatility


def _win_rate(returns: List[Decimal]) -> Optional[Decimal]:
    """Fraction of periods with a positive return."""
    if not returns:
        return None
    wins = sum(1 for r in returns if r > 0)
    with decimal_context():
        return Decimal(wins) / Decimal(len(returns))


def realized_pnl_in_window(
    disposals: Iterable[Disposal],
    timeframe: Union[Timeframe, str],
    as_of: datetime
) -> Decimal:
    """
    Attribute ledger disposals to a timeframe.

    Returns:
        Sum of realized P&L for disposals inside [as_of - window, as_of]
    """
    timeframe = as_timeframe(timeframe)

    with decimal_context():
        return sum(
            (d.realized_pnl for d in disposals if in_window(d.sold_at, timeframe, as_of)),
            ZERO
        )


def rank_price_changes(
    tokens: Mapping[str, SeriesInput],
    timeframe: Union[Timeframe, str],
    as_of: Optional[datetime] = None
) -> List[PriceChange]:
    """
    Rank tokens by percentage price change over a timeframe.

    The previous price is the first observation inside the window and the
    current price the last one. Tokens without observations in the window
    are left out.

    Args:
        tokens: Mapping of token id to (timestamp, price_usd) observations
        timeframe: Window to measure the change over
        as_of: Window end; defaults to the latest observation across all tokens

    Returns:
        PriceChange list sorted by change_pct descending, ties by token id
    """
    timeframe = as_timeframe(timeframe)
    series_by_token = {
        token_id: to_valuation_points(series, field='price_usd')
        for token_id, series in tokens.items()
    }

    if as_of is None:
        latest = [points[-1].timestamp for points in series_by_token.values() if points]
        if not latest:
            return []
        as_of = max(latest)

    changes = []
    for token_id, points in series_by_token.items():
        window = filter_window(points, timeframe, as_of)
        if not window:
            logger.debug(f"No {timeframe.value} price data for {token_id}, skipping")
            continue

        previous_price = window[0].value
        current_price = window[-1].value

        with decimal_context():
            change_usd = current_price - previous_price

        changes.append(PriceChange(
            token_id=token_id,
            previous_price=previous_price,
            current_price=current_price,
            change_usd=change_usd,
            change_pct=percent_change(previous_price, current_price),
        ))

    return sorted(changes, key=lambda c: (-c.change_pct, c.token_id))
