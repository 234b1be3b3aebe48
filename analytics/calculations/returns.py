"""
Returns calculation utilities.
Pure functions for simple period returns over valuation and price series.
"""

from decimal import Decimal
from typing import List, Optional, Sequence

import pandas as pd

from analytics.precision import HUNDRED, ZERO, decimal_context


def daily_returns(values: Sequence[Decimal]) -> List[Decimal]:
    """
    Calculate consecutive simple returns from a valuation series.

    Formula: r_t = (v_t - v_{t-1}) / v_{t-1}

    Pairs whose previous value is zero are skipped rather than producing
    an infinite return.

    Args:
        values: Valuations in chronological order

    Returns:
        List of returns as decimals (0.05 = 5%), at most len(values) - 1 long

    Example:
        [100, 110, 0, 50] -> [0.1, -1]   (0 -> 50 is skipped)
    """
    returns = []
    with decimal_context():
        for prev, curr in zip(values, values[1:]):
            if prev == 0:
                continue
            returns.append((curr - prev) / prev)
    return returns


def total_return(start_value: Decimal, end_value: Decimal) -> Decimal:
    """Absolute change between the first and last valuation."""
    with decimal_context():
        return end_value - start_value


def return_pct(start_value: Decimal, end_value: Decimal) -> Optional[Decimal]:
    """
    Percentage change from start to end.

    Returns:
        Percentage (5 = 5%), or None when start_value is zero
    """
    if start_value == 0:
        return None
    with decimal_context():
        return (end_value - start_value) / start_value * HUNDRED


def percent_change(previous: Decimal, current: Decimal) -> Decimal:
    """Percentage change used for price rankings; 0 when the previous price is zero."""
    if previous == 0:
        return ZERO
    with decimal_context():
        return (current - previous) / previous * HUNDRED


def price_returns(prices: pd.Series) -> pd.Series:
    """
    Convert a timestamp-indexed price series into simple returns.

    Each return is stamped with the timestamp of the later observation so
    that return series from different assets align on the same clock.
    Observations following a zero price are dropped.

    Args:
        prices: Prices indexed by timestamp, ascending

    Returns:
        Float series of returns (length <= len(prices) - 1)
    """
    if len(prices) < 2:
        return pd.Series(dtype='float64')

    values = prices.astype('float64').sort_index()
    previous = values.shift(1)
    valid = previous.notna() & (previous != 0)

    returns = (values[valid] - previous[valid]) / previous[valid]
    return returns.astype('float64')
