"""
Correlation calculation utilities.
Pure functions for aligning return series, Pearson correlation and its
significance under Student's t distribution.
"""

import math
from typing import Any, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from analytics.guardrails import InputValidationError, validate_finite_returns
from analytics.models import CorrelationStrength


def to_return_series(data: Any, name: str = 'returns') -> pd.Series:
    """
    Coerce supported return-series shapes into a timestamp-indexed float Series.

    Accepts a pandas Series, a mapping of timestamp -> value, or a sequence of
    (timestamp, value) pairs.

    Raises:
        InputValidationError: If the shape is unsupported, values are non-finite
            or timestamps repeat
    """
    if isinstance(data, pd.Series):
        series = data
    elif isinstance(data, dict):
        series = pd.Series(data)
    else:
        try:
            pairs = list(data)
            index = [ts for ts, _ in pairs]
            values = [v for _, v in pairs]
        except (TypeError, ValueError):
            raise InputValidationError(
                f"{name} must be a Series, mapping or sequence of (timestamp, value) pairs"
            )
        series = pd.Series(values, index=index, dtype='object')

    values = validate_finite_returns(series.tolist(), name)
    series = pd.Series(values, index=series.index, dtype='float64')

    if series.index.has_duplicates:
        raise InputValidationError(f"{name} has duplicate timestamps")

    return series.sort_index()


def align_series(a: pd.Series, b: pd.Series) -> Tuple[np.ndarray, np.ndarray]:
    """
    Inner-join two series on their timestamps.

    Returns:
        Tuple of equally long float arrays, chronologically ordered
    """
    joined = pd.concat([a.rename('a'), b.rename('b')], axis=1, join='inner').sort_index()
    return joined['a'].to_numpy(dtype='float64'), joined['b'].to_numpy(dtype='float64')


def pearson(x: np.ndarray, y: np.ndarray) -> Optional[float]:
    """
    Pearson correlation coefficient.

    Formula: r = Σ(x-x̄)(y-ȳ) / sqrt(Σ(x-x̄)² · Σ(y-ȳ)²)

    Returns:
        r clipped to [-1, 1], or None when either series is constant or
        fewer than 2 observations are available
    """
    if len(x) != len(y):
        raise InputValidationError("Series must have same length")

    if len(x) < 2:
        return None

    dx = x - x.mean()
    dy = y - y.mean()

    sum_sq_x = float(np.sum(dx * dx))
    sum_sq_y = float(np.sum(dy * dy))

    if sum_sq_x == 0.0 or sum_sq_y == 0.0:
        return None

    r = float(np.sum(dx * dy)) / math.sqrt(sum_sq_x * sum_sq_y)
    return max(-1.0, min(1.0, r))


def correlation_p_value(r: float, n: int) -> Optional[float]:
    """
    Two-sided p-value for H0: no correlation.

    Formula: t = r·sqrt((n-2)/(1-r²)),  df = n - 2

    Returns:
        p-value in [0, 1]; 0 for a perfect correlation; None when n < 3
    """
    df = n - 2
    if df < 1:
        return None

    if abs(r) >= 1.0:
        return 0.0

    t_stat = r * math.sqrt(df / (1.0 - r * r))
    return float(2.0 * stats.t.sf(abs(t_stat), df))


def classify_strength(r: Optional[float]) -> Optional[CorrelationStrength]:
    """Diversification implication of |r| (cut points 0.3 / 0.6 / 0.85)."""
    if r is None:
        return None

    magnitude = abs(r)
    if magnitude < 0.3:
        return CorrelationStrength.DIVERSIFIED
    if magnitude < 0.6:
        return CorrelationStrength.MODERATE
    if magnitude < 0.85:
        return CorrelationStrength.CONCENTRATED
    return CorrelationStrength.EXTREME
