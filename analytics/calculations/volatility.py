"""
Volatility calculation utilities.
Pure functions for realized and semi-deviation volatility.

Standard deviations are population (ddof=0) everywhere, in both the Decimal
path used for portfolio valuations and the float path used for token returns.
"""

import math
from decimal import Decimal
from typing import Optional, Sequence

import numpy as np

from analytics.guardrails import validate_finite_returns
from analytics.precision import decimal_context, decimal_sqrt


class VolatilityError(Exception):
    """Raised when volatility calculation fails."""
    pass


def mean_decimal(values: Sequence[Decimal]) -> Optional[Decimal]:
    """Arithmetic mean of Decimals, None for an empty sequence."""
    if not values:
        return None
    with decimal_context():
        return sum(values, Decimal(0)) / len(values)


def population_std_decimal(values: Sequence[Decimal]) -> Optional[Decimal]:
    """
    Population standard deviation of Decimals.

    Formula: σ = sqrt(Σ(x - x̄)² / n)

    Returns:
        Standard deviation, or None for an empty sequence
    """
    mean = mean_decimal(values)
    if mean is None:
        return None
    with decimal_context():
        variance = sum(((v - mean) * (v - mean) for v in values), Decimal(0)) / len(values)
    return decimal_sqrt(variance)


def annualized_volatility_decimal(returns: Sequence[Decimal], annualize: int = 365) -> Optional[Decimal]:
    """
    Annualized volatility of Decimal returns.

    Formula: σ_annual = σ_daily × √annualize

    Returns:
        Volatility as decimal (0.25 = 25%), or None when there are no returns
    """
    std_dev = population_std_decimal(returns)
    if std_dev is None:
        return None
    with decimal_context():
        return std_dev * decimal_sqrt(Decimal(annualize))


def realized_vol(
    returns: Sequence[float],
    window: int,
    annualize: int = 365
) -> float:
    """
    Calculate realized volatility from the most recent returns.

    Formula: σ = std(returns[-window:]) × √annualize

    Args:
        returns: Returns in chronological order
        window: Number of returns to use (from end of series)
        annualize: Annualization factor (365 calendar days for crypto)

    Returns:
        Annualized volatility as decimal (0.25 = 25%)

    Raises:
        VolatilityError: If insufficient data
        InputValidationError: If returns contain NaN or infinite values
    """
    if window < 2:
        raise VolatilityError("Window must be >= 2 for standard deviation")

    ret = validate_finite_returns(returns)

    if len(ret) < window:
        raise VolatilityError(f"Insufficient data: need {window} returns, have {len(ret)}")

    recent_returns = ret[-window:]
    std_dev = np.std(recent_returns, ddof=0)

    return float(std_dev * math.sqrt(annualize))


def semi_deviation(
    returns: Sequence[float],
    side: str,
    annualize: int = 365
) -> Optional[float]:
    """
    Dispersion of returns on one side of the mean.

    upside:   std of returns strictly above the mean
    downside: std of returns strictly below the mean

    Args:
        returns: Returns in chronological order
        side: 'upside' or 'downside'
        annualize: Annualization factor

    Returns:
        Annualized semi-deviation, or None when no return lies on that side
    """
    if side not in ('upside', 'downside'):
        raise ValueError(f"side must be 'upside' or 'downside', got {side!r}")

    ret = validate_finite_returns(returns)
    if len(ret) == 0:
        return None

    mean = ret.mean()
    subset = ret[ret > mean] if side == 'upside' else ret[ret < mean]

    if len(subset) == 0:
        return None

    return float(np.std(subset, ddof=0) * math.sqrt(annualize))
