"""
Drawdown and recovery calculation utilities.
Pure functions for maximum drawdown analysis over valuation series.

Drawdowns are reported as positive fractions of the running peak
(0.25 = a 25% decline), so a series that never falls has drawdown 0.
"""

from decimal import Decimal
from typing import List, Sequence

from analytics.precision import ZERO, decimal_context


def drawdown_series(values: Sequence[Decimal]) -> List[Decimal]:
    """
    Drawdown at each point relative to the running peak.

    Formula: dd_t = (peak_t - v_t) / peak_t,  peak_t = max(v_0..v_t)

    Points where the running peak is still zero carry drawdown 0.

    Args:
        values: Non-negative valuations in chronological order

    Returns:
        List of drawdowns in [0, 1], same length as values
    """
    drawdowns = []
    peak = None

    with decimal_context():
        for value in values:
            if peak is None or value > peak:
                peak = value
            if peak <= 0:
                drawdowns.append(ZERO)
            else:
                drawdowns.append((peak - value) / peak)

    return drawdowns


def max_drawdown(values: Sequence[Decimal]) -> Decimal:
    """
    Largest peak-to-trough decline as a fraction of the peak.

    Returns:
        Maximum drawdown in [0, 1]; 0 for empty or non-decreasing series
    """
    drawdowns = drawdown_series(values)
    if not drawdowns:
        return ZERO
    return max(drawdowns)

