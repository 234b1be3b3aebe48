"""
Concentration calculation utilities.
Pure functions for how portfolio value is spread across protocols or assets.
"""

import math
from typing import Any, Dict, Mapping, Optional

from analytics.guardrails import InputValidationError


def _validated_values(value_by_key: Mapping[str, Any]) -> Dict[str, float]:
    values = {}
    for key, raw in value_by_key.items():
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise InputValidationError(f"Value for {key!r} must be numeric, got {raw!r}")
        if not math.isfinite(value):
            raise InputValidationError(f"Value for {key!r} must be finite, got {raw!r}")
        if value < 0:
            raise InputValidationError(f"Value for {key!r} must be non-negative, got {raw!r}")
        values[key] = value
    return values


def concentration_pct(part: Any, total: Any) -> float:
    """
    Share of the total held in one position.

    Returns:
        Fraction in [0, 1] (0.45 = 45%); 0 when total is zero

    Raises:
        InputValidationError: If a value is invalid or part exceeds total
    """
    values = _validated_values({'part': part, 'total': total})
    if values['part'] > values['total']:
        raise InputValidationError(
            f"part {values['part']} exceeds total {values['total']}"
        )
    if values['total'] == 0:
        return 0.0
    return values['part'] / values['total']


def concentration_shares(value_by_key: Mapping[str, Any]) -> Dict[str, float]:
    """
    Normalize position values into shares of the total.

    Returns:
        Mapping of key to share (sums to 1), empty when total value is zero
    """
    values = _validated_values(value_by_key)
    total = sum(values.values())
    if total == 0:
        return {}
    return {key: value / total for key, value in values.items()}


def herfindahl_index(value_by_key: Mapping[str, Any]) -> Optional[float]:
    """
    Calculate Herfindahl-Hirschman Index (HHI).

    HHI = Σ(share_i²) where share_i is the portfolio share of position i

    Returns:
        HHI as decimal (1/n = evenly spread, 1 = single position), or None
        when there is no value at all
    """
    shares = concentration_shares(value_by_key)
    if not shares:
        return None
    return sum(share ** 2 for share in shares.values())


def distribution_evenness(value_by_key: Mapping[str, Any]) -> float:
    """
    Normalized evenness of a distribution.

    Formula: E = (1 - HHI) / (1 - 1/n), n = number of non-zero positions

    Returns:
        1.0 for a perfectly even spread, 0.0 for a single position or no value
    """
    shares = concentration_shares(value_by_key)
    held = [share for share in shares.values() if share > 0]
    n = len(held)

    if n <= 1:
        return 0.0

    hhi = sum(share ** 2 for share in held)
    evenness = (1.0 - hhi) / (1.0 - 1.0 / n)
    return max(0.0, min(1.0, evenness))


def concentration_interpretation(hhi: Optional[float]) -> str:
    """
    Provide interpretation of HHI value.

    Args:
        hhi: Herfindahl-Hirschman Index value

    Returns:
        String interpretation of concentration level
    """
    if hhi is None:
        return "No data"
    elif hhi < 0.15:
        return "Low concentration (diversified)"
    elif hhi < 0.25:
        return "Moderate concentration"
    else:
        return "High concentration"
