"""
Guardrails for the analytics engine - input validation and output sanity checks.
Every engine entry point funnels raw numbers through here before computing.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List

import numpy as np


class InputValidationError(ValueError):
    """Raised when numeric input is non-finite, negative or malformed."""
    pass


def to_decimal(value: Any, field: str, *, allow_negative: bool = False) -> Decimal:
    """
    Convert a quantity/price/valuation to Decimal.

    Strings and ints convert exactly; floats go through ``str`` so that
    ``0.1`` becomes ``Decimal('0.1')`` rather than its binary expansion.

    Args:
        value: Raw numeric value (str, int, float or Decimal)
        field: Field name used in error messages
        allow_negative: Accept values below zero (P&L, returns)

    Returns:
        Finite Decimal

    Raises:
        InputValidationError: If value is missing, non-numeric, non-finite or negative
    """
    if value is None or isinstance(value, bool):
        raise InputValidationError(f"{field} must be numeric, got {value!r}")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise InputValidationError(f"{field} is not a valid decimal: {value!r}")
    elif isinstance(value, (float, np.floating)):
        result = Decimal(str(float(value)))
    else:
        raise InputValidationError(f"{field} must be numeric, got {type(value).__name__}")

    if not result.is_finite():
        raise InputValidationError(f"{field} must be finite, got {value!r}")

    if not allow_negative and result < 0:
        raise InputValidationError(f"{field} must be non-negative, got {value!r}")

    return result


def require_positive(value: Decimal, field: str) -> Decimal:
    """Reject zero for quantities that must be strictly positive."""
    if value <= 0:
        raise InputValidationError(f"{field} must be positive, got {value}")
    return value


def validate_finite_returns(values: Iterable[Any], field: str = 'returns') -> np.ndarray:
    """
    Coerce a return series to a float array, rejecting NaN and infinities.

    Args:
        values: Sequence of numeric returns
        field: Name used in error messages

    Returns:
        Numpy float64 array

    Raises:
        InputValidationError: If any value is non-numeric or non-finite
    """
    try:
        arr = np.asarray([float(v) for v in values], dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InputValidationError(f"{field} contains non-numeric values: {e}")

    if np.any(np.isnan(arr)):
        raise InputValidationError(f"NaN values not allowed in {field}")

    if np.any(np.isinf(arr)):
        raise InputValidationError(f"Infinite values not allowed in {field}")

    return arr


def validate_metric_outputs(metrics: Dict[str, Any], bounded: Iterable[str] = ()) -> List[str]:
    """
    Sanity-check a computed metrics dictionary before it is persisted.

    None is acceptable (insufficient data). Floats and Decimals must be finite,
    and fields listed in ``bounded`` must fall in [0, 1].

    Args:
        metrics: Flat mapping of metric name to value
        bounded: Metric names that are fractions

    Returns:
        List of problems found (empty when clean)
    """
    problems = []
    bounded = set(bounded)

    for name, value in metrics.items():
        if value is None or isinstance(value, bool):
            continue

        if isinstance(value, Decimal):
            if not value.is_finite():
                problems.append(f"{name} is not finite: {value}")
                continue
            numeric = float(value)
        elif isinstance(value, (int, float, np.floating)):
            numeric = float(value)
            if not math.isfinite(numeric):
                problems.append(f"{name} is not finite: {value}")
                continue
        else:
            continue

        if name in bounded and not (0.0 <= numeric <= 1.0):
            problems.append(f"{name} out of bounds [0, 1]: {value}")

    return problems
