"""
Tests for input validation and output sanity checks.
"""

import numpy as np
import pytest
from decimal import Decimal

from analytics.guardrails import (
    InputValidationError,
    require_positive,
    to_decimal,
    validate_finite_returns,
    validate_metric_outputs,
)


class TestToDecimal:
    """Tests for numeric coercion."""

    def test_string_exact(self):
        """Strings convert without binary rounding."""
        assert to_decimal('0.1', 'price') == Decimal('0.1')

    def test_float_via_str(self):
        """Floats go through their shortest repr."""
        assert to_decimal(0.1, 'price') == Decimal('0.1')
        assert to_decimal(np.float64(2.5), 'price') == Decimal('2.5')

    def test_int_and_decimal(self):
        """Ints and Decimals pass through."""
        assert to_decimal(3, 'quantity') == Decimal('3')
        assert to_decimal(Decimal('1.50'), 'quantity') == Decimal('1.50')

    def test_negative_allowed(self):
        """P&L may be negative."""
        assert to_decimal('-12.5', 'pnl', allow_negative=True) == Decimal('-12.5')

    @pytest.mark.parametrize('value', [
        None, True, 'abc', '', float('nan'), float('inf'), 'NaN', 'Infinity', -1, [1],
    ])
    def test_rejected(self, value):
        """Missing, non-numeric, non-finite and negative values."""
        with pytest.raises(InputValidationError):
            to_decimal(value, 'price')

    def test_message_names_field(self):
        """Errors mention the offending field."""
        with pytest.raises(InputValidationError, match="price_usd"):
            to_decimal(-5, 'price_usd')

    def test_require_positive(self):
        """Zero is not positive."""
        assert require_positive(Decimal('1'), 'quantity') == Decimal('1')
        with pytest.raises(InputValidationError):
            require_positive(Decimal('0'), 'quantity')


class TestValidateFiniteReturns:
    """Tests for return series validation."""

    def test_valid(self):
        """Finite numbers become a float array."""
        arr = validate_finite_returns([0.1, -0.05, Decimal('0.02')])

        assert arr.dtype == np.float64
        assert list(arr) == pytest.approx([0.1, -0.05, 0.02])

    def test_empty(self):
        """An empty series is valid."""
        assert len(validate_finite_returns([])) == 0

    def test_nan(self):
        """NaN is rejected."""
        with pytest.raises(InputValidationError, match="NaN"):
            validate_finite_returns([0.1, float('nan')])

    def test_inf(self):
        """Infinity is rejected."""
        with pytest.raises(InputValidationError, match="Infinite"):
            validate_finite_returns([float('-inf')])

    def test_non_numeric(self):
        """Strings that are not numbers are rejected."""
        with pytest.raises(InputValidationError, match="non-numeric"):
            validate_finite_returns([0.1, 'x'])


class TestValidateMetricOutputs:
    """Tests for pre-persistence checks."""

    def test_clean(self):
        """Finite values and None pass."""
        metrics = {
            'volatility': Decimal('0.5'),
            'sharpe_ratio': None,
            'win_rate': Decimal('0.6'),
            'sample_size': 10,
            'scope': 'p1',
        }

        assert validate_metric_outputs(metrics, bounded=('win_rate',)) == []

    def test_non_finite(self):
        """NaN and infinity are reported."""
        problems = validate_metric_outputs({'volatility': float('nan'), 'sharpe_ratio': Decimal('Infinity')})

        assert len(problems) == 2

    def test_out_of_bounds(self):
        """Fractions outside [0, 1] are reported."""
        problems = validate_metric_outputs(
            {'max_drawdown': Decimal('1.2'), 'win_rate': -0.1, 'volatility': 3.0},
            bounded=('max_drawdown', 'win_rate'),
        )

        assert len(problems) == 2
        assert any('max_drawdown' in p for p in problems)
