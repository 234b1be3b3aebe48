"""
Tests for volatility calculation utilities.
Synthetic returns where the population standard deviation is known.
"""

import math

import pytest
from decimal import Decimal

from analytics.calculations.volatility import (
    VolatilityError,
    annualized_volatility_decimal,
    mean_decimal,
    population_std_decimal,
    realized_vol,
    semi_deviation,
)
from analytics.guardrails import InputValidationError


class TestDecimalVolatility:
    """Tests for the Decimal path used by the performance engine."""

    def test_population_std(self):
        """std of [0.01, -0.01] with ddof=0 is 0.01."""
        std = population_std_decimal([Decimal('0.01'), Decimal('-0.01')])

        assert std == Decimal('0.01')

    def test_annualized(self):
        """Scaled by sqrt(365)."""
        vol = annualized_volatility_decimal([Decimal('0.01'), Decimal('-0.01')], annualize=365)

        assert float(vol) == pytest.approx(0.01 * math.sqrt(365), rel=1e-12)

    def test_constant_returns_zero_vol(self):
        """No dispersion, no volatility."""
        vol = annualized_volatility_decimal([Decimal('0.02')] * 5)

        assert vol == 0

    def test_empty(self):
        """No returns, no statistics."""
        assert mean_decimal([]) is None
        assert population_std_decimal([]) is None
        assert annualized_volatility_decimal([]) is None


class TestRealizedVol:
    """Tests for realized volatility over the most recent window."""

    def test_known_std(self):
        """Alternating +/-1% has population std 1%."""
        returns = [0.01, -0.01] * 10

        vol = realized_vol(returns, window=20, annualize=365)

        assert vol == pytest.approx(0.01 * math.sqrt(365), rel=1e-9)

    def test_uses_last_window(self):
        """Only the most recent returns are used."""
        returns = [0.5, -0.5] + [0.01, -0.01] * 5

        vol = realized_vol(returns, window=10, annualize=1)

        assert vol == pytest.approx(0.01, rel=1e-9)

    def test_window_too_small(self):
        """A single return has no standard deviation."""
        with pytest.raises(VolatilityError, match="Window must be >= 2"):
            realized_vol([0.01, 0.02], window=1)

    def test_insufficient_data(self):
        """Fewer returns than the window."""
        with pytest.raises(VolatilityError, match="Insufficient data"):
            realized_vol([0.01, 0.02], window=5)

    def test_nan_rejected(self):
        """NaN is malformed input."""
        with pytest.raises(InputValidationError, match="NaN"):
            realized_vol([0.01, float('nan'), 0.02], window=2)

    def test_inf_rejected(self):
        """Infinity is malformed input."""
        with pytest.raises(InputValidationError, match="Infinite"):
            realized_vol([0.01, float('inf'), 0.02], window=2)


class TestSemiDeviation:
    """Tests for upside/downside deviation."""

    def test_split_around_mean(self):
        """Mean is 0; upside [0.02, 0.04], downside [-0.01, -0.05]."""
        returns = [0.02, 0.04, -0.01, -0.05]

        upside = semi_deviation(returns, 'upside', annualize=1)
        downside = semi_deviation(returns, 'downside', annualize=1)

        assert upside == pytest.approx(0.01)
        assert downside == pytest.approx(0.02)

    def test_annualized(self):
        """Both sides scale by sqrt(annualize)."""
        returns = [0.02, 0.04, -0.01, -0.05]

        assert semi_deviation(returns, 'upside', annualize=365) == pytest.approx(0.01 * math.sqrt(365))

    def test_empty_side(self):
        """Constant returns have nothing above or below the mean."""
        assert semi_deviation([0.01, 0.01], 'upside') is None
        assert semi_deviation([0.01, 0.01], 'downside') is None

    def test_invalid_side(self):
        """Only upside/downside are meaningful."""
        with pytest.raises(ValueError):
            semi_deviation([0.01, 0.02], 'sideways')
