"""
Tests for core validators - pure validation of collaborator input rows.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from analytics.guardrails import InputValidationError
from ingestion.transforms.validators import (
    validate_position_row,
    validate_price_row,
    validate_snapshot_row,
    validate_transaction_row,
)


def _tx(**overrides):
    row = {
        'wallet_id': 'w1',
        'asset_id': 'ETH',
        'type': 'buy',
        'quantity': '1.5',
        'price_usd': '2000',
        'timestamp': '2024-01-01T00:00:00Z',
    }
    row.update(overrides)
    return row


class TestValidatePriceRow:
    """Tests for price snapshot rows."""

    def test_valid(self):
        """A well-formed row passes silently."""
        validate_price_row({'asset_id': 'ETH', 'timestamp': '2024-01-01T00:00:00+00:00', 'price_usd': '2000.5'})

    def test_datetime_timestamp(self):
        """Datetime objects are accepted as-is."""
        validate_price_row({
            'asset_id': 'ETH',
            'timestamp': datetime(2024, 1, 1, tzinfo=timezone.utc),
            'price_usd': Decimal('2000'),
        })

    def test_missing_keys(self):
        """Every field is required."""
        with pytest.raises(InputValidationError, match="Missing required keys"):
            validate_price_row({'asset_id': 'ETH', 'timestamp': '2024-01-01'})

    @pytest.mark.parametrize('field,value', [
        ('asset_id', ''),
        ('asset_id', None),
        ('timestamp', 'yesterday'),
        ('timestamp', 20240101),
        ('price_usd', '-1'),
        ('price_usd', 'NaN'),
        ('price_usd', None),
    ])
    def test_invalid_fields(self, field, value):
        """Empty ids, bad timestamps and bad prices are rejected."""
        row = {'asset_id': 'ETH', 'timestamp': '2024-01-01T00:00:00Z', 'price_usd': '1'}
        row[field] = value

        with pytest.raises(InputValidationError):
            validate_price_row(row)


class TestValidateSnapshotRow:
    """Tests for portfolio valuation rows."""

    def test_valid(self):
        """Zero valuations are allowed."""
        validate_snapshot_row({'portfolio_id': 'p1', 'timestamp': '2024-01-01', 'total_usd_value': '0'})

    def test_negative_value(self):
        """Valuations cannot be negative."""
        with pytest.raises(InputValidationError, match="total_usd_value"):
            validate_snapshot_row({'portfolio_id': 'p1', 'timestamp': '2024-01-01', 'total_usd_value': '-5'})


class TestValidateTransactionRow:
    """Tests for transaction history rows."""

    def test_valid(self):
        """A buy with positive quantity passes."""
        validate_transaction_row(_tx())

    def test_unknown_type(self):
        """Only buy, sell and transfer are known."""
        with pytest.raises(InputValidationError, match="type must be one of"):
            validate_transaction_row(_tx(type='stake'))

    @pytest.mark.parametrize('tx_type', ['buy', 'sell'])
    def test_zero_quantity_trade(self, tx_type):
        """Trades must move something."""
        with pytest.raises(InputValidationError, match="must be positive"):
            validate_transaction_row(_tx(type=tx_type, quantity='0'))

    def test_zero_quantity_transfer(self):
        """Transfers only need a non-negative quantity."""
        validate_transaction_row(_tx(type='transfer', quantity='0'))

    def test_negative_price(self):
        """Prices cannot be negative."""
        with pytest.raises(InputValidationError, match="price_usd"):
            validate_transaction_row(_tx(price_usd='-10'))

    def test_missing_wallet(self):
        """wallet_id is required."""
        row = _tx()
        del row['wallet_id']

        with pytest.raises(InputValidationError, match="wallet_id"):
            validate_transaction_row(row)


class TestValidatePositionRow:
    """Tests for protocol position rows."""

    def test_valid(self):
        """A well-formed row passes silently."""
        validate_position_row({'portfolio_id': 'p1', 'protocol_id': 'aave', 'value_usd': 100})

    def test_blank_protocol(self):
        """Protocol ids must be non-empty."""
        with pytest.raises(InputValidationError, match="protocol_id"):
            validate_position_row({'portfolio_id': 'p1', 'protocol_id': '  ', 'value_usd': 100})
