"""
Core validators for collaborator input rows.
Pure functions - no IO, network, or side effects.
"""

from datetime import datetime
from typing import Any, Dict, Iterable

from analytics.guardrails import InputValidationError, to_decimal
from analytics.models import TransactionType


def _require_keys(row: Dict[str, Any], required_keys: Iterable[str]) -> None:
    missing = set(required_keys) - set(row.keys())
    if missing:
        raise InputValidationError(f"Missing required keys: {sorted(missing)}")


def _require_id(row: Dict[str, Any], field: str) -> None:
    value = row[field]
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"{field} must be a non-empty string, got {value!r}")


def _require_timestamp(row: Dict[str, Any], field: str = 'timestamp') -> None:
    value = row[field]
    if isinstance(value, datetime):
        return
    if isinstance(value, str):
        try:
            datetime.fromisoformat(value.replace('Z', '+00:00'))
            return
        except ValueError:
            pass
    raise InputValidationError(f"{field} must be an ISO-8601 timestamp, got {value!r}")


def validate_price_row(row: Dict[str, Any]) -> None:
    """
    Validate an (asset_id, timestamp, price_usd) row.

    Raises:
        InputValidationError: If validation fails
    """
    _require_keys(row, {'asset_id', 'timestamp', 'price_usd'})
    _require_id(row, 'asset_id')
    _require_timestamp(row)
    to_decimal(row['price_usd'], 'price_usd')


def validate_snapshot_row(row: Dict[str, Any]) -> None:
    """
    Validate a (portfolio_id, timestamp, total_usd_value) row.

    Raises:
        InputValidationError: If validation fails
    """
    _require_keys(row, {'portfolio_id', 'timestamp', 'total_usd_value'})
    _require_id(row, 'portfolio_id')
    _require_timestamp(row)
    to_decimal(row['total_usd_value'], 'total_usd_value')


def validate_transaction_row(row: Dict[str, Any]) -> None:
    """
    Validate a transaction history row.

    Buys and sells must move a positive quantity; transfers only need a
    non-negative one.

    Raises:
        InputValidationError: If validation fails
    """
    _require_keys(row, {'wallet_id', 'asset_id', 'type', 'quantity', 'price_usd', 'timestamp'})
    _require_id(row, 'wallet_id')
    _require_id(row, 'asset_id')
    _require_timestamp(row)

    try:
        tx_type = TransactionType(row['type'])
    except ValueError:
        raise InputValidationError(
            f"type must be one of {[t.value for t in TransactionType]}, got {row['type']!r}"
        )

    quantity = to_decimal(row['quantity'], 'quantity')
    to_decimal(row['price_usd'], 'price_usd')

    if tx_type != TransactionType.TRANSFER and quantity <= 0:
        raise InputValidationError(f"{tx_type.value} quantity must be positive, got {row['quantity']!r}")


def validate_position_row(row: Dict[str, Any]) -> None:
    """
    Validate a (portfolio_id, protocol_id, value_usd) row.

    Raises:
        InputValidationError: If validation fails
    """
    _require_keys(row, {'portfolio_id', 'protocol_id', 'value_usd'})
    _require_id(row, 'portfolio_id')
    _require_id(row, 'protocol_id')
    to_decimal(row['value_usd'], 'value_usd')
