"""
Normalizers for turning collaborator rows into typed analytics inputs.
Pure functions - no IO, network, or side effects.
Minimal normalization - only when necessary.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Union

import pandas as pd

from analytics.calculations.returns import price_returns
from analytics.guardrails import InputValidationError, to_decimal
from analytics.models import Transaction, TransactionType, ValuationPoint
from ingestion.transforms.validators import (
    validate_position_row,
    validate_price_row,
    validate_snapshot_row,
    validate_transaction_row,
)

Rows = Union[pd.DataFrame, Iterable[Dict[str, Any]]]


def _records(rows: Rows) -> List[Dict[str, Any]]:
    if isinstance(rows, pd.DataFrame):
        return rows.to_dict('records')
    return list(rows)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Naive values are taken to be UTC so that every timestamp in the engine
    compares on the same clock.

    Raises:
        InputValidationError: If the value is not a datetime or ISO-8601 string
    """
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()

    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise InputValidationError(f"Invalid timestamp: {value!r}")

    if not isinstance(value, datetime):
        raise InputValidationError(f"Invalid timestamp: {value!r}")

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_valuation_snapshots(rows: Rows) -> List[ValuationPoint]:
    """
    Transform portfolio snapshot rows into a valuation series.

    Deduplicates by timestamp (keep last to handle corrections).

    Returns:
        ValuationPoints in chronological order
    """
    by_timestamp: Dict[datetime, ValuationPoint] = {}

    for row in _records(rows):
        validate_snapshot_row(row)
        timestamp = parse_timestamp(row['timestamp'])
        by_timestamp[timestamp] = ValuationPoint(
            timestamp=timestamp,
            value=to_decimal(row['total_usd_value'], 'total_usd_value'),
        )

    return [by_timestamp[ts] for ts in sorted(by_timestamp)]


def normalize_price_series(rows: Rows) -> Dict[str, List[ValuationPoint]]:
    """
    Group price rows by asset.

    Returns:
        Mapping of asset_id to chronological (timestamp, price_usd) points
    """
    by_asset: Dict[str, Dict[datetime, Decimal]] = defaultdict(dict)

    for row in _records(rows):
        validate_price_row(row)
        timestamp = parse_timestamp(row['timestamp'])
        by_asset[row['asset_id']][timestamp] = to_decimal(row['price_usd'], 'price_usd')

    return {
        asset_id: [ValuationPoint(timestamp=ts, value=prices[ts]) for ts in sorted(prices)]
        for asset_id, prices in sorted(by_asset.items())
    }


def returns_by_asset(prices: Dict[str, List[ValuationPoint]]) -> Dict[str, pd.Series]:
    """
    Derive timestamp-indexed simple returns for every asset.

    Returns:
        Mapping of asset_id to float return Series (possibly empty)
    """
    result = {}
    for asset_id, points in prices.items():
        series = pd.Series(
            [float(p.value) for p in points],
            index=[p.timestamp for p in points],
            dtype='float64',
        )
        result[asset_id] = price_returns(series)
    return result


def normalize_transactions(rows: Rows) -> List[Transaction]:
    """
    Transform transaction history rows into Transactions.

    Returns:
        Transactions in chronological order (stable for equal timestamps)
    """
    transactions = []

    for row in _records(rows):
        validate_transaction_row(row)
        transactions.append(Transaction(
            asset_id=row['asset_id'],
            type=TransactionType(row['type']),
            quantity=to_decimal(row['quantity'], 'quantity'),
            price_usd=to_decimal(row['price_usd'], 'price_usd'),
            timestamp=parse_timestamp(row['timestamp']),
            wallet_id=row['wallet_id'],
        ))

    return sorted(transactions, key=lambda tx: tx.timestamp)


def normalize_protocol_positions(rows: Rows) -> Dict[str, Decimal]:
    """
    Sum position value per protocol.

    Returns:
        Mapping of protocol_id to USD value
    """
    values: Dict[str, Decimal] = defaultdict(Decimal)

    for row in _records(rows):
        validate_position_row(row)
        values[row['protocol_id']] += to_decimal(row['value_usd'], 'value_usd')

    return dict(sorted(values.items()))
