"""
Database loaders - schema initialization, input upserts and input queries for SQLite.
Thin IO layer with focus on data integrity and idempotence.

Money and quantity columns are TEXT so Decimal values round-trip without
binary float loss; timestamps are ISO-8601 TEXT.
"""

import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd


def init_database(conn: sqlite3.Connection) -> None:
    """
    Initialize database with input, output and run tables.
    Idempotent - safe to call multiple times.

    Args:
        conn: SQLite connection
    """
    conn.execute("PRAGMA foreign_keys = ON")

    # Inputs written by the ingestion collaborators
    conn.execute("""
        CREATE TABLE IF NOT EXISTS price_snapshots (
            asset_id TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            price_usd TEXT NOT NULL,
            PRIMARY KEY (asset_id, timestamp)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS portfolio_snapshots (
            portfolio_id TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            total_usd_value TEXT NOT NULL,
            PRIMARY KEY (portfolio_id, timestamp)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            tx_id TEXT PRIMARY KEY,
            portfolio_id TEXT NOT NULL,
            wallet_id TEXT NOT NULL,
            asset_id TEXT NOT NULL,
            type TEXT NOT NULL CHECK(type IN ('buy', 'sell', 'transfer')),
            quantity TEXT NOT NULL,
            price_usd TEXT NOT NULL,
            timestamp TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS protocol_positions (
            portfolio_id TEXT NOT NULL,
            protocol_id TEXT NOT NULL,
            value_usd TEXT NOT NULL,
            PRIMARY KEY (portfolio_id, protocol_id)
        )
    """)

    # Outputs written by the analytics repository
    conn.execute("""
        CREATE TABLE IF NOT EXISTS performance_metrics (
            scope TEXT NOT NULL,
            timeframe TEXT NOT NULL CHECK(timeframe IN ('24h', '7d', '30d', '90d', '1y', 'all')),
            total_return TEXT,
            return_pct TEXT,
            volatility TEXT,
            sharpe_ratio TEXT,
            max_drawdown TEXT,
            win_rate TEXT,
            realized_pnl TEXT,
            unrealized_pnl TEXT,
            trades_count INTEGER,
            sample_size INTEGER NOT NULL,
            computed_at TEXT NOT NULL,
            PRIMARY KEY (scope, timeframe)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS correlation_pairs (
            token_a TEXT NOT NULL,
            token_b TEXT NOT NULL,
            coefficient REAL,
            p_value REAL,
            sample_size INTEGER NOT NULL,
            significant INTEGER NOT NULL,
            strength TEXT,
            computed_at TEXT NOT NULL,
            PRIMARY KEY (token_a, token_b),
            CHECK (token_a <= token_b)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS volatility_profiles (
            scope TEXT PRIMARY KEY,
            upside_deviation REAL,
            downside_deviation REAL,
            rolling_volatility REAL,
            risk_category TEXT CHECK(risk_category IN ('low', 'medium', 'high', 'critical')),
            volatility REAL,
            sample_size INTEGER NOT NULL,
            computed_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS exposure_assessments (
            portfolio_id TEXT NOT NULL,
            protocol_id TEXT NOT NULL,
            concentration_pct REAL NOT NULL,
            risk_level TEXT NOT NULL CHECK(risk_level IN ('low', 'medium', 'high', 'critical')),
            recommended_allocation_limit REAL NOT NULL,
            exposure_usd REAL NOT NULL,
            computed_at TEXT NOT NULL,
            PRIMARY KEY (portfolio_id, protocol_id)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS diversification_scores (
            portfolio_id TEXT PRIMARY KEY,
            score REAL NOT NULL,
            average_correlation REAL,
            high_correlation_pairs INTEGER NOT NULL,
            evenness REAL,
            asset_count INTEGER NOT NULL,
            computed_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_name TEXT NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
            rows_in INTEGER,
            rows_out INTEGER,
            error_message TEXT
        )
    """)

    # Create indices for performance
    conn.execute("CREATE INDEX IF NOT EXISTS idx_prices_asset ON price_snapshots(asset_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_portfolio ON portfolio_snapshots(portfolio_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tx_portfolio ON transactions(portfolio_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tx_timestamp ON transactions(timestamp)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status)")

    conn.commit()


def get_connection(db_path: str = './data/analytics.db') -> sqlite3.Connection:
    """
    Get SQLite connection with proper configuration.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured SQLite connection
    """
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")  # Better concurrency
    return conn


def _ts(value: Any) -> str:
    return value.isoformat() if isinstance(value, datetime) else str(value)


def upsert_rows(
    conn: sqlite3.Connection,
    table: str,
    key_columns: Tuple[str, ...],
    rows: Iterable[Dict[str, Any]]
) -> Tuple[int, int]:
    """
    Insert-or-update rows by primary key.

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    inserted = 0
    updated = 0

    for row in rows:
        where = ' AND '.join(f"{col} = ?" for col in key_columns)
        key = tuple(row[col] for col in key_columns)

        cursor = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", key)
        exists = cursor.fetchone()[0] > 0

        if exists:
            value_columns = [col for col in row if col not in key_columns]
            assignments = ', '.join(f"{col} = ?" for col in value_columns)
            conn.execute(
                f"UPDATE {table} SET {assignments} WHERE {where}",
                tuple(row[col] for col in value_columns) + key
            )
            updated += 1
        else:
            columns = list(row)
            placeholders = ', '.join('?' for _ in columns)
            conn.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                tuple(row[col] for col in columns)
            )
            inserted += 1

    conn.commit()
    return (inserted, updated)


def upsert_price_snapshots(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert (asset_id, timestamp, price_usd) rows.
    Idempotent - can be called multiple times with same data.

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    return upsert_rows(conn, 'price_snapshots', ('asset_id', 'timestamp'), (
        {
            'asset_id': row['asset_id'],
            'timestamp': _ts(row['timestamp']),
            'price_usd': str(row['price_usd']),
        }
        for row in rows
    ))


def upsert_portfolio_snapshots(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert (portfolio_id, timestamp, total_usd_value) rows.

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    return upsert_rows(conn, 'portfolio_snapshots', ('portfolio_id', 'timestamp'), (
        {
            'portfolio_id': row['portfolio_id'],
            'timestamp': _ts(row['timestamp']),
            'total_usd_value': str(row['total_usd_value']),
        }
        for row in rows
    ))


def upsert_transactions(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert transaction history rows keyed by tx_id.

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    return upsert_rows(conn, 'transactions', ('tx_id',), (
        {
            'tx_id': row['tx_id'],
            'portfolio_id': row['portfolio_id'],
            'wallet_id': row['wallet_id'],
            'asset_id': row['asset_id'],
            'type': str(getattr(row['type'], 'value', row['type'])),
            'quantity': str(row['quantity']),
            'price_usd': str(row['price_usd']),
            'timestamp': _ts(row['timestamp']),
        }
        for row in rows
    ))


def upsert_protocol_positions(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert (portfolio_id, protocol_id, value_usd) rows.

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    return upsert_rows(conn, 'protocol_positions', ('portfolio_id', 'protocol_id'), (
        {
            'portfolio_id': row['portfolio_id'],
            'protocol_id': row['protocol_id'],
            'value_usd': str(row['value_usd']),
        }
        for row in rows
    ))


def list_portfolios(conn: sqlite3.Connection) -> List[str]:
    """Portfolio ids that have valuation snapshots, transactions or positions."""
    cursor = conn.execute("""
        SELECT portfolio_id FROM portfolio_snapshots
        UNION SELECT portfolio_id FROM transactions
        UNION SELECT portfolio_id FROM protocol_positions
        ORDER BY portfolio_id
    """)
    return [row[0] for row in cursor.fetchall()]


def query_portfolio_snapshots(conn: sqlite3.Connection, portfolio_id: str) -> pd.DataFrame:
    """
    Valuation snapshots of one portfolio, oldest first.

    Returns:
        DataFrame with portfolio_id, timestamp, total_usd_value (raw TEXT)
    """
    return pd.read_sql_query("""
        SELECT portfolio_id, timestamp, total_usd_value
        FROM portfolio_snapshots
        WHERE portfolio_id = ?
        ORDER BY timestamp ASC
    """, conn, params=[portfolio_id])


def query_transactions(conn: sqlite3.Connection, portfolio_id: str) -> pd.DataFrame:
    """
    Transaction history of one portfolio, oldest first.

    Returns:
        DataFrame with tx_id, wallet_id, asset_id, type, quantity, price_usd, timestamp
    """
    return pd.read_sql_query("""
        SELECT tx_id, portfolio_id, wallet_id, asset_id, type, quantity, price_usd, timestamp
        FROM transactions
        WHERE portfolio_id = ?
        ORDER BY timestamp ASC, tx_id ASC
    """, conn, params=[portfolio_id])


def query_held_assets(conn: sqlite3.Connection, portfolio_id: str) -> List[str]:
    """Assets the portfolio has ever transacted in, alphabetically."""
    cursor = conn.execute("""
        SELECT DISTINCT asset_id FROM transactions
        WHERE portfolio_id = ?
        ORDER BY asset_id
    """, (portfolio_id,))
    return [row[0] for row in cursor.fetchall()]


def query_price_snapshots(
    conn: sqlite3.Connection,
    asset_ids: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Price observations, optionally limited to some assets.

    Returns:
        DataFrame with asset_id, timestamp, price_usd ordered by asset then time
    """
    query = "SELECT asset_id, timestamp, price_usd FROM price_snapshots"
    params: List[Any] = []

    if asset_ids is not None:
        if not asset_ids:
            return pd.DataFrame(columns=['asset_id', 'timestamp', 'price_usd'])
        query += f" WHERE asset_id IN ({', '.join('?' for _ in asset_ids)})"
        params.extend(asset_ids)

    query += " ORDER BY asset_id ASC, timestamp ASC"
    return pd.read_sql_query(query, conn, params=params)


def query_protocol_positions(conn: sqlite3.Connection, portfolio_id: str) -> pd.DataFrame:
    """
    Protocol positions of one portfolio.

    Returns:
        DataFrame with portfolio_id, protocol_id, value_usd
    """
    return pd.read_sql_query("""
        SELECT portfolio_id, protocol_id, value_usd
        FROM protocol_positions
        WHERE portfolio_id = ?
        ORDER BY protocol_id ASC
    """, conn, params=[portfolio_id])
