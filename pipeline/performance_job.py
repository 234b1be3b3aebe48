"""
Performance job - orchestrates the performance metrics pipeline.
Composes: Load → Normalize → Ledger replay → Metrics → Store → Track.
"""

import logging
import sqlite3
from collections import defaultdict
from dataclasses import asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from analytics.calculations.cost_basis import CostBasisLedger, InsufficientCostBasis, build_ledger
from analytics.config import AnalyticsConfig
from analytics.guardrails import InputValidationError, validate_metric_outputs
from analytics.models import PerformanceMetric, Transaction, TransactionType, ValuationPoint
from analytics.performance import compute_metrics, in_window, realized_pnl_in_window
from analytics.precision import decimal_context
from ingestion.transforms.normalizers import (
    normalize_price_series,
    normalize_transactions,
    normalize_valuation_snapshots,
    parse_timestamp,
)
from pipeline.errors import PipelineError
from storage.loaders import (
    list_portfolios,
    query_portfolio_snapshots,
    query_price_snapshots,
    query_transactions,
)
from storage.repository import AnalyticsRepository, PersistenceError
from storage.run_registry import RunStatus, finish_run, start_run

logger = logging.getLogger(__name__)

JOB_NAME = 'performance_metrics'

_BOUNDED_FIELDS = ('max_drawdown', 'win_rate')


def run_performance_metrics(
    config: AnalyticsConfig,
    conn: sqlite3.Connection,
    as_of: Optional[datetime] = None,
    portfolio_ids: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Run the performance metrics pipeline for every portfolio.

    Pipeline stages per portfolio:
    1. Load valuation snapshots and transaction history
    2. Replay transactions into one FIFO ledger per (wallet, asset)
    3. Compute metrics for every configured timeframe
    4. Sanity-check and upsert the metrics

    A portfolio with malformed input or an oversold ledger is logged and
    counted as failed; the rest of the run continues. Storage failures abort
    the run.

    Args:
        config: Analytics configuration
        conn: SQLite database connection
        as_of: Window end for every scope (defaults to each scope's latest observation)
        portfolio_ids: Restrict the run to these portfolios

    Returns:
        Dictionary with run results and counts

    Raises:
        PipelineError: If metrics could not be persisted
    """
    if as_of is not None:
        as_of = parse_timestamp(as_of)

    run_id = start_run(conn, JOB_NAME)
    start_time = datetime.now(timezone.utc)
    repository = AnalyticsRepository(conn)

    result = {
        'run_id': run_id,
        'status': 'running',
        'scopes_processed': 0,
        'scopes_failed': 0,
        'metrics_stored': 0,
        'metrics_rejected': 0,
        'rows_inserted': 0,
        'rows_updated': 0,
        'failures': {},
        'error_message': None,
    }

    scopes = portfolio_ids if portfolio_ids is not None else list_portfolios(conn)
    logger.info(f"Computing performance metrics for {len(scopes)} portfolios")

    try:
        for portfolio_id in scopes:
            try:
                metrics = _portfolio_metrics(conn, portfolio_id, config, as_of)
            except (InputValidationError, InsufficientCostBasis) as e:
                logger.warning(f"Skipping portfolio {portfolio_id}: {e}")
                result['scopes_failed'] += 1
                result['failures'][portfolio_id] = str(e)
                continue

            valid = []
            for metric in metrics:
                problems = validate_metric_outputs(asdict(metric), bounded=_BOUNDED_FIELDS)
                if problems:
                    logger.warning(f"Rejected {portfolio_id}/{metric.timeframe.value}: {problems}")
                    result['metrics_rejected'] += 1
                else:
                    valid.append(metric)

            inserted, updated = repository.save_performance_metrics(valid)
            result['rows_inserted'] += inserted
            result['rows_updated'] += updated
            result['metrics_stored'] += len(valid)
            result['scopes_processed'] += 1

    except PersistenceError as e:
        logger.error(f"Performance run {run_id} failed: {e}")
        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.FAILED,
            rows_in=len(scopes),
            rows_out=result['metrics_stored'],
            error_message=str(e)
        )
        raise PipelineError(f"Performance run {run_id} failed: {e}") from e

    finish_run(
        conn=conn,
        run_id=run_id,
        status=RunStatus.COMPLETED,
        rows_in=len(scopes),
        rows_out=result['metrics_stored']
    )

    result['status'] = 'completed'
    result['duration_seconds'] = (datetime.now(timezone.utc) - start_time).total_seconds()

    logger.info(
        f"Performance run {run_id}: {result['scopes_processed']} portfolios, "
        f"{result['metrics_stored']} metrics stored, {result['scopes_failed']} failed"
    )
    return result


def _portfolio_metrics(
    conn: sqlite3.Connection,
    portfolio_id: str,
    config: AnalyticsConfig,
    as_of: Optional[datetime]
) -> List[PerformanceMetric]:
    snapshots = normalize_valuation_snapshots(query_portfolio_snapshots(conn, portfolio_id))
    transactions = normalize_transactions(query_transactions(conn, portfolio_id))

    scope_as_of = as_of or _latest_timestamp(snapshots, transactions)
    if scope_as_of is None:
        logger.info(f"Portfolio {portfolio_id} has no history, nothing to compute")
        return []

    transactions = [tx for tx in transactions if tx.timestamp <= scope_as_of]
    ledgers = _replay_ledgers(transactions)
    disposals = [d for ledger in ledgers.values() for d in ledger.disposals()]
    unrealized = _unrealized_pnl(conn, ledgers, scope_as_of)

    computed_at = datetime.now(timezone.utc)
    metrics = []

    for timeframe in config.timeframes:
        trades = sum(
            1 for tx in transactions
            if tx.type != TransactionType.TRANSFER and in_window(tx.timestamp, timeframe, scope_as_of)
        )
        metrics.append(compute_metrics(
            snapshots,
            timeframe,
            scope=portfolio_id,
            as_of=scope_as_of,
            realized_pnl=realized_pnl_in_window(disposals, timeframe, scope_as_of),
            unrealized_pnl=unrealized,
            trades_count=trades,
            computed_at=computed_at,
            config=config,
        ))

    return metrics


def _latest_timestamp(
    snapshots: List[ValuationPoint],
    transactions: List[Transaction]
) -> Optional[datetime]:
    timestamps = [p.timestamp for p in snapshots] + [tx.timestamp for tx in transactions]
    return max(timestamps) if timestamps else None


def _replay_ledgers(transactions: List[Transaction]) -> Dict[tuple, CostBasisLedger]:
    """One FIFO ledger per (wallet, asset), replayed oldest first."""
    grouped = defaultdict(list)
    for tx in transactions:
        grouped[(tx.wallet_id, tx.asset_id)].append(tx)

    return {key: build_ledger(txs) for key, txs in sorted(grouped.items())}


def _unrealized_pnl(
    conn: sqlite3.Connection,
    ledgers: Dict[tuple, CostBasisLedger],
    as_of: datetime
) -> Optional[Decimal]:
    """Mark open lots to the latest price at or before as_of."""
    open_ledgers = {key: ledger for key, ledger in ledgers.items() if len(ledger) > 0}
    if not open_ledgers:
        return None

    assets = sorted({asset_id for _, asset_id in open_ledgers})
    prices = normalize_price_series(query_price_snapshots(conn, assets))

    marked = []
    for (wallet_id, asset_id), ledger in open_ledgers.items():
        history = [p for p in prices.get(asset_id, []) if p.timestamp <= as_of]
        if not history:
            logger.debug(f"No price for {asset_id} at {as_of.isoformat()}, {wallet_id} lots left unmarked")
            continue
        marked.append(ledger.unrealized_pnl(history[-1].value))

    if not marked:
        return None

    with decimal_context():
        return sum(marked, Decimal(0))
