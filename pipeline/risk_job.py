"""
Risk job - orchestrates the risk & correlation analytics pipeline.
Composes: Load → Normalize → Returns → Correlation/Volatility/Exposure → Store → Track.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from analytics.calculations.concentration import concentration_interpretation, herfindahl_index
from analytics.config import AnalyticsConfig
from analytics.guardrails import InputValidationError
from analytics.models import Transaction, TransactionType, ValuationPoint
from analytics.precision import ZERO, decimal_context, quantity_context
from analytics.risk import (
    correlation_matrix,
    diversification_score,
    exposures,
    summarize_correlations,
    volatility_profile,
)
from ingestion.transforms.normalizers import (
    normalize_price_series,
    normalize_protocol_positions,
    normalize_transactions,
    normalize_valuation_snapshots,
    parse_timestamp,
    returns_by_asset,
)
from pipeline.errors import PipelineError
from storage.loaders import (
    list_portfolios,
    query_held_assets,
    query_portfolio_snapshots,
    query_price_snapshots,
    query_protocol_positions,
    query_transactions,
)
from storage.repository import AnalyticsRepository, PersistenceError
from storage.run_registry import RunStatus, finish_run, start_run

logger = logging.getLogger(__name__)

JOB_NAME = 'risk_analytics'


def run_risk_analytics(
    config: AnalyticsConfig,
    conn: sqlite3.Connection,
    as_of: Optional[datetime] = None,
    portfolio_ids: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Run the risk analytics pipeline for every portfolio.

    Pipeline stages per portfolio:
    1. Load price history of held tokens and derive return series
    2. Correlate every token pair
    3. Profile volatility per token and for the portfolio valuation
    4. Assess protocol exposure and the diversification score (weighted by
       protocol positions, or by held asset value when there are none)
    5. Upsert everything

    Args:
        config: Analytics configuration
        conn: SQLite database connection
        as_of: Ignore observations after this time (defaults to all data)
        portfolio_ids: Restrict the run to these portfolios

    Returns:
        Dictionary with run results and counts

    Raises:
        PipelineError: If results could not be persisted
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
        'pairs_stored': 0,
        'profiles_stored': 0,
        'exposures_stored': 0,
        'scores_stored': 0,
        'failures': {},
        'error_message': None,
    }

    scopes = portfolio_ids if portfolio_ids is not None else list_portfolios(conn)
    logger.info(f"Computing risk analytics for {len(scopes)} portfolios")

    try:
        for portfolio_id in scopes:
            try:
                _process_portfolio(conn, repository, portfolio_id, config, as_of, result)
            except InputValidationError as e:
                logger.warning(f"Skipping portfolio {portfolio_id}: {e}")
                result['scopes_failed'] += 1
                result['failures'][portfolio_id] = str(e)
                continue

            result['scopes_processed'] += 1

    except PersistenceError as e:
        logger.error(f"Risk run {run_id} failed: {e}")
        finish_run(
            conn=conn,
            run_id=run_id,
            status=RunStatus.FAILED,
            rows_in=len(scopes),
            rows_out=_rows_out(result),
            error_message=str(e)
        )
        raise PipelineError(f"Risk run {run_id} failed: {e}") from e

    finish_run(
        conn=conn,
        run_id=run_id,
        status=RunStatus.COMPLETED,
        rows_in=len(scopes),
        rows_out=_rows_out(result)
    )

    result['status'] = 'completed'
    result['duration_seconds'] = (datetime.now(timezone.utc) - start_time).total_seconds()

    logger.info(
        f"Risk run {run_id}: {result['scopes_processed']} portfolios, "
        f"{result['pairs_stored']} pairs, {result['exposures_stored']} exposures, "
        f"{result['scopes_failed']} failed"
    )
    return result


def _rows_out(result: Dict[str, Any]) -> int:
    return (
        result['pairs_stored'] + result['profiles_stored']
        + result['exposures_stored'] + result['scores_stored']
    )


def _process_portfolio(
    conn: sqlite3.Connection,
    repository: AnalyticsRepository,
    portfolio_id: str,
    config: AnalyticsConfig,
    as_of: Optional[datetime],
    result: Dict[str, Any]
) -> None:
    computed_at = datetime.now(timezone.utc)

    assets = query_held_assets(conn, portfolio_id)
    prices = normalize_price_series(query_price_snapshots(conn, assets))
    snapshots = normalize_valuation_snapshots(query_portfolio_snapshots(conn, portfolio_id))
    positions = normalize_protocol_positions(query_protocol_positions(conn, portfolio_id))

    if as_of is not None:
        prices = {asset: [p for p in points if p.timestamp <= as_of] for asset, points in prices.items()}
        snapshots = [p for p in snapshots if p.timestamp <= as_of]

    returns = returns_by_asset(prices)

    # Correlation
    pairs = correlation_matrix(returns, computed_at=computed_at, config=config)
    summary = summarize_correlations(pairs, config=config)
    logger.debug(f"{portfolio_id}: correlation summary {summary}")

    # Volatility, per token and for the portfolio valuation itself
    profiles = [volatility_profile(asset, series, config=config) for asset, series in returns.items()]
    portfolio_returns = returns_by_asset({portfolio_id: snapshots})[portfolio_id]
    profiles.append(volatility_profile(portfolio_id, portfolio_returns, config=config))

    # Protocol exposure
    assessments = exposures(positions, config=config)
    hhi = herfindahl_index(positions)
    logger.info(
        f"{portfolio_id}: {len(assessments)} protocols, "
        f"concentration {concentration_interpretation(hhi)}"
    )

    # Diversification weights: protocol positions, else held assets by value
    weights = positions
    if not weights:
        transactions = normalize_transactions(query_transactions(conn, portfolio_id))
        if as_of is not None:
            transactions = [tx for tx in transactions if tx.timestamp <= as_of]
        weights = _asset_values(transactions, prices)
        logger.debug(f"{portfolio_id}: no protocol positions, weighting {len(weights)} assets by value")

    repository.save_correlation_pairs(pairs)
    result['pairs_stored'] += len(pairs)

    repository.save_volatility_profiles(profiles, computed_at)
    result['profiles_stored'] += len(profiles)

    repository.save_exposures(portfolio_id, assessments, computed_at)
    result['exposures_stored'] += len(assessments)

    if weights:
        score = diversification_score(portfolio_id, pairs, weights, computed_at=computed_at, config=config)
        repository.save_diversification_score(score)
        result['scores_stored'] += 1
    else:
        logger.info(f"{portfolio_id}: nothing held, diversification score not computed")


def _asset_values(
    transactions: Iterable[Transaction],
    prices: Dict[str, List[ValuationPoint]]
) -> Dict[str, Decimal]:
    """
    Net units held per asset marked at its latest price.

    Transfers move units between the holder's own wallets and are ignored.
    Assets fully sold or without any price observation are left out.
    """
    held: Dict[str, Decimal] = {}
    with quantity_context():
        for tx in transactions:
            if tx.type == TransactionType.BUY:
                held[tx.asset_id] = held.get(tx.asset_id, ZERO) + tx.quantity
            elif tx.type == TransactionType.SELL:
                held[tx.asset_id] = held.get(tx.asset_id, ZERO) - tx.quantity

    values = {}
    with decimal_context():
        for asset_id, quantity in sorted(held.items()):
            points = prices.get(asset_id)
            if quantity > 0 and points:
                values[asset_id] = quantity * points[-1].value
    return values
