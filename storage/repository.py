"""
Analytics repository - idempotent persistence of engine outputs.

Injected into the batch jobs instead of a module-level client. Every save
method upserts by the output's natural key and returns (inserted, updated).
"""

import logging
import sqlite3
from datetime import datetime
from typing import Iterable, Optional, Tuple

import pandas as pd

from analytics.models import (
    CorrelationPair,
    DiversificationScore,
    ExposureAssessment,
    PerformanceMetric,
    VolatilityProfile,
)
from analytics.precision import decimal_to_str
from storage.loaders import upsert_rows

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the storage collaborator rejects a write or read."""
    pass


def _enum_value(value):
    return value.value if value is not None else None


class AnalyticsRepository:
    """Upsert contract for performance metrics and risk analytics."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _save(self, table: str, key_columns: Tuple[str, ...], rows: list) -> Tuple[int, int]:
        if not rows:
            return (0, 0)
        try:
            inserted, updated = upsert_rows(self.conn, table, key_columns, rows)
        except sqlite3.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Failed to upsert into {table}: {e}")

        logger.debug(f"{table}: {inserted} inserted, {updated} updated")
        return (inserted, updated)

    def save_performance_metrics(self, metrics: Iterable[PerformanceMetric]) -> Tuple[int, int]:
        """Upsert metrics keyed by (scope, timeframe)."""
        rows = [
            {
                'scope': m.scope,
                'timeframe': m.timeframe.value,
                'total_return': decimal_to_str(m.total_return),
                'return_pct': decimal_to_str(m.return_pct),
                'volatility': decimal_to_str(m.volatility),
                'sharpe_ratio': decimal_to_str(m.sharpe_ratio),
                'max_drawdown': decimal_to_str(m.max_drawdown),
                'win_rate': decimal_to_str(m.win_rate),
                'realized_pnl': decimal_to_str(m.realized_pnl),
                'unrealized_pnl': decimal_to_str(m.unrealized_pnl),
                'trades_count': m.trades_count,
                'sample_size': m.sample_size,
                'computed_at': m.computed_at.isoformat(),
            }
            for m in metrics
        ]
        return self._save('performance_metrics', ('scope', 'timeframe'), rows)

    def save_correlation_pairs(self, pairs: Iterable[CorrelationPair]) -> Tuple[int, int]:
        """Upsert pairs keyed by (token_a, token_b) in canonical order."""
        rows = []
        for p in pairs:
            token_a, token_b = sorted((p.token_a, p.token_b))
            rows.append({
                'token_a': token_a,
                'token_b': token_b,
                'coefficient': p.coefficient,
                'p_value': p.p_value,
                'sample_size': p.sample_size,
                'significant': int(p.significant),
                'strength': _enum_value(p.strength),
                'computed_at': p.computed_at.isoformat(),
            })
        return self._save('correlation_pairs', ('token_a', 'token_b'), rows)

    def save_volatility_profiles(
        self,
        profiles: Iterable[VolatilityProfile],
        computed_at: datetime
    ) -> Tuple[int, int]:
        """Upsert profiles keyed by scope."""
        rows = [
            {
                'scope': v.scope,
                'upside_deviation': v.upside_deviation,
                'downside_deviation': v.downside_deviation,
                'rolling_volatility': v.rolling_volatility,
                'risk_category': _enum_value(v.risk_category),
                'volatility': v.volatility,
                'sample_size': v.sample_size,
                'computed_at': computed_at.isoformat(),
            }
            for v in profiles
        ]
        return self._save('volatility_profiles', ('scope',), rows)

    def save_exposures(
        self,
        portfolio_id: str,
        assessments: Iterable[ExposureAssessment],
        computed_at: datetime
    ) -> Tuple[int, int]:
        """Upsert exposures keyed by (portfolio_id, protocol_id)."""
        rows = [
            {
                'portfolio_id': portfolio_id,
                'protocol_id': e.protocol_id,
                'concentration_pct': e.concentration_pct,
                'risk_level': e.risk_level.value,
                'recommended_allocation_limit': e.recommended_allocation_limit,
                'exposure_usd': e.exposure_usd,
                'computed_at': computed_at.isoformat(),
            }
            for e in assessments
        ]
        return self._save('exposure_assessments', ('portfolio_id', 'protocol_id'), rows)

    def save_diversification_score(self, score: DiversificationScore) -> Tuple[int, int]:
        """Upsert a score keyed by portfolio_id."""
        row = {
            'portfolio_id': score.portfolio_id,
            'score': score.score,
            'average_correlation': score.average_correlation,
            'high_correlation_pairs': score.high_correlation_pairs,
            'evenness': score.evenness,
            'asset_count': score.asset_count,
            'computed_at': score.computed_at.isoformat(),
        }
        return self._save('diversification_scores', ('portfolio_id',), [row])

    def load_performance_metrics(self, scope: Optional[str] = None) -> pd.DataFrame:
        """
        Read persisted metrics back for display.

        Returns:
            DataFrame of performance_metrics rows (Decimals as TEXT)
        """
        query = "SELECT * FROM performance_metrics"
        params = []
        if scope is not None:
            query += " WHERE scope = ?"
            params.append(scope)
        query += " ORDER BY scope, timeframe"

        try:
            return pd.read_sql_query(query, self.conn, params=params)
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise PersistenceError(f"Failed to read performance_metrics: {e}")
