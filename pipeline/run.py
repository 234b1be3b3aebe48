#!/usr/bin/env python3
"""
Pipeline runner CLI - runs the analytics jobs against the SQLite store.
Usage: python pipeline/run.py {performance,risk,all} [options]
"""

import argparse
import logging
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from analytics.config import ConfigError, load_config
from analytics.guardrails import InputValidationError
from ingestion.transforms.normalizers import parse_timestamp
from pipeline.errors import PipelineError
from pipeline.performance_job import run_performance_metrics
from pipeline.risk_job import run_risk_analytics
from storage.loaders import get_connection, init_database
from storage.repository import AnalyticsRepository

logger = logging.getLogger(__name__)

INSUFFICIENT = 'insufficient data'


def _parse_as_of(value: str):
    try:
        return parse_timestamp(value)
    except InputValidationError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Compute portfolio performance and risk analytics',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python pipeline/run.py performance
  python pipeline/run.py risk --portfolio main
  python pipeline/run.py all --as-of 2024-06-30T00:00:00 --db-path ./data/analytics.db
        """
    )

    parser.add_argument('job', choices=['performance', 'risk', 'all'],
                        help='Which analytics job to run')
    parser.add_argument('--db-path',
                        help='Path to SQLite database (default: ANALYTICS_DB_PATH or ./data/analytics.db)')
    parser.add_argument('--config',
                        help='Path to YAML config (default: ANALYTICS_CONFIG_PATH or ./config/analytics.yml)')
    parser.add_argument('--as-of',
                        type=_parse_as_of,
                        help='Window end as ISO-8601 timestamp (default: latest observation)')
    parser.add_argument('--portfolio',
                        action='append',
                        dest='portfolios',
                        help='Restrict to a portfolio id (repeatable)')
    parser.add_argument('--quiet', '-q',
                        action='store_true',
                        help='Minimal output (just success/failure)')
    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING if args.quiet else os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 1

    db_path = Path(args.db_path or config.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(str(db_path))
    init_database(conn)

    jobs = ['performance', 'risk'] if args.job == 'all' else [args.job]
    exit_code = 0

    try:
        for job in jobs:
            if job == 'performance':
                result = run_performance_metrics(config, conn, as_of=args.as_of, portfolio_ids=args.portfolios)
            else:
                result = run_risk_analytics(config, conn, as_of=args.as_of, portfolio_ids=args.portfolios)

            if result['scopes_failed']:
                exit_code = 1

            if args.quiet:
                print(f"{'✅' if not result['scopes_failed'] else '⚠️ '} {job}: run {result['run_id']} {result['status']}")
            else:
                _display_result(job, result)

        if not args.quiet and 'performance' in jobs:
            _display_performance(AnalyticsRepository(conn), args.portfolios)

    except PipelineError as e:
        print(f"❌ Pipeline failed: {e}", file=sys.stderr)
        exit_code = 1

    finally:
        conn.close()

    if not args.quiet:
        print(f"💾 Results stored in: {db_path}")

    return exit_code


def _display_result(job: str, result: dict):
    """Display run counters."""
    print(f"📊 {job} results:")
    print(f"   Status: {result['status'].upper()}")
    print(f"   Run ID: {result['run_id']}")
    print(f"   Duration: {result['duration_seconds']:.1f}s")
    print(f"   Portfolios processed: {result['scopes_processed']}")

    if job == 'performance':
        print(f"   Metrics stored: {result['metrics_stored']}")
        if result['metrics_rejected']:
            print(f"   Metrics rejected: {result['metrics_rejected']}")
    else:
        print(f"   Correlation pairs: {result['pairs_stored']}")
        print(f"   Volatility profiles: {result['profiles_stored']}")
        print(f"   Protocol exposures: {result['exposures_stored']}")
        print(f"   Diversification scores: {result['scores_stored']}")

    for scope, message in result['failures'].items():
        print(f"   ❌ {scope}: {message}")
    print()


def _fmt(value, suffix=''):
    """Render a stored metric, None as an insufficient-data placeholder."""
    if value is None:
        return INSUFFICIENT
    return f"{float(value):,.4f}{suffix}"


def _display_performance(repository: AnalyticsRepository, portfolios=None):
    """Display persisted performance metrics per scope and timeframe."""
    df = repository.load_performance_metrics()
    if portfolios:
        df = df[df['scope'].isin(portfolios)]

    if df.empty:
        print("No performance metrics stored yet")
        return

    for scope, rows in df.groupby('scope'):
        print(f"📈 {scope}")
        for row in rows.to_dict('records'):
            values = {k: (None if v is None or v != v else v) for k, v in row.items()}
            print(
                f"   {values['timeframe']:>4}: return {_fmt(values['return_pct'], '%')}, "
                f"vol {_fmt(values['volatility'])}, sharpe {_fmt(values['sharpe_ratio'])}, "
                f"max dd {_fmt(values['max_drawdown'])}, win rate {_fmt(values['win_rate'])}"
            )
        print()


if __name__ == '__main__':
    sys.exit(main())
