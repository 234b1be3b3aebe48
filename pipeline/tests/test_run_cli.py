"""
Tests for the pipeline runner CLI - argument parsing and end-to-end runs
against a temporary SQLite file.
"""

import pytest
from datetime import datetime, timedelta, timezone

from pipeline.run import build_parser, main
from storage.loaders import (
    get_connection,
    init_database,
    upsert_portfolio_snapshots,
    upsert_protocol_positions,
)


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)

ENV_VARS = [
    'ANALYTICS_CONFIG_PATH',
    'ANALYTICS_DB_PATH',
    'MIN_CORRELATION_SAMPLE_SIZE',
    'ROLLING_VOLATILITY_WINDOW',
    'ANNUALIZATION_DAYS',
    'SIGNIFICANCE_LEVEL',
    'HIGH_CORRELATION_THRESHOLD',
    'ANALYTICS_TIMEFRAMES',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'analytics.yml'
    path.write_text("timeframes: ['7d', 'all']\n")
    return path


@pytest.fixture
def db_path(tmp_path):
    """Database with one portfolio that has history and one that has a single snapshot."""
    path = tmp_path / 'data' / 'analytics.db'
    path.parent.mkdir()

    conn = get_connection(str(path))
    init_database(conn)
    upsert_portfolio_snapshots(conn, [
        {'portfolio_id': 'main', 'timestamp': T0 + timedelta(days=i), 'total_usd_value': value}
        for i, value in enumerate(['1000', '1100', '990'])
    ])
    upsert_portfolio_snapshots(conn, [
        {'portfolio_id': 'fresh', 'timestamp': T0, 'total_usd_value': '50'},
    ])
    upsert_protocol_positions(conn, [
        {'portfolio_id': 'main', 'protocol_id': 'aave', 'value_usd': '1000'},
    ])
    conn.close()
    return path


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Only the job is required."""
        args = build_parser().parse_args(['performance'])

        assert args.job == 'performance'
        assert args.as_of is None
        assert args.portfolios is None
        assert args.quiet is False

    def test_as_of_and_portfolios(self):
        """--as-of is parsed to UTC; --portfolio repeats."""
        args = build_parser().parse_args([
            'all', '--as-of', '2024-01-02T00:00:00Z', '--portfolio', 'a', '--portfolio', 'b'
        ])

        assert args.as_of == T0 + timedelta(days=1)
        assert args.portfolios == ['a', 'b']

    def test_invalid_as_of(self):
        """Bad timestamps are usage errors."""
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(['risk', '--as-of', 'soon'])

        assert exc.value.code == 2

    def test_unknown_job(self):
        """Only the known jobs are accepted."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(['backfill'])


class TestMain:
    """Tests for end-to-end CLI runs."""

    def test_performance(self, db_path, config_file, capsys):
        """Metrics are computed and displayed; short histories show as insufficient."""
        exit_code = main(['performance', '--db-path', str(db_path), '--config', str(config_file)])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert 'performance results' in out
        assert 'Metrics stored: 4' in out
        assert '📈 main' in out
        assert 'insufficient data' in out

    def test_all_quiet(self, db_path, config_file, capsys):
        """Quiet mode prints one line per job."""
        exit_code = main(['all', '-q', '--db-path', str(db_path), '--config', str(config_file)])

        lines = capsys.readouterr().out.strip().splitlines()
        assert exit_code == 0
        assert len(lines) == 2
        assert 'performance' in lines[0]
        assert 'risk' in lines[1]

    def test_portfolio_filter(self, db_path, config_file, capsys):
        """Only the selected portfolio is processed and shown."""
        main(['performance', '--portfolio', 'main', '--db-path', str(db_path), '--config', str(config_file)])

        out = capsys.readouterr().out
        assert 'Portfolios processed: 1' in out
        assert 'fresh' not in out

    def test_creates_database(self, tmp_path, config_file):
        """A missing database file and directory are created."""
        path = tmp_path / 'new' / 'analytics.db'

        exit_code = main(['risk', '-q', '--db-path', str(path), '--config', str(config_file)])

        assert exit_code == 0
        assert path.exists()

    def test_config_error(self, db_path, tmp_path, capsys):
        """A missing config file is reported with a non-zero exit."""
        exit_code = main(['performance', '--db-path', str(db_path), '--config', str(tmp_path / 'nope.yml')])

        assert exit_code == 1
        assert 'Configuration error' in capsys.readouterr().err
