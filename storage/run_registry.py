"""
Run registry - every analytics job execution gets one row in `runs`.
Records the job name, lifecycle status, scope/row counts and any error.
"""

import sqlite3
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class RunStatus(str, Enum):
    """Lifecycle of a job run."""
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class RunNotFoundError(Exception):
    """Raised when a run ID has no row in the registry."""
    pass


_RUN_COLUMNS = (
    'run_id', 'job_name', 'started_at', 'finished_at',
    'status', 'rows_in', 'rows_out', 'error_message',
)
_SELECT_RUNS = f"SELECT {', '.join(_RUN_COLUMNS)} FROM runs"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def start_run(
    conn: sqlite3.Connection,
    job_name: str,
    started_at: Optional[datetime] = None
) -> int:
    """
    Register a job run as running.

    Args:
        conn: SQLite connection
        job_name: Job identifier, e.g. 'performance_metrics'
        started_at: Start timestamp (defaults to now, UTC)

    Returns:
        run_id of the new row
    """
    cursor = conn.execute(
        "INSERT INTO runs (job_name, started_at, status) VALUES (?, ?, ?)",
        (job_name, (started_at or _utcnow()).isoformat(), RunStatus.RUNNING.value)
    )
    conn.commit()
    return cursor.lastrowid


def finish_run(
    conn: sqlite3.Connection,
    run_id: int,
    status: RunStatus,
    finished_at: Optional[datetime] = None,
    rows_in: Optional[int] = None,
    rows_out: Optional[int] = None,
    error_message: Optional[str] = None
) -> None:
    """
    Close a run with its final status and counts.

    Args:
        conn: SQLite connection
        run_id: ID returned by start_run()
        status: COMPLETED or FAILED (enum or its string value)
        finished_at: End timestamp (defaults to now, UTC)
        rows_in: Scopes the job was asked to process
        rows_out: Output rows persisted
        error_message: Why the run failed, if it did

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    cursor = conn.execute(
        """
        UPDATE runs
        SET status = ?, finished_at = ?, rows_in = ?, rows_out = ?, error_message = ?
        WHERE run_id = ?
        """,
        (
            RunStatus(status).value,
            (finished_at or _utcnow()).isoformat(),
            rows_in,
            rows_out,
            error_message,
            run_id,
        )
    )

    if cursor.rowcount == 0:
        conn.rollback()
        raise RunNotFoundError(f"Run ID {run_id} not found")

    conn.commit()


def _row_to_run(row: tuple) -> Dict[str, Any]:
    run = dict(zip(_RUN_COLUMNS, row))
    run['started_at'] = _parse_ts(run['started_at'])
    run['finished_at'] = _parse_ts(run['finished_at'])
    run['status'] = RunStatus(run['status'])

    if run['started_at'] and run['finished_at']:
        run['duration_seconds'] = int((run['finished_at'] - run['started_at']).total_seconds())
    else:
        run['duration_seconds'] = None

    return run


def get_run_status(conn: sqlite3.Connection, run_id: int) -> Dict[str, Any]:
    """
    Look up one run, including its duration once finished.

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    row = conn.execute(f"{_SELECT_RUNS} WHERE run_id = ?", (run_id,)).fetchone()
    if row is None:
        raise RunNotFoundError(f"Run ID {run_id} not found")

    return _row_to_run(row)


def list_recent_runs(
    conn: sqlite3.Connection,
    limit: int = 50,
    job_name: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Runs ordered newest first, optionally for a single job.

    Args:
        conn: SQLite connection
        limit: Maximum number of runs to return
        job_name: Only runs of this job

    Returns:
        List of run dictionaries as returned by get_run_status()
    """
    query = _SELECT_RUNS
    params: List[Any] = []

    if job_name:
        query += " WHERE job_name = ?"
        params.append(job_name)

    query += " ORDER BY started_at DESC, run_id DESC LIMIT ?"
    params.append(limit)

    return [_row_to_run(row) for row in conn.execute(query, params).fetchall()]
