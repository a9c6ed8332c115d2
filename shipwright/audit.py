"""Append-only SQLite log of pipeline run summaries."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from shipwright._log import get_logger
from shipwright._redact import scrub_secrets
from shipwright.config import ensure_private_dir, get_audit_db_path, secure_file
from shipwright.engine import RunSummary

logger = get_logger("audit")

_CREATE_TABLE = """\
CREATE TABLE IF NOT EXISTS run_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL,
    pipeline TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    status TEXT NOT NULL,
    version TEXT,
    profile TEXT,
    failed_step TEXT,
    duration_ms INTEGER NOT NULL,
    summary_json TEXT NOT NULL
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_run_pipeline ON run_log (pipeline);",
    "CREATE INDEX IF NOT EXISTS idx_run_timestamp ON run_log (timestamp);",
    "CREATE INDEX IF NOT EXISTS idx_run_id ON run_log (run_id);",
]

_INSERT = """\
INSERT INTO run_log (
    run_id, pipeline, timestamp, status, version, profile,
    failed_step, duration_ms, summary_json
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
"""


@dataclass
class RunRecord:
    run_id: str
    pipeline: str
    timestamp: str
    status: str
    version: str | None
    profile: str | None
    failed_step: str | None
    duration_ms: int
    summary_json: str


def _row_to_record(row: sqlite3.Row) -> RunRecord:
    return RunRecord(
        run_id=row["run_id"],
        pipeline=row["pipeline"],
        timestamp=row["timestamp"],
        status=row["status"],
        version=row["version"],
        profile=row["profile"],
        failed_step=row["failed_step"],
        duration_ms=row["duration_ms"],
        summary_json=row["summary_json"],
    )


class AuditLogger:
    """Append-only run logger backed by SQLite."""

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or get_audit_db_path()
        ensure_private_dir(self._db_path.parent)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute(_CREATE_TABLE)
            for stmt in _CREATE_INDEXES:
                self._conn.execute(stmt)
            self._conn.commit()
        secure_file(self._db_path)

    def log(self, summary: RunSummary, *, literals: list[str] | None = None) -> None:
        """Insert one summary. Failures are logged, never raised into the run."""
        payload = scrub_secrets(summary.to_json(indent=None), literals or [])
        try:
            with self._lock:
                self._conn.execute(
                    _INSERT,
                    (
                        summary.run_id,
                        summary.pipeline,
                        datetime.now(UTC).isoformat(),
                        summary.status,
                        summary.version,
                        summary.profile,
                        summary.failed_step,
                        summary.duration_ms,
                        payload,
                    ),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            logger.warning("Failed to write audit record for run %s: %s", summary.run_id, e)

    def query(self, *, pipeline: str | None = None, limit: int = 20) -> list[RunRecord]:
        sql = "SELECT * FROM run_log"
        params: list[object] = []
        if pipeline:
            sql += " WHERE pipeline = ?"
            params.append(pipeline)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_record(r) for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
