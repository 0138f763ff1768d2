"""Session telemetry in a local sqlite file.

Metric names recorded by the orchestrator:
    decode_error             1 per dropped SSE frame      tags: reason
    session_outcome          1 per finished session       tags: state, tier
    session_latency_seconds  dispatch -> terminal state   tags: state
    artifacts_written        files written per materialization
    artifact_failures        files failed per materialization
"""
from __future__ import annotations

import csv
import json
import re
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path

_WINDOW_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
DEFAULT_WINDOW_SECONDS = 86400.0

_SCHEMA = """
CREATE TABLE IF NOT EXISTS session_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    recorded_at REAL NOT NULL,
    name TEXT NOT NULL,
    value REAL NOT NULL,
    tags TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_session_metrics_name_time
    ON session_metrics(name, recorded_at);
"""


def _window_seconds(time_range: str) -> float:
    """Parse "45s", "30m", "24h", "7d". Anything else means one day."""
    match = re.fullmatch(r"\s*(\d+)\s*([smhd])\s*", time_range or "")
    if match is None:
        return DEFAULT_WINDOW_SECONDS
    return float(int(match.group(1)) * _WINDOW_UNITS[match.group(2)])


class TelemetryCollector:
    """Append-only metric log with windowed summaries."""

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._open() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def record_metric(
        self,
        metric_type: str,
        value: float,
        tags: dict | None = None,
    ) -> None:
        with self._open() as conn:
            conn.execute(
                "INSERT INTO session_metrics(recorded_at, name, value, tags) VALUES (?, ?, ?, ?)",
                (time.time(), metric_type, float(value), json.dumps(tags or {}, sort_keys=True)),
            )

    def get_summary(self, time_range: str = "24h") -> dict:
        """Aggregate the metrics recorded within *time_range*."""
        since = time.time() - _window_seconds(time_range)
        with self._open() as conn:
            totals = {
                row["name"]: row
                for row in conn.execute(
                    """
                    SELECT name, SUM(value) AS total, AVG(value) AS mean
                    FROM session_metrics
                    WHERE recorded_at >= ?
                    GROUP BY name
                    """,
                    (since,),
                )
            }
            outcome_rows = conn.execute(
                "SELECT value, tags FROM session_metrics WHERE name = ? AND recorded_at >= ?",
                ("session_outcome", since),
            ).fetchall()

        by_state: dict[str, int] = {}
        for row in outcome_rows:
            state = str(json.loads(row["tags"]).get("state", "unknown"))
            by_state[state] = by_state.get(state, 0) + int(row["value"])

        def total(name: str) -> int:
            row = totals.get(name)
            return int(row["total"]) if row is not None else 0

        latency = totals.get("session_latency_seconds")
        return {
            "sessions_by_outcome": by_state,
            "avg_session_latency_seconds": float(latency["mean"]) if latency is not None else 0.0,
            "decode_errors": total("decode_error"),
            "artifacts_written": total("artifacts_written"),
            "artifact_failures": total("artifact_failures"),
        }

    def export_csv(self, metric_type: str, output_path: Path) -> int:
        """Write every *metric_type* row to *output_path*. Returns the row count."""
        with self._open() as conn:
            rows = conn.execute(
                "SELECT recorded_at, value, tags FROM session_metrics WHERE name = ? ORDER BY id",
                (metric_type,),
            ).fetchall()

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(["recorded_at", "metric", "value", "tags"])
            for row in rows:
                stamp = datetime.fromtimestamp(row["recorded_at"], tz=timezone.utc)
                writer.writerow([stamp.isoformat(), metric_type, row["value"], row["tags"]])
        return len(rows)
