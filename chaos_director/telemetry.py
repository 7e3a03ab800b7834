"""Telemetry for served events, planner outcomes and rollbacks."""
from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Types of metrics tracked."""
    EVENT = "event"
    PLANNER = "planner"
    ROLLBACK = "rollback"
    ERROR = "error"


@dataclass
class MetricEvent:
    """Individual metric event."""
    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tick: int = 0
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class TelemetryCollector:
    """Buffers metrics in memory and flushes them to SQLite."""

    def __init__(self, db_path: Optional[Path] = None, flush_threshold: int = 50):
        self.db_path = Path(db_path) if db_path else Path("chaos_telemetry.db")
        self._init_database()
        self._buffer: List[MetricEvent] = []
        self._flush_threshold = max(1, flush_threshold)

    def _init_database(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    tick INTEGER NOT NULL,
                    metric_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value REAL NOT NULL,
                    tags TEXT,
                    metadata TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_type_name
                ON metrics(metric_type, name)
            """)
            conn.commit()

    def track_event(
        self,
        tick: int,
        event_type: str,
        player_id: str,
        success: bool,
        duration_ms: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        """Track one event execution attempt."""
        self.record(
            MetricType.EVENT,
            event_type,
            1.0,
            tick=tick,
            tags={"player_id": player_id, "success": str(success)},
            metadata={"duration_ms": duration_ms, "params": params or {}},
        )

    def track_planner(
        self,
        source: str,
        success: bool,
        duration_ms: float = 0.0,
        error: Optional[str] = None,
        tick: int = 0,
    ):
        """Track a planner outcome (external or heuristic)."""
        self.record(
            MetricType.PLANNER,
            source,
            duration_ms,
            tick=tick,
            tags={"success": str(success)},
            metadata={"error": error} if error else {},
        )

    def track_rollback(self, tick: int, region: str, cells: int, success: bool):
        self.record(
            MetricType.ROLLBACK,
            region,
            float(cells),
            tick=tick,
            tags={"success": str(success)},
        )

    def track_error(self, error_type: str, tick: int = 0, player_id: Optional[str] = None, details: Optional[str] = None):
        """Track errors and failures."""
        tags = {}
        if player_id:
            tags["player_id"] = player_id
        self.record(
            MetricType.ERROR,
            error_type,
            1.0,
            tick=tick,
            tags=tags,
            metadata={"details": details} if details else {},
        )

    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tick: int = 0,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Record a metric event."""
        self._buffer.append(
            MetricEvent(
                timestamp=time.time(),
                metric_type=metric_type,
                name=name,
                value=value,
                tick=tick,
                tags=tags or {},
                metadata=metadata or {},
            )
        )
        if len(self._buffer) >= self._flush_threshold:
            self.flush()

    def flush(self):
        """Flush buffered metrics to database."""
        if not self._buffer:
            return
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.executemany(
                    """
                    INSERT INTO metrics
                    (timestamp, tick, metric_type, name, value, tags, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            event.timestamp,
                            event.tick,
                            event.metric_type.value,
                            event.name,
                            event.value,
                            json.dumps(event.tags),
                            json.dumps(event.metadata, default=str),
                        )
                        for event in self._buffer
                    ],
                )
                conn.commit()
            logger.debug("Flushed %s metrics to database", len(self._buffer))
            self._buffer.clear()
        except sqlite3.Error as exc:
            logger.error("Failed to flush metrics: %s", exc)

    def event_counts(self, successful_only: bool = True) -> Dict[str, int]:
        """Served events per type."""
        self.flush()
        query = "SELECT name, COUNT(*) FROM metrics WHERE metric_type = ?"
        params: List[Any] = [MetricType.EVENT.value]
        if successful_only:
            query += " AND json_extract(tags, '$.success') = 'True'"
        query += " GROUP BY name ORDER BY COUNT(*) DESC"
        with sqlite3.connect(self.db_path) as conn:
            return {row[0]: row[1] for row in conn.execute(query, params).fetchall()}

    def target_counts(self) -> Dict[str, int]:
        """Successful events per player."""
        self.flush()
        query = """
            SELECT json_extract(tags, '$.player_id') AS player, COUNT(*)
            FROM metrics
            WHERE metric_type = ? AND json_extract(tags, '$.success') = 'True'
            GROUP BY player
        """
        with sqlite3.connect(self.db_path) as conn:
            return {row[0]: row[1] for row in conn.execute(query, [MetricType.EVENT.value]).fetchall()}

    def planner_summary(self) -> Dict[str, Dict[str, Any]]:
        """Attempts, success rate and mean latency per planner source."""
        self.flush()
        query = """
            SELECT
                name,
                COUNT(*) AS attempts,
                AVG(CASE WHEN json_extract(tags, '$.success') = 'True' THEN 1 ELSE 0 END),
                AVG(value)
            FROM metrics
            WHERE metric_type = ?
            GROUP BY name
        """
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(query, [MetricType.PLANNER.value]).fetchall()
        return {
            row[0]: {"attempts": row[1], "success_rate": row[2] or 0.0, "avg_duration_ms": row[3] or 0.0}
            for row in rows
        }

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        self.flush()
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT tick, metric_type, name, value, tags FROM metrics ORDER BY id DESC LIMIT ?",
                [max(1, limit)],
            ).fetchall()
        return [
            {"tick": row[0], "type": row[1], "name": row[2], "value": row[3], "tags": json.loads(row[4] or "{}")}
            for row in rows
        ]


__all__ = ["MetricEvent", "MetricType", "TelemetryCollector"]
