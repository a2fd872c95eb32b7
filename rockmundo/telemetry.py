"""Telemetry and resolution metrics tracking for the Rockmundo engine."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Types of metrics tracked."""
    RESOLUTION = "resolution"
    ERROR_RATE = "error_rate"
    PERFORMANCE = "performance"
    ECONOMY_BALANCE = "economy_balance"
    SYSTEM_EVENT = "system_event"


@dataclass
class MetricEvent:
    """Individual metric event."""
    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class TelemetryCollector:
    """Collects and stores telemetry data for resolution runs."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize telemetry collector with database storage."""
        self.db_path = db_path or Path(os.getenv("ROCKMUNDO_TELEMETRY_DB", "telemetry.db"))
        self._init_database()
        self._start_time = time.time()
        self._metrics_buffer: List[MetricEvent] = []
        self._flush_interval = 60  # Flush to DB every 60 seconds
        self._last_flush = time.time()

    def _init_database(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    metric_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value REAL NOT NULL,
                    tags TEXT,
                    metadata TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_timestamp
                ON metrics(timestamp DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_type_name
                ON metrics(metric_type, name)
            """)
            conn.commit()

    def track_resolution(
        self,
        domain: str,
        status: str,
        *,
        outcome_code: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        """Track one unit passing through the resolver."""
        tags = {"domain": domain, "status": status}
        if outcome_code:
            tags["outcome"] = outcome_code
        if reason:
            tags["reason"] = reason
        self.record(MetricType.RESOLUTION, f"{domain}.{status}", 1.0, tags)

    def track_error(
        self,
        error_type: str,
        domain: Optional[str] = None,
        stage: Optional[str] = None,
        error_details: Optional[str] = None,
    ):
        """Track errors and exceptions."""
        tags = {"error_type": error_type}
        if domain:
            tags["domain"] = domain
        if stage:
            tags["stage"] = stage

        self.record(
            MetricType.ERROR_RATE,
            error_type,
            1.0,
            tags,
            {"details": error_details} if error_details else None,
        )

    def track_performance(
        self,
        operation: str,
        duration_ms: float,
        tags: Optional[Dict[str, str]] = None,
    ):
        """Track operation performance metrics."""
        self.record(MetricType.PERFORMANCE, operation, duration_ms, tags or {})

    def track_economy_balance(
        self,
        currency: str,
        delta: float,
        domain: str,
    ):
        """Track cash, fame or experience credited by resolutions."""
        self.record(
            MetricType.ECONOMY_BALANCE,
            currency,
            delta,
            {"domain": domain},
        )

    def track_system_event(
        self,
        event: str,
        source: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        tags = {"event": event}
        if source:
            tags["source"] = source
        self.record(
            MetricType.SYSTEM_EVENT,
            event,
            1.0,
            tags,
            {"reason": reason} if reason else None,
        )

    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """Record a metric event."""
        event = MetricEvent(
            timestamp=time.time(),
            metric_type=metric_type,
            name=name,
            value=value,
            tags=tags or {},
            metadata=metadata or {}
        )

        self._metrics_buffer.append(event)

        # Auto-flush if buffer is getting large or enough time has passed
        if len(self._metrics_buffer) >= 100 or \
           time.time() - self._last_flush > self._flush_interval:
            self.flush()

    def flush(self):
        """Flush buffered metrics to database."""
        if not self._metrics_buffer:
            return

        try:
            with sqlite3.connect(self.db_path) as conn:
                for event in self._metrics_buffer:
                    conn.execute("""
                        INSERT INTO metrics
                        (timestamp, metric_type, name, value, tags, metadata)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (
                        event.timestamp,
                        event.metric_type.value,
                        event.name,
                        event.value,
                        json.dumps(event.tags),
                        json.dumps(event.metadata)
                    ))
                conn.commit()

            logger.info(f"Flushed {len(self._metrics_buffer)} metrics to database")
            self._metrics_buffer.clear()
            self._last_flush = time.time()

        except sqlite3.Error as e:
            logger.error(f"Failed to flush metrics: {e}")

    def get_resolution_summary(
        self,
        start_time: Optional[float] = None,
        end_time: Optional[float] = None,
    ) -> Dict[str, Dict[str, int]]:
        """Counts of completed/skipped/failed units per domain."""
        self.flush()

        query = """
            SELECT json_extract(tags, '$.domain') AS domain,
                   json_extract(tags, '$.status') AS status,
                   COUNT(*) AS total
            FROM metrics
            WHERE metric_type = ?
        """
        params: List[Any] = [MetricType.RESOLUTION.value]
        if start_time:
            query += " AND timestamp >= ?"
            params.append(start_time)
        if end_time:
            query += " AND timestamp <= ?"
            params.append(end_time)
        query += " GROUP BY domain, status"

        summary: Dict[str, Dict[str, int]] = {}
        with sqlite3.connect(self.db_path) as conn:
            for domain, status, total in conn.execute(query, params).fetchall():
                summary.setdefault(domain or "unknown", {})[status or "unknown"] = total
        return summary

    def get_outcome_distribution(self, domain: str) -> Dict[str, int]:
        """How often each outcome code was applied for one domain."""
        self.flush()

        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT json_extract(tags, '$.outcome') AS outcome, COUNT(*)
                FROM metrics
                WHERE metric_type = ? AND name = ?
                GROUP BY outcome
                """,
                (MetricType.RESOLUTION.value, f"{domain}.completed"),
            ).fetchall()
        return {outcome: count for outcome, count in rows if outcome}

    def get_error_summary(self, hours: int = 24) -> Dict[str, int]:
        """Error counts by type over the trailing window."""
        self.flush()
        cutoff = time.time() - hours * 3600

        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT name, COUNT(*)
                FROM metrics
                WHERE metric_type = ? AND timestamp >= ?
                GROUP BY name
                ORDER BY COUNT(*) DESC
                """,
                (MetricType.ERROR_RATE.value, cutoff),
            ).fetchall()
        return {name: count for name, count in rows}

    def get_performance_summary(self, hours: int = 24) -> Dict[str, Dict[str, float]]:
        self.flush()
        cutoff = time.time() - hours * 3600

        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT name, COUNT(*), AVG(value), MAX(value)
                FROM metrics
                WHERE metric_type = ? AND timestamp >= ?
                GROUP BY name
                """,
                (MetricType.PERFORMANCE.value, cutoff),
            ).fetchall()
        return {
            name: {"count": count, "avg_ms": avg or 0.0, "max_ms": peak or 0.0}
            for name, count, avg, peak in rows
        }

    def generate_report(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": time.time() - self._start_time,
            "resolutions": self.get_resolution_summary(),
            "errors": self.get_error_summary(),
            "performance": self.get_performance_summary(),
        }

    def cleanup_old_data(self, days_to_keep: int = 30):
        """Clean up old telemetry data."""
        cutoff_time = time.time() - (days_to_keep * 86400)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM metrics WHERE timestamp < ?",
                (cutoff_time,)
            )
            deleted = cursor.rowcount
            conn.commit()

        logger.info(f"Cleaned up {deleted} old metric events")
        return deleted


# Singleton instance
_telemetry: Optional[TelemetryCollector] = None


def get_telemetry() -> TelemetryCollector:
    """Get or create singleton telemetry collector."""
    global _telemetry
    if _telemetry is None:
        _telemetry = TelemetryCollector()
    return _telemetry


# Context manager for timing operations
class track_duration:
    """Context manager for tracking operation duration."""

    def __init__(
        self,
        operation: str,
        tags: Optional[Dict[str, str]] = None,
        telemetry: Optional[TelemetryCollector] = None,
    ):
        self.operation = operation
        self.tags = tags or {}
        self.telemetry = telemetry
        self.start_time = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.time() - self.start_time) * 1000
        telemetry = self.telemetry or get_telemetry()
        telemetry.track_performance(self.operation, self.duration_ms, self.tags)

        # Track error if exception occurred
        if exc_type:
            telemetry.track_error(
                exc_type.__name__,
                domain=self.tags.get("domain"),
                stage=self.operation,
                error_details=str(exc_val)
            )


__all__ = ["MetricEvent", "MetricType", "TelemetryCollector", "get_telemetry", "track_duration"]
