"""Append-only scraping audit log.

Every network attempt, anti-bot detection, proxy validation and cache
decision is written to ``scraping_audit_log``. Writes are strictly a side
effect: failures are logged and dropped, never raised to the caller.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from .config import Config
from .database import get_connection

logger = logging.getLogger(__name__)


class AuditAction:
    """Action names written to the audit log."""

    PROXY_VALIDATION = "proxy_validation"
    PROXY_RETIRED = "proxy_retired"
    PROXY_UNAVAILABLE = "proxy_unavailable"
    FETCH_ATTEMPT = "fetch_attempt"
    SCRAPE_SUCCESS = "scrape_success"
    RATE_LIMITED = "rate_limited"
    ANTI_BOT_DETECTED = "anti_bot_detected"
    FETCH_FAILED = "fetch_failed"
    EXTRACTION_EMPTY = "extraction_empty"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CACHE_WRITE_FAILURE = "cache_write_failure"
    AGGREGATION_COMPLETE = "aggregation_complete"
    NO_DATA_FOUND = "no_data_found"


@dataclass(frozen=True)
class AuditEvent:
    """A single audit record. Write-once."""

    action: str
    target: str
    source: str
    status_code: int = 0
    response_time_ms: int = 0
    query_key: str | None = None
    proxy_used: str | None = None
    cache_hit: bool | None = None
    error: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "target": self.target,
            "source": self.source,
            "status_code": self.status_code,
            "response_time_ms": self.response_time_ms,
            "query_key": self.query_key,
            "proxy_used": self.proxy_used,
            "cache_hit": self.cache_hit,
            "error": self.error,
            "timestamp": self.timestamp,
        }


class AuditSink:
    """Best-effort SQLite writer for AuditEvents.

    Usage:
        sink = AuditSink(config)
        sink.record(AuditEvent("cache_miss", "honda:civic:2018:::", "engine"))
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        """Append an event. Never raises."""
        try:
            self._write(event)
        except Exception as exc:
            logger.warning("Audit write dropped (%s): %s", event.action, exc)

    def _write(self, event: AuditEvent) -> None:
        with self._lock:
            conn = get_connection(self.config)
            try:
                conn.execute(
                    """
                    INSERT INTO scraping_audit_log
                        (timestamp, action, target, status_code, response_time_ms,
                         source, query_key, proxy_used, cache_hit, error)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.timestamp,
                        event.action,
                        event.target,
                        event.status_code,
                        event.response_time_ms,
                        event.source,
                        event.query_key,
                        event.proxy_used,
                        None if event.cache_hit is None else int(event.cache_hit),
                        event.error,
                    ),
                )
                conn.commit()
            finally:
                conn.close()

    def events(
        self,
        action: str | None = None,
        since: float | None = None,
        limit: int = 500,
    ) -> list[AuditEvent]:
        """Read back recorded events, oldest first.

        Returns an empty list if the log cannot be read.
        """
        clauses: list[str] = []
        params: list = []
        if action:
            clauses.append("action = ?")
            params.append(action)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        try:
            conn = get_connection(self.config)
            try:
                rows = conn.execute(
                    f"SELECT * FROM scraping_audit_log {where} "
                    "ORDER BY timestamp, id LIMIT ?",
                    params,
                ).fetchall()
            finally:
                conn.close()
        except Exception as exc:
            logger.warning("Audit read failed: %s", exc)
            return []

        return [
            AuditEvent(
                action=row["action"],
                target=row["target"],
                source=row["source"],
                status_code=row["status_code"],
                response_time_ms=row["response_time_ms"],
                query_key=row["query_key"],
                proxy_used=row["proxy_used"],
                cache_hit=None if row["cache_hit"] is None else bool(row["cache_hit"]),
                error=row["error"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]
