"""SQLite connection and schema management.

Backs the durable cache tier, the scraping audit log and the price
history. Every caller opens its own short-lived connection, so the
tables can be shared across threads and processes.
"""

from __future__ import annotations

import logging
import sqlite3

from .config import Config

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS vehicle_value_cache (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cache_key TEXT NOT NULL UNIQUE,
    make TEXT NOT NULL,
    model TEXT NOT NULL,
    year INTEGER NOT NULL,
    value_data TEXT NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_vehicle_cache_created_at
    ON vehicle_value_cache(created_at DESC);

CREATE TABLE IF NOT EXISTS scraping_audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    action TEXT NOT NULL,
    target TEXT NOT NULL,
    status_code INTEGER NOT NULL DEFAULT 0,
    response_time_ms INTEGER NOT NULL DEFAULT 0,
    source TEXT NOT NULL,
    query_key TEXT,
    proxy_used TEXT,
    cache_hit INTEGER,
    error TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp
    ON scraping_audit_log(timestamp);

CREATE INDEX IF NOT EXISTS idx_audit_action
    ON scraping_audit_log(action);

CREATE INDEX IF NOT EXISTS idx_audit_source
    ON scraping_audit_log(source);

CREATE TABLE IF NOT EXISTS price_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    query TEXT NOT NULL,
    make TEXT NOT NULL,
    model TEXT NOT NULL,
    year INTEGER NOT NULL,
    avg_price REAL NOT NULL,
    min_price REAL,
    max_price REAL,
    data_source TEXT NOT NULL,
    listing_type TEXT NOT NULL,
    item_count INTEGER NOT NULL DEFAULT 0,
    metadata TEXT
);

CREATE INDEX IF NOT EXISTS idx_price_history_vehicle
    ON price_history(make, model, year, timestamp);
"""


def get_connection(config: Config | None = None) -> sqlite3.Connection:
    """Get a SQLite connection with row factory enabled.

    Args:
        config: Optional Config. Uses defaults if not provided.

    Returns:
        sqlite3.Connection with Row factory.
    """
    config = config or Config()
    db_path = config.database_abs_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=5.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db(config: Config | None = None) -> None:
    """Initialize database schema (idempotent).

    Args:
        config: Optional Config. Uses defaults if not provided.
    """
    config = config or Config()
    conn = get_connection(config)
    try:
        conn.executescript(_SCHEMA_SQL)
        conn.commit()
        logger.info("Database schema initialized at %s", config.database_abs_path)
    finally:
        conn.close()
