"""Price history for aggregated market values.

Every fresh aggregate is appended to ``price_history`` so values can be
charted over time. Writes are best effort from the engine's point of view.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone

from ..common.config import Config
from ..common.database import get_connection
from .models import DATA_SOURCE, AggregateResult

logger = logging.getLogger(__name__)


class PriceHistory:
    """Append and query market value history rows."""

    LISTING_TYPE = "market_value"

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()

    def record(self, result: AggregateResult, metadata: dict | None = None) -> None:
        """Insert one row for a successful aggregate.

        Raises:
            ValueError: ``result`` is not a successful aggregate.
        """
        if not result.success:
            raise ValueError("only successful aggregates are recorded")

        query = result.query
        conn = get_connection(self.config)
        try:
            conn.execute(
                """
                INSERT INTO price_history
                    (timestamp, query, make, model, year, avg_price, min_price,
                     max_price, data_source, listing_type, item_count, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.timestamp,
                    query.label,
                    query.make.lower(),
                    query.model.lower(),
                    query.year,
                    result.avg,
                    result.low,
                    result.high,
                    DATA_SOURCE,
                    self.LISTING_TYPE,
                    result.price_count,
                    json.dumps(metadata or {}),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def daily_values(
        self,
        make: str,
        model: str,
        year: int,
        days: int = 30,
        now: datetime | None = None,
    ) -> list[dict]:
        """Per-day average value over the last ``days`` days, oldest first.

        Returns:
            List of dicts with keys: day, avg_value, data_points.
        """
        now = now or datetime.now(timezone.utc)
        since = (now - timedelta(days=days)).isoformat()

        conn = get_connection(self.config)
        try:
            rows = conn.execute(
                """
                SELECT substr(timestamp, 1, 10) AS day,
                       ROUND(AVG(avg_price), 2) AS avg_value,
                       COUNT(*) AS data_points
                FROM price_history
                WHERE make = ? AND model = ? AND year = ?
                  AND data_source = ?
                  AND timestamp >= ?
                  AND avg_price > 0
                GROUP BY day
                ORDER BY day
                """,
                (make.strip().lower(), model.strip().lower(), year, DATA_SOURCE, since),
            ).fetchall()
        finally:
            conn.close()

        return [
            {"day": row["day"], "avg_value": row["avg_value"], "data_points": row["data_points"]}
            for row in rows
        ]
