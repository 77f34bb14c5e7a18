"""Request/response boundary for market value lookups.

Turns a JSON-like payload into a (status, body) pair:

    400  validation error       {"error": ..., "success": false}
    200  market value found     AggregateResult.to_response()
    404  no prices anywhere     AggregateResult.to_response() with error
    500  unexpected failure     {"error": ..., "success": false}
"""

from __future__ import annotations

import logging
from typing import Any

from ..common.errors import ValidationError
from .engine import AggregationEngine
from .models import VehicleQuery

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal error while looking up market value"


def handle_request(payload: Any, engine: AggregationEngine) -> tuple[int, dict]:
    """Validate ``payload``, run the engine and map the outcome to a status."""
    try:
        query = VehicleQuery.from_payload(payload)
    except ValidationError as exc:
        logger.info("Rejected market value request: %s (%s)", exc, ", ".join(exc.fields))
        return 400, {"error": str(exc), "success": False}

    try:
        result = engine.get_market_value(query)
    except Exception:
        logger.exception("Market value lookup failed for %s", query.label)
        return 500, {"error": INTERNAL_ERROR_MESSAGE, "success": False}

    return (200 if result.success else 404), result.to_response()
