"""Error taxonomy shared by the fetching and aggregation layers.

Only ``ValidationError`` is raised across the engine boundary. Every other
failure is a ``FailureKind`` carried on a result object, so callers branch
on the variant instead of parsing messages.
"""

from __future__ import annotations

from enum import Enum


class MarketValueError(Exception):
    """Base class for engine exceptions."""


class ValidationError(MarketValueError):
    """A required query field is missing or malformed."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class FailureKind(str, Enum):
    """Non-fatal failure variants recorded by the engine."""

    PROXY_UNAVAILABLE = "proxy_unavailable"
    ANTI_BOT_DETECTED = "anti_bot_detected"
    TRANSPORT_ERROR = "transport_error"
    HTTP_ERROR = "http_error"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    EXTRACTION_EMPTY = "extraction_empty"
    NO_DATA_FOUND = "no_data_found"
    CACHE_WRITE_FAILURE = "cache_write_failure"
