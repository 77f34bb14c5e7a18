"""Data models for vehicle market value lookups.

Maps to the API contract:
    request  { make, model, year, mileage?, trim?, zipCode? }
    response { make, model, year, low, avg, high, currency, source,
               timestamp, cacheHit, perSource, success, error? }
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..common.errors import FailureKind, ValidationError

NO_DATA_MESSAGE = "No market data found for this vehicle"
REQUIRED_FIELDS_MESSAGE = "make, model & year are required"
DATA_SOURCE = "multi_source_scrape"


class VehicleQuery(BaseModel):
    """Validated, immutable vehicle lookup."""

    make: str = Field(min_length=1)
    model: str = Field(min_length=1)
    year: int = Field(gt=0)
    mileage: int | None = Field(default=None, ge=0)
    trim: str | None = None
    zip_code: str | None = Field(default=None, alias="zipCode")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "str_strip_whitespace": True,
    }

    @field_validator("trim", "zip_code")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return value or None

    @classmethod
    def from_payload(cls, payload: Any) -> VehicleQuery:
        """Build a query from a JSON-like mapping.

        Raises:
            ValidationError: required fields missing or malformed.
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(REQUIRED_FIELDS_MESSAGE, ["make", "model", "year"])

        missing = [
            name for name in ("make", "model", "year")
            if payload.get(name) in (None, "", 0)
            or (isinstance(payload.get(name), str) and not payload[name].strip())
        ]
        if missing:
            raise ValidationError(REQUIRED_FIELDS_MESSAGE, missing)

        try:
            return cls.model_validate(dict(payload))
        except PydanticValidationError as exc:
            bad = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
            raise ValidationError(f"Invalid vehicle query: {', '.join(bad)}", bad) from exc

    @property
    def cache_key(self) -> str:
        """Lower-case, field-ordered key shared by both cache tiers."""
        parts = [
            self.make,
            self.model,
            str(self.year),
            "" if self.mileage is None else str(self.mileage),
            self.trim or "",
            self.zip_code or "",
        ]
        return ":".join(p.strip().lower() for p in parts)

    @property
    def label(self) -> str:
        return f"{self.year} {self.make} {self.model}"


@dataclass(frozen=True)
class SourceResult:
    """One fan-out branch's contribution."""

    source_name: str
    prices: tuple[float, ...] = ()
    succeeded: bool = False
    response_time_ms: int = 0
    extracted_at: float = field(default_factory=time.time)
    failure: FailureKind | None = None
    error: str | None = None
    from_cache: bool = False

    @property
    def count(self) -> int | None:
        """Contribution count, or None when the source could not be read."""
        return len(self.prices) if self.succeeded else None


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload. Logically absent once older than ``ttl``."""

    key: str
    payload: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


def _as_number(value: float | int | None) -> float | int | None:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


@dataclass(frozen=True)
class AggregateResult:
    """Summary statistics for one query.

    When ``success`` is True, ``low <= avg <= high`` and ``price_count > 0``.
    When False, the statistics are None and ``error`` is set.
    """

    query: VehicleQuery
    success: bool
    timestamp: str
    per_source: dict[str, int | None] = field(default_factory=dict)
    low: float | None = None
    avg: float | None = None
    high: float | None = None
    price_count: int = 0
    currency: str = "USD"
    cache_hit: bool = False
    error: str | None = None

    def to_response(self) -> dict:
        """JSON envelope returned to callers."""
        body: dict[str, Any] = {
            "make": self.query.make,
            "model": self.query.model,
            "year": self.query.year,
        }
        if self.success:
            body["low"] = _as_number(self.low)
            body["avg"] = _as_number(self.avg)
            body["high"] = _as_number(self.high)
        body.update(
            {
                "currency": self.currency,
                "source": DATA_SOURCE,
                "timestamp": self.timestamp,
                "cacheHit": self.cache_hit,
                "perSource": dict(self.per_source),
                "success": self.success,
            }
        )
        if self.error:
            body["error"] = self.error
        return body

    def to_cache_payload(self) -> dict:
        """Serializable form stored in the durable tier."""
        return {
            "low": _as_number(self.low),
            "avg": _as_number(self.avg),
            "high": _as_number(self.high),
            "price_count": self.price_count,
            "currency": self.currency,
            "timestamp": self.timestamp,
            "per_source": dict(self.per_source),
        }

    @classmethod
    def from_cache_payload(cls, query: VehicleQuery, payload: Mapping) -> AggregateResult:
        return cls(
            query=query,
            success=True,
            timestamp=payload["timestamp"],
            per_source=dict(payload.get("per_source") or {}),
            low=payload["low"],
            avg=payload["avg"],
            high=payload["high"],
            price_count=payload.get("price_count", 0),
            currency=payload.get("currency", "USD"),
            cache_hit=True,
        )
