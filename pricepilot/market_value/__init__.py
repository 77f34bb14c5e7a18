"""Vehicle market value aggregation across listing sources."""

from .cache import DurableCache, MemoryCache
from .engine import AggregationEngine, summarize
from .models import AggregateResult, CacheEntry, SourceResult, VehicleQuery
from .price_history import PriceHistory
from .service import handle_request

__all__ = [
    "AggregateResult",
    "AggregationEngine",
    "CacheEntry",
    "DurableCache",
    "MemoryCache",
    "PriceHistory",
    "SourceResult",
    "VehicleQuery",
    "handle_request",
    "summarize",
]
