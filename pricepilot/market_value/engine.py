"""Multi-source market value aggregation.

One request flows through:

    durable cache -> per-source short-TTL cache -> concurrent
    (ResilientFetcher -> SourceExtractor) branches -> tolerant fan-in ->
    statistics -> durable cache write + price history (best effort)

Branch failures become zero-contribution SourceResults; only query
validation errors leave this module as exceptions.
"""

from __future__ import annotations

import logging
import math
import sqlite3
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from statistics import fmean

from ..common.audit import AuditAction, AuditEvent, AuditSink
from ..common.config import Config
from ..common.database import init_db
from ..common.errors import FailureKind
from ..common.http_client import ResilientFetcher
from ..common.proxy_pool import ProxyPool
from .cache import DurableCache, MemoryCache
from .models import NO_DATA_MESSAGE, AggregateResult, SourceResult, VehicleQuery
from .price_history import PriceHistory
from .sources import SourceExtractor, build_extractors

logger = logging.getLogger(__name__)


def summarize(prices: Sequence[float]) -> tuple[float, float, float]:
    """(low, avg, high) with avg rounded half-up to a whole amount.

    avg is clamped into [low, high], which only matters when every price
    has cents and no whole amount lies between them.

    Raises:
        ValueError: ``prices`` is empty.
    """
    if not prices:
        raise ValueError("cannot summarize an empty price list")
    low = min(prices)
    high = max(prices)
    avg = float(math.floor(fmean(prices) + 0.5))
    return low, min(max(avg, low), high), high


class AggregationEngine:
    """Fan-out/fan-in market value lookup across listing sources.

    Usage:
        engine = AggregationEngine(Config.load())
        result = engine.get_market_value(VehicleQuery(make="Honda", model="Civic", year=2018))
        print(result.to_response())
    """

    def __init__(
        self,
        config: Config | None = None,
        proxy_pool: ProxyPool | None = None,
        fetcher: ResilientFetcher | None = None,
        extractors: Sequence[SourceExtractor] | None = None,
        source_cache: MemoryCache | None = None,
        durable_cache: DurableCache | None = None,
        audit: AuditSink | None = None,
        history: PriceHistory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or Config()
        self.audit = audit if audit is not None else AuditSink(self.config)
        # Pools and caches define __len__, so an empty one is falsy
        if proxy_pool is None:
            proxy_pool = ProxyPool(self.config, audit=self.audit)
        self.proxy_pool = proxy_pool
        if fetcher is None:
            fetcher = ResilientFetcher(self.config, proxy_pool=self.proxy_pool, audit=self.audit)
        self.fetcher = fetcher
        self.extractors = list(extractors) if extractors is not None else build_extractors(self.config)
        if source_cache is None:
            source_cache = MemoryCache(
                max_size=self.config.source_cache_size,
                ttl=self.config.source_cache_ttl,
            )
        self.source_cache = source_cache
        self.durable_cache = durable_cache if durable_cache is not None else DurableCache(self.config)
        self.history = history if history is not None else PriceHistory(self.config)
        self._clock = clock

        if audit is None or durable_cache is None or history is None:
            self._init_schema()

    def get_market_value(self, query: VehicleQuery) -> AggregateResult:
        """Look up the market value for ``query``. Never raises for I/O problems."""
        key = query.cache_key
        deadline = self._clock() + self.config.aggregation_timeout

        cached = self._durable_get(key)
        if cached is not None:
            logger.info("Returning cached market value for %s", query.label)
            self._emit(AuditAction.CACHE_HIT, key, "durable_cache", key, cache_hit=True)
            return AggregateResult.from_cache_payload(query, cached)
        self._emit(AuditAction.CACHE_MISS, key, "durable_cache", key, cache_hit=False)

        self._refresh_proxies(deadline)
        pool_stats = self.proxy_pool.stats()
        logger.info("Proxy pool stats before fan-out: %s", pool_stats.to_dict())

        results = self._collect(query, deadline)

        final_stats = self.proxy_pool.stats()
        logger.info("Proxy pool stats after fan-out: %s", final_stats.to_dict())

        result = self._build_result(query, results)

        if result.success:
            self._durable_set(query, result)
            self._record_history(result, {
                "sources": dict(result.per_source),
                "proxy_stats": final_stats.to_dict(),
            })
            self._emit(
                AuditAction.AGGREGATION_COMPLETE,
                key,
                "engine",
                key,
                cache_hit=False,
            )
        else:
            self._emit(
                AuditAction.NO_DATA_FOUND,
                key,
                "engine",
                key,
                cache_hit=False,
                error=FailureKind.NO_DATA_FOUND.value,
            )
        return result

    def _init_schema(self) -> None:
        # Self-built sinks and caches need their tables on a fresh database
        try:
            init_db(self.config)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Could not initialize database schema: %s", exc)

    def _refresh_proxies(self, deadline: float) -> None:
        """Refresh the proxy pool within its share of the remaining time.

        A refresh still running when its share is used up keeps going in
        the background and the fan-out proceeds with the current pool.
        """
        budget = max(deadline - self._clock(), 0) * self.config.proxy_refresh_share
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="proxy-refresh")
        try:
            future = executor.submit(self.proxy_pool.refresh, deadline=self._clock() + budget)
            future.result(timeout=budget)
        except FutureTimeout:
            logger.warning(
                "Proxy refresh exceeded %.1fs budget, continuing with current pool", budget
            )
        except Exception as exc:
            logger.warning("Proxy refresh failed, continuing with current pool: %s", exc)
        finally:
            executor.shutdown(wait=False)

    # --- Fan-out / fan-in ---

    def _collect(self, query: VehicleQuery, deadline: float) -> list[SourceResult]:
        """Per-source results in extractor order, whatever the completion order."""
        key = query.cache_key
        by_source: dict[str, SourceResult] = {}
        pending: dict[Future, SourceExtractor] = {}

        to_fetch: list[SourceExtractor] = []
        for extractor in self.extractors:
            source_key = f"{extractor.name}:{key}"
            prices = self.source_cache.get(source_key)
            if prices is not None:
                logger.info("[%s] short-TTL cache hit for %s", extractor.name, query.label)
                self._emit(AuditAction.CACHE_HIT, source_key, extractor.name, key, cache_hit=True)
                by_source[extractor.name] = SourceResult(
                    source_name=extractor.name,
                    prices=tuple(prices),
                    succeeded=True,
                    from_cache=True,
                )
            else:
                self._emit(AuditAction.CACHE_MISS, source_key, extractor.name, key, cache_hit=False)
                to_fetch.append(extractor)

        if to_fetch:
            executor = ThreadPoolExecutor(
                max_workers=len(to_fetch), thread_name_prefix="market-value"
            )
            try:
                for extractor in to_fetch:
                    future = executor.submit(self._run_source, extractor, query, deadline)
                    pending[future] = extractor

                done, not_done = wait(pending, timeout=max(deadline - self._clock(), 0))

                for future in done:
                    extractor = pending[future]
                    by_source[extractor.name] = future.result()

                for future in not_done:
                    extractor = pending[future]
                    future.cancel()
                    logger.warning("[%s] abandoned at aggregation deadline", extractor.name)
                    self._emit(
                        AuditAction.FETCH_FAILED,
                        extractor.build_url(query),
                        extractor.name,
                        key,
                        error=FailureKind.DEADLINE_EXCEEDED.value,
                    )
                    by_source[extractor.name] = SourceResult(
                        source_name=extractor.name,
                        failure=FailureKind.DEADLINE_EXCEEDED,
                        error="aggregation deadline elapsed",
                    )
            finally:
                # Late branches finish in the background; their results are discarded
                executor.shutdown(wait=False, cancel_futures=True)

        for extractor in to_fetch:
            result = by_source[extractor.name]
            if result.succeeded and result.prices:
                self.source_cache.set(f"{extractor.name}:{key}", list(result.prices))

        return [by_source[e.name] for e in self.extractors]

    def _run_source(
        self, extractor: SourceExtractor, query: VehicleQuery, deadline: float
    ) -> SourceResult:
        """One branch: fetch then extract. Contains every failure."""
        key = query.cache_key
        try:
            url = extractor.build_url(query)
            logger.info("[%s] scraping %s", extractor.name, url)
            fetched = self.fetcher.fetch(
                url, source=extractor.name, query_key=key, deadline=deadline
            )
            if not fetched.ok:
                self._emit(
                    AuditAction.FETCH_FAILED,
                    url,
                    extractor.name,
                    key,
                    status_code=fetched.status_code,
                    error=f"{fetched.failure.value if fetched.failure else 'unknown'}: {fetched.reason}",
                )
                return SourceResult(
                    source_name=extractor.name,
                    response_time_ms=fetched.response_time_ms,
                    failure=fetched.failure,
                    error=fetched.reason,
                )

            prices = extractor.extract(fetched.text, query)
            if not prices:
                self._emit(
                    AuditAction.EXTRACTION_EMPTY,
                    url,
                    extractor.name,
                    key,
                    status_code=fetched.status_code,
                    error=FailureKind.EXTRACTION_EMPTY.value,
                )
                return SourceResult(
                    source_name=extractor.name,
                    succeeded=True,
                    response_time_ms=fetched.response_time_ms,
                    failure=FailureKind.EXTRACTION_EMPTY,
                )

            self._emit(
                AuditAction.SCRAPE_SUCCESS,
                url,
                extractor.name,
                key,
                status_code=fetched.status_code,
            )
            return SourceResult(
                source_name=extractor.name,
                prices=prices,
                succeeded=True,
                response_time_ms=fetched.response_time_ms,
            )
        except Exception as exc:
            logger.exception("[%s] branch failed unexpectedly", extractor.name)
            self._emit(AuditAction.FETCH_FAILED, extractor.name, extractor.name, key, error=str(exc))
            return SourceResult(
                source_name=extractor.name,
                failure=FailureKind.TRANSPORT_ERROR,
                error=str(exc),
            )

    def _build_result(self, query: VehicleQuery, results: list[SourceResult]) -> AggregateResult:
        per_source = {r.source_name: r.count for r in results}
        prices = [p for r in results for p in r.prices]
        timestamp = datetime.now(timezone.utc).isoformat()

        if not prices:
            logger.warning("No market data found for %s", query.label)
            return AggregateResult(
                query=query,
                success=False,
                timestamp=timestamp,
                per_source=per_source,
                currency=self.config.currency,
                error=NO_DATA_MESSAGE,
            )

        low, avg, high = summarize(prices)
        logger.info(
            "Found %d prices for %s: low=%s avg=%s high=%s %s",
            len(prices),
            query.label,
            low,
            avg,
            high,
            per_source,
        )
        return AggregateResult(
            query=query,
            success=True,
            timestamp=timestamp,
            per_source=per_source,
            low=low,
            avg=avg,
            high=high,
            price_count=len(prices),
            currency=self.config.currency,
        )

    # --- Best-effort side effects ---

    def _durable_get(self, key: str) -> dict | None:
        try:
            return self.durable_cache.get(key)
        except Exception as exc:
            logger.warning("Durable cache read failed, treating as miss: %s", exc)
            return None

    def _durable_set(self, query: VehicleQuery, result: AggregateResult) -> None:
        try:
            self.durable_cache.set(
                query.cache_key,
                result.to_cache_payload(),
                make=query.make.lower(),
                model=query.model.lower(),
                year=query.year,
            )
        except Exception as exc:
            logger.warning("Failed to cache result: %s", exc)
            self._emit(
                AuditAction.CACHE_WRITE_FAILURE,
                query.cache_key,
                "durable_cache",
                query.cache_key,
                error=f"{FailureKind.CACHE_WRITE_FAILURE.value}: {exc}",
            )

    def _record_history(self, result: AggregateResult, metadata: dict) -> None:
        try:
            self.history.record(result, metadata)
        except Exception as exc:
            logger.warning("Failed to save to price history: %s", exc)

    def _emit(
        self,
        action: str,
        target: str,
        source: str,
        query_key: str | None,
        status_code: int = 0,
        cache_hit: bool | None = None,
        error: str | None = None,
    ) -> None:
        self.audit.record(
            AuditEvent(
                action=action,
                target=target,
                source=source,
                status_code=status_code,
                query_key=query_key,
                cache_hit=cache_hit,
                error=error,
            )
        )

    def close(self) -> None:
        self.fetcher.close()

    def __enter__(self) -> AggregationEngine:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
