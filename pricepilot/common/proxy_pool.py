"""Validated, self-healing pool of outbound HTTP proxies.

The pool pulls a newline-delimited ``host:port`` list from a public
candidate source, probes each candidate against an echo endpoint in
bounded batches, and hands out the least-recently-used healthy proxy per
request. Proxies that fail ``proxy_max_failures`` times are retired for the
lifetime of the pool.

Absence of a proxy is a normal outcome: ``acquire()`` returns ``None`` and
the caller goes direct. Nothing in this module raises.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

import requests

from .audit import AuditAction, AuditEvent, AuditSink
from .config import Config

logger = logging.getLogger(__name__)


class ProxyState(str, Enum):
    AVAILABLE = "available"
    COOLING_DOWN = "cooling_down"
    RETIRED = "retired"


@dataclass
class ProxyRecord:
    """A proxy owned by ProxyPool. Mutated only under the pool's lock."""

    address: str  # host:port
    last_used_at: float | None = None  # pool clock
    failure_count: int = 0
    state: ProxyState = ProxyState.AVAILABLE

    def effective_state(self, now: float, cooldown: float) -> ProxyState:
        """State at ``now`` without mutating the record."""
        if self.state is ProxyState.COOLING_DOWN and (
            self.last_used_at is None or now - self.last_used_at >= cooldown
        ):
            return ProxyState.AVAILABLE
        return self.state

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "last_used_at": self.last_used_at,
            "failure_count": self.failure_count,
            "state": self.state.value,
        }


@dataclass(frozen=True)
class ProxyPoolStats:
    total: int
    available: int
    cooling_down: int
    retired: int

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "available": self.available,
            "cooling_down": self.cooling_down,
            "retired": self.retired,
        }


class ProxyPool:
    """Thread-safe proxy pool with LRU selection and failure retirement.

    Usage:
        pool = ProxyPool(config, audit=AuditSink(config))
        pool.refresh()
        proxy = pool.acquire()        # "1.2.3.4:8080" or None
        ...
        pool.report_failure(proxy)    # on block / transport error
    """

    def __init__(
        self,
        config: Config | None = None,
        audit: AuditSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or Config()
        self._audit = audit
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._records: dict[str, ProxyRecord] = {}
        self._retired: set[str] = set()
        self._last_refresh: float | None = None

        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._records

    # --- Refresh ---

    def refresh(self, force: bool = False, deadline: float | None = None) -> int:
        """Fetch and validate a fresh candidate list.

        Skipped when the last complete refresh is younger than
        ``proxy_refresh_interval`` and the pool is non-empty, unless
        ``force`` is set, and skipped while another thread is refreshing.
        Records that survive a refresh keep their failure counts; retired
        addresses are never re-admitted.

        Args:
            force: Refresh even if the pool is still fresh.
            deadline: Absolute time on this pool's clock. Download and check
                      timeouts shrink to the time left, and no new batch
                      starts past it. A refresh cut short keeps the proxies
                      validated so far and is retried on the next call.

        Returns:
            Number of active proxies after the call.
        """
        if not self.config.proxy_list_url:
            return 0

        if not self._refresh_lock.acquire(blocking=False):
            logger.debug("Proxy refresh already in progress")
            return len(self)

        try:
            with self._lock:
                fresh = (
                    self._last_refresh is not None
                    and self._clock() - self._last_refresh < self.config.proxy_refresh_interval
                    and bool(self._records)
                )
                if fresh and not force:
                    return len(self._records)

            candidates = self._fetch_candidates(deadline)
            if not candidates:
                logger.warning("No proxies fetched, continuing without proxy pool")
                return len(self)

            working, complete = self._validate(candidates, deadline)

            with self._lock:
                previous = self._records
                admitted = {
                    address: previous.get(address) or ProxyRecord(address)
                    for address in working
                    if address not in self._retired
                }
                if complete:
                    self._records = admitted
                    self._last_refresh = self._clock()
                else:
                    self._records = {**previous, **admitted}
                count = len(self._records)
        finally:
            self._refresh_lock.release()

        logger.info(
            "Proxy pool refreshed with %d working proxies%s",
            count,
            "" if complete else " (cut short by deadline)",
        )
        return count

    def _remaining(self, deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - self._clock()

    def _fetch_candidates(self, deadline: float | None = None) -> list[str]:
        """Download the candidate list. Returns [] on any failure."""
        timeout = self.config.proxy_list_timeout
        remaining = self._remaining(deadline)
        if remaining is not None:
            if remaining <= 0:
                logger.warning("Deadline reached before proxy list download")
                return []
            timeout = min(timeout, remaining)

        try:
            resp = requests.get(
                self.config.proxy_list_url,
                headers={"User-Agent": self.config.user_agent},
                timeout=timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Failed to fetch proxy list: %s", exc)
            return []

        seen: set[str] = set()
        candidates: list[str] = []
        for line in resp.text.splitlines():
            line = line.strip()
            if not line or ":" not in line or line in seen:
                continue
            seen.add(line)
            candidates.append(line)
            if len(candidates) >= self.config.proxy_max_candidates:
                break

        logger.info("Fetched %d potential proxies", len(candidates))
        return candidates

    def _validate(
        self, candidates: list[str], deadline: float | None = None
    ) -> tuple[list[str], bool]:
        """Probe candidates in bounded batches, preserving input order.

        Returns:
            (working addresses, whether every candidate was checked)
        """
        batch_size = max(self.config.proxy_batch_size, 1)
        pause = self.config.proxy_batch_pause
        working: list[str] = []
        checked = 0

        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            for start in range(0, len(candidates), batch_size):
                timeout = self.config.proxy_probe_timeout
                remaining = self._remaining(deadline)
                if remaining is not None:
                    if remaining <= 0:
                        break
                    timeout = min(timeout, remaining)

                batch = candidates[start:start + batch_size]
                results = list(executor.map(self._probe, batch, [timeout] * len(batch)))
                working.extend(a for a, ok in zip(batch, results) if ok)
                checked += len(batch)

                if checked < len(candidates):
                    remaining = self._remaining(deadline)
                    if remaining is not None and remaining <= pause:
                        break
                    self._sleep(pause)

        complete = checked == len(candidates)
        if not complete:
            logger.warning(
                "Proxy validation stopped at deadline after %d/%d candidates",
                checked,
                len(candidates),
            )
        logger.info("Found %d/%d working proxies", len(working), checked)
        return working, complete

    def _probe(self, address: str, timeout: float | None = None) -> bool:
        """Return True if ``address`` relays a request to the echo endpoint."""
        proxy_url = f"http://{address}"
        started = time.perf_counter()
        status = 0
        error = None
        try:
            resp = requests.get(
                self.config.proxy_probe_url,
                headers={"User-Agent": self.config.user_agent},
                proxies={"http": proxy_url, "https": proxy_url},
                timeout=self.config.proxy_probe_timeout if timeout is None else timeout,
            )
            status = resp.status_code
            ok = resp.ok
            if not ok:
                error = f"HTTP {status}"
        except requests.RequestException as exc:
            ok = False
            error = str(exc)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.debug("Proxy %s %s", address, "working" if ok else f"failed test: {error}")
        self._emit(
            AuditEvent(
                action=AuditAction.PROXY_VALIDATION,
                target=self.config.proxy_probe_url,
                source="proxy_pool",
                status_code=status,
                response_time_ms=elapsed_ms,
                proxy_used=address,
                error=error,
            )
        )
        return ok

    # --- Selection ---

    def acquire(self) -> str | None:
        """Return a proxy address for one attempt, or None if the pool is empty.

        Picks the least-recently-used proxy whose cooldown has elapsed. If
        every proxy is still cooling down, falls back to a random one.
        """
        with self._lock:
            if not self._records:
                return None

            now = self._clock()
            cooldown = self.config.proxy_cooldown
            ready = [
                r for r in self._records.values()
                if r.effective_state(now, cooldown) is ProxyState.AVAILABLE
            ]

            if ready:
                record = min(
                    ready,
                    key=lambda r: float("-inf") if r.last_used_at is None else r.last_used_at,
                )
            else:
                record = self._rng.choice(list(self._records.values()))
                logger.warning("No available proxies, trying %s during cooldown", record.address)

            record.last_used_at = now
            record.state = ProxyState.COOLING_DOWN
            return record.address

    def report_failure(self, address: str) -> None:
        """Count a failure against ``address``; retire it at the threshold.

        Unknown or already-retired addresses are ignored.
        """
        with self._lock:
            record = self._records.get(address)
            if record is None:
                return

            record.failure_count += 1
            failures = record.failure_count
            retired = failures >= self.config.proxy_max_failures
            if retired:
                record.state = ProxyState.RETIRED
                del self._records[address]
                self._retired.add(address)

        logger.info(
            "Proxy %s failed (%d/%d)", address, failures, self.config.proxy_max_failures
        )
        if retired:
            logger.info("Proxy %s permanently removed from pool", address)
            self._emit(
                AuditEvent(
                    action=AuditAction.PROXY_RETIRED,
                    target=address,
                    source="proxy_pool",
                    proxy_used=address,
                    error=f"{failures} failures",
                )
            )

    def stats(self) -> ProxyPoolStats:
        """Counts of active/available/cooling/retired proxies. Read-only."""
        with self._lock:
            now = self._clock()
            states = [
                r.effective_state(now, self.config.proxy_cooldown)
                for r in self._records.values()
            ]
            return ProxyPoolStats(
                total=len(states),
                available=sum(1 for s in states if s is ProxyState.AVAILABLE),
                cooling_down=sum(1 for s in states if s is ProxyState.COOLING_DOWN),
                retired=len(self._retired),
            )

    def snapshot(self) -> list[ProxyRecord]:
        """Copies of the active records, for inspection."""
        with self._lock:
            return [ProxyRecord(**vars(r)) for r in self._records.values()]

    def _emit(self, event: AuditEvent) -> None:
        if self._audit is not None:
            self._audit.record(event)
