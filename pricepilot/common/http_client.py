"""HTTP fetching with proxy rotation, retry, backoff and anti-bot detection."""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlparse

import requests

from .audit import AuditAction, AuditEvent, AuditSink
from .config import Config
from .errors import FailureKind
from .proxy_pool import ProxyPool

logger = logging.getLogger(__name__)

MIN_BODY_LENGTH = 1000

# Block / verification page markers, matched case-insensitively on the body
BLOCK_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (label, re.compile(pattern, re.IGNORECASE))
    for label, pattern in (
        ("captcha", r"captcha"),
        ("access denied", r"access\s+(?:is\s+)?denied"),
        ("rate limit", r"rate[\s_-]?limit"),
        ("robot detected", r"robot\s+detected|are\s+you\s+a\s+robot|robot\s+check"),
        ("human verification", r"verify\s+(?:that\s+)?you(?:'re|\s+are)\s+(?:a\s+)?human"),
        ("bot challenge", r"pardon\s+our\s+interruption|unusual\s+traffic|automated\s+access"),
        ("challenge markers", r"cf-chl-|challenge-platform|_incapsula_resource|px-block|distil_r_"),
    )
)

_BLOCKED_PATH = re.compile(
    r"/(?:login|signin|sign-in|sign_in|verify|verification|captcha|blocked|"
    r"challenge|access-denied|accessdenied)(?:[/?.#_-]|$)",
    re.IGNORECASE,
)
_BLOCKED_HOST = re.compile(r"^(?:signin|login|captcha|verify)\.", re.IGNORECASE)


@dataclass(frozen=True)
class BotCheck:
    """Verdict of the anti-bot classifier."""

    suspicious: bool
    reason: str | None = None


def classify_response(
    status_code: int,
    final_url: str,
    body: str,
    min_body_length: int = MIN_BODY_LENGTH,
) -> BotCheck:
    """Decide whether a response is a block/challenge page rather than content.

    Pure function of its arguments. Flags:
    - HTTP 403 / 429
    - a final URL redirected to a login, verification or block path
    - a body matching any of ``BLOCK_PATTERNS``
    - a 200 response whose trimmed body is shorter than ``min_body_length``
    """
    if status_code in (403, 429):
        return BotCheck(True, f"HTTP {status_code}: rate limited or blocked")

    parsed = urlparse(final_url or "")
    if _BLOCKED_HOST.match(parsed.netloc) or _BLOCKED_PATH.search(parsed.path):
        return BotCheck(True, f"redirected to {parsed.netloc}{parsed.path}")

    text = body or ""
    for label, pattern in BLOCK_PATTERNS:
        if pattern.search(text):
            return BotCheck(True, f"body matched '{label}'")

    if status_code == 200 and len(text.strip()) < min_body_length:
        return BotCheck(True, f"implausibly short body ({len(text.strip())} chars)")

    return BotCheck(False)


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one logical fetch (possibly several attempts)."""

    url: str
    ok: bool
    status_code: int = 0
    final_url: str = ""
    text: str = ""
    attempts: int = 0
    proxy_used: str | None = None
    response_time_ms: int = 0
    failure: FailureKind | None = None
    reason: str | None = None
    delays: tuple[float, ...] = ()


class ResilientFetcher:
    """GET with proxy rotation, bounded retries and anti-bot classification.

    Features:
    - One proxy per attempt from ProxyPool, direct when none is available
    - Descriptive bot identification headers (User-Agent + From)
    - Exponential backoff capped at ``backoff_max`` between attempts
    - Block pages, 403 and 429 count against the proxy and are retried
    - Never raises for network problems: returns a categorized FetchResult
    """

    def __init__(
        self,
        config: Config | None = None,
        proxy_pool: ProxyPool | None = None,
        audit: AuditSink | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or Config()
        self._pool = proxy_pool
        self._audit = audit
        self._shared_session = session
        self._sleep = sleep
        self._clock = clock

        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def default_headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "From": self.config.bot_contact,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return min(self.config.backoff_base * (2 ** (attempt - 1)), self.config.backoff_max)

    def fetch(
        self,
        url: str,
        source: str = "direct",
        query_key: str | None = None,
        deadline: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        """Fetch ``url`` with retries.

        Args:
            url: Target URL.
            source: Source name for audit/log context.
            query_key: Normalized query key for audit context.
            deadline: Absolute time on this fetcher's clock after which no
                      new attempt or backoff starts.
            headers: Extra headers (merged over the defaults).

        Returns:
            FetchResult; ``ok`` is True only for a clean 2xx response.
        """
        merged_headers = self.default_headers
        if headers:
            merged_headers.update(headers)

        failure: FailureKind | None = None
        reason: str | None = None
        status = 0
        final_url = ""
        proxy: str | None = None
        elapsed_ms = 0
        attempts = 0
        delays: list[float] = []

        for attempt in range(1, self.config.max_attempts + 1):
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                failure = FailureKind.DEADLINE_EXCEEDED
                reason = f"deadline reached before attempt {attempt}" + (
                    f" (last: {reason})" if reason else ""
                )
                break

            attempts = attempt
            proxy = self._acquire_proxy(url, source, query_key)
            proxies = {"http": f"http://{proxy}", "https": f"http://{proxy}"} if proxy else None
            timeout = self.config.request_timeout
            if remaining is not None:
                timeout = min(timeout, remaining)

            started = time.perf_counter()
            try:
                resp = self._get_session().get(
                    url,
                    headers=merged_headers,
                    proxies=proxies,
                    timeout=timeout,
                    allow_redirects=True,
                )
            except requests.RequestException as exc:
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                status = 0
                final_url = url
                failure = FailureKind.TRANSPORT_ERROR
                reason = f"{type(exc).__name__}: {exc}"
                self._report_proxy(proxy)
                self._record_attempt(url, source, query_key, status, elapsed_ms, proxy, reason)
            else:
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                status = resp.status_code
                final_url = resp.url or url
                body = resp.text or ""

                if 200 <= status < 300:
                    verdict = classify_response(
                        status, final_url, body, self.config.min_body_length
                    )
                    if not verdict.suspicious:
                        self._record_attempt(url, source, query_key, status, elapsed_ms, proxy, None)
                        logger.info(
                            "Request successful on attempt %d: %s (%d ms)", attempt, url, elapsed_ms
                        )
                        return FetchResult(
                            url=url,
                            ok=True,
                            status_code=status,
                            final_url=final_url,
                            text=body,
                            attempts=attempt,
                            proxy_used=proxy,
                            response_time_ms=elapsed_ms,
                            delays=tuple(delays),
                        )
                    failure = FailureKind.ANTI_BOT_DETECTED
                    reason = verdict.reason
                    self._report_proxy(proxy)
                    self._record_attempt(url, source, query_key, status, elapsed_ms, proxy, reason)
                    self._record_detection(
                        AuditAction.ANTI_BOT_DETECTED, url, source, query_key, status, elapsed_ms, proxy, reason
                    )
                elif status in (403, 429):
                    failure = FailureKind.ANTI_BOT_DETECTED
                    reason = f"HTTP {status}: rate limited or blocked"
                    self._report_proxy(proxy)
                    self._record_attempt(url, source, query_key, status, elapsed_ms, proxy, reason)
                    self._record_detection(
                        AuditAction.RATE_LIMITED, url, source, query_key, status, elapsed_ms, proxy, reason
                    )
                else:
                    failure = FailureKind.HTTP_ERROR
                    reason = f"HTTP {status}"
                    self._record_attempt(url, source, query_key, status, elapsed_ms, proxy, reason)
                    # Other 4xx are permanent, retrying won't help
                    if status < 500:
                        logger.warning("Request failed (%s, no retry): %s", reason, url)
                        break

            if attempt >= self.config.max_attempts:
                break

            delay = self.backoff_delay(attempt)
            remaining = self._remaining(deadline)
            if remaining is not None and remaining < delay:
                failure = FailureKind.DEADLINE_EXCEEDED
                reason = f"deadline too close for {delay:.1f}s backoff (last: {reason})"
                break

            logger.warning(
                "[%s] attempt %d/%d failed: %s; retrying in %.1fs",
                source,
                attempt,
                self.config.max_attempts,
                reason,
                delay,
            )
            delays.append(delay)
            self._sleep(delay)

        logger.warning("[%s] giving up on %s after %d attempt(s): %s", source, url, attempts, reason)
        return FetchResult(
            url=url,
            ok=False,
            status_code=status,
            final_url=final_url,
            attempts=attempts,
            proxy_used=proxy,
            response_time_ms=elapsed_ms,
            failure=failure,
            reason=reason,
            delays=tuple(delays),
        )

    def _remaining(self, deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - self._clock()

    def _acquire_proxy(self, url: str, source: str, query_key: str | None) -> str | None:
        if self._pool is None:
            return None
        proxy = self._pool.acquire()
        if proxy is None:
            logger.debug("No proxy available, using direct connection for %s", url)
            self._emit(
                AuditEvent(
                    action=AuditAction.PROXY_UNAVAILABLE,
                    target=url,
                    source=source,
                    query_key=query_key,
                    proxy_used="direct",
                    error=FailureKind.PROXY_UNAVAILABLE.value,
                )
            )
        return proxy

    def _report_proxy(self, proxy: str | None) -> None:
        if proxy and self._pool is not None:
            self._pool.report_failure(proxy)

    def _record_attempt(
        self,
        url: str,
        source: str,
        query_key: str | None,
        status: int,
        elapsed_ms: int,
        proxy: str | None,
        error: str | None,
    ) -> None:
        self._emit(
            AuditEvent(
                action=AuditAction.FETCH_ATTEMPT,
                target=url,
                source=source,
                status_code=status,
                response_time_ms=elapsed_ms,
                query_key=query_key,
                proxy_used=proxy or "direct",
                error=error,
            )
        )

    def _record_detection(
        self,
        action: str,
        url: str,
        source: str,
        query_key: str | None,
        status: int,
        elapsed_ms: int,
        proxy: str | None,
        reason: str | None,
    ) -> None:
        logger.warning("[%s] %s via %s: %s", source, action, proxy or "direct", reason)
        self._emit(
            AuditEvent(
                action=action,
                target=url,
                source=source,
                status_code=status,
                response_time_ms=elapsed_ms,
                query_key=query_key,
                proxy_used=proxy or "direct",
                error=reason,
            )
        )

    def _emit(self, event: AuditEvent) -> None:
        if self._audit is not None:
            self._audit.record(event)

    def _get_session(self) -> requests.Session:
        """Shared session if injected, else one session per thread."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def close(self) -> None:
        """Close every session this fetcher opened."""
        with self._sessions_lock:
            for session in self._sessions:
                session.close()
            self._sessions.clear()
        self._local = threading.local()

    def __enter__(self) -> ResilientFetcher:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
