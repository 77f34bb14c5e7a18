"""Tests for ResilientFetcher and the anti-bot classifier."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from pricepilot.common.audit import AuditAction
from pricepilot.common.config import Config
from pricepilot.common.errors import FailureKind
from pricepilot.common.http_client import ResilientFetcher, classify_response

URL = "https://www.cars.com/shopping/results/?stock_type=used"


def _response(status: int = 200, text: str = "", url: str = URL) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.url = url
    return resp


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def listing_html(load_fixture) -> str:
    return load_fixture("cars_com.html")


@pytest.fixture
def blocked_html(load_fixture) -> str:
    return load_fixture("blocked.html")


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def pool() -> MagicMock:
    pool = MagicMock()
    pool.acquire.return_value = "10.0.0.1:8080"
    return pool


@pytest.fixture
def audit() -> MagicMock:
    return MagicMock()


@pytest.fixture
def fetcher(temp_db, session, sleeps, pool, audit) -> ResilientFetcher:
    return ResilientFetcher(
        temp_db, proxy_pool=pool, audit=audit, session=session, sleep=sleeps.append
    )


def _actions(audit: MagicMock) -> list[str]:
    return [c.args[0].action for c in audit.record.call_args_list]


class TestClassifyResponse:
    """Test block page detection."""

    def test_real_listing_page_passes(self, listing_html):
        assert classify_response(200, URL, listing_html).suspicious is False

    @pytest.mark.parametrize("status", [403, 429])
    def test_block_statuses(self, status, listing_html):
        verdict = classify_response(status, URL, listing_html)
        assert verdict.suspicious
        assert str(status) in verdict.reason

    def test_challenge_page(self, blocked_html):
        verdict = classify_response(200, URL, blocked_html)
        assert verdict.suspicious

    @pytest.mark.parametrize(
        "marker",
        [
            "Please complete the CAPTCHA below",
            "Access Denied",
            "Rate limit exceeded, slow down",
            "Are you a robot?",
            "Please verify you are a human",
            "<script src='/cdn-cgi/challenge-platform/h/b'></script>",
        ],
    )
    def test_body_markers(self, marker, listing_html):
        body = listing_html.replace("</body>", f"<p>{marker}</p></body>")
        assert classify_response(200, URL, body).suspicious

    @pytest.mark.parametrize(
        "final_url",
        [
            "https://www.cars.com/signin?return=/shopping",
            "https://www.cars.com/verify/human",
            "https://login.example.com/",
            "https://www.autotrader.com/blocked",
        ],
    )
    def test_redirect_to_gate(self, final_url, listing_html):
        assert classify_response(200, final_url, listing_html).suspicious

    def test_short_success_body(self):
        verdict = classify_response(200, URL, "<html><body>ok</body></html>")
        assert verdict.suspicious
        assert "short" in verdict.reason

    def test_short_body_threshold_is_configurable(self):
        assert classify_response(200, URL, "x" * 50, min_body_length=10).suspicious is False

    def test_pure_function(self, blocked_html):
        assert classify_response(200, URL, blocked_html) == classify_response(200, URL, blocked_html)


class TestBackoff:
    """Test retry delay schedule."""

    def test_exponential_and_capped(self, temp_db):
        fetcher = ResilientFetcher(temp_db)
        delays = [fetcher.backoff_delay(n) for n in range(1, 7)]
        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0, 5.0]
        assert all(b >= a for a, b in zip(delays, delays[1:]))


class TestFetch:
    """Test retries, proxy reporting and audit trail."""

    def test_success_first_attempt(self, fetcher, session, pool, audit, listing_html, sleeps):
        session.get.return_value = _response(200, listing_html)

        result = fetcher.fetch(URL, source="cars_com", query_key="toyota:camry:2020:::")

        assert result.ok
        assert result.attempts == 1
        assert result.text == listing_html
        assert result.proxy_used == "10.0.0.1:8080"
        assert sleeps == []
        pool.report_failure.assert_not_called()
        assert _actions(audit) == [AuditAction.FETCH_ATTEMPT]

        _, kwargs = session.get.call_args
        assert kwargs["proxies"] == {
            "http": "http://10.0.0.1:8080",
            "https": "http://10.0.0.1:8080",
        }
        assert kwargs["timeout"] == 15.0
        assert kwargs["allow_redirects"] is True
        assert "PricePilotBot" in kwargs["headers"]["User-Agent"]
        assert kwargs["headers"]["From"] == fetcher.config.bot_contact

    def test_retries_after_rate_limit(self, fetcher, session, pool, audit, listing_html, sleeps):
        session.get.side_effect = [
            _response(429, "Too Many Requests"),
            _response(200, listing_html),
        ]

        result = fetcher.fetch(URL, source="cars_com")

        assert result.ok
        assert result.attempts == 2
        assert result.delays == (1.0,)
        assert sleeps == [1.0]
        pool.report_failure.assert_called_once_with("10.0.0.1:8080")
        assert _actions(audit) == [
            AuditAction.FETCH_ATTEMPT,
            AuditAction.RATE_LIMITED,
            AuditAction.FETCH_ATTEMPT,
        ]

    def test_block_page_exhausts_attempts(self, fetcher, session, pool, audit, blocked_html, sleeps):
        session.get.return_value = _response(200, blocked_html)

        result = fetcher.fetch(URL, source="cars_com")

        assert not result.ok
        assert result.failure is FailureKind.ANTI_BOT_DETECTED
        assert result.attempts == 3
        assert result.text == ""
        assert sleeps == [1.0, 2.0]
        assert pool.report_failure.call_count == 3
        assert _actions(audit).count(AuditAction.ANTI_BOT_DETECTED) == 3

    def test_transport_error_then_success(self, fetcher, session, pool, listing_html):
        session.get.side_effect = [
            requests.ConnectTimeout("proxy timed out"),
            _response(200, listing_html),
        ]

        result = fetcher.fetch(URL)

        assert result.ok
        assert result.attempts == 2
        pool.report_failure.assert_called_once_with("10.0.0.1:8080")

    def test_transport_error_exhausted(self, fetcher, session):
        session.get.side_effect = requests.ConnectionError("refused")

        result = fetcher.fetch(URL)

        assert not result.ok
        assert result.failure is FailureKind.TRANSPORT_ERROR
        assert "ConnectionError" in result.reason
        assert result.attempts == 3

    def test_server_error_retried_without_blaming_proxy(self, fetcher, session, pool, listing_html):
        session.get.side_effect = [_response(502, "bad gateway"), _response(200, listing_html)]

        result = fetcher.fetch(URL)

        assert result.ok
        pool.report_failure.assert_not_called()

    def test_not_found_is_not_retried(self, fetcher, session, sleeps):
        session.get.return_value = _response(404, "not found")

        result = fetcher.fetch(URL)

        assert not result.ok
        assert result.failure is FailureKind.HTTP_ERROR
        assert result.status_code == 404
        assert result.attempts == 1
        assert sleeps == []

    def test_direct_when_pool_empty(self, fetcher, session, pool, audit, listing_html):
        pool.acquire.return_value = None
        session.get.return_value = _response(200, listing_html)

        result = fetcher.fetch(URL)

        assert result.ok
        assert result.proxy_used is None
        _, kwargs = session.get.call_args
        assert kwargs["proxies"] is None
        assert AuditAction.PROXY_UNAVAILABLE in _actions(audit)

    def test_without_pool_or_audit(self, temp_db, session, listing_html):
        session.get.return_value = _response(200, listing_html)
        fetcher = ResilientFetcher(temp_db, session=session)
        assert fetcher.fetch(URL).ok

    def test_extra_headers_merged(self, fetcher, session, listing_html):
        session.get.return_value = _response(200, listing_html)
        fetcher.fetch(URL, headers={"Referer": "https://www.cars.com/"})
        _, kwargs = session.get.call_args
        assert kwargs["headers"]["Referer"] == "https://www.cars.com/"
        assert "User-Agent" in kwargs["headers"]


class TestDeadline:
    """Test deadline-aware retries."""

    def test_expired_deadline_makes_no_request(self, temp_db, session):
        clock = FakeClock(100.0)
        fetcher = ResilientFetcher(temp_db, session=session, clock=clock)

        result = fetcher.fetch(URL, deadline=100.0)

        assert result.failure is FailureKind.DEADLINE_EXCEEDED
        assert result.attempts == 0
        session.get.assert_not_called()

    def test_timeout_shrinks_to_remaining_time(self, temp_db, session, load_fixture):
        clock = FakeClock(100.0)
        session.get.return_value = _response(200, load_fixture("cars_com.html"))
        fetcher = ResilientFetcher(temp_db, session=session, clock=clock)

        fetcher.fetch(URL, deadline=104.0)

        _, kwargs = session.get.call_args
        assert kwargs["timeout"] == 4.0

    def test_no_backoff_past_deadline(self, temp_db, session):
        clock = FakeClock(100.0)
        sleeps: list[float] = []
        session.get.return_value = _response(503, "unavailable")
        fetcher = ResilientFetcher(
            temp_db, session=session, clock=clock, sleep=sleeps.append
        )

        result = fetcher.fetch(URL, deadline=100.5)

        assert result.failure is FailureKind.DEADLINE_EXCEEDED
        assert result.attempts == 1
        assert sleeps == []
        assert "HTTP 503" in result.reason


class TestSessions:
    """Test session lifecycle."""

    def test_close_closes_owned_sessions(self, temp_db, monkeypatch):
        created: list[MagicMock] = []
        real_session = requests.Session

        def _make_session():
            s = MagicMock(spec=real_session)
            created.append(s)
            return s

        monkeypatch.setattr("pricepilot.common.http_client.requests.Session", _make_session)
        with ResilientFetcher(temp_db) as fetcher:
            fetcher._get_session()
            fetcher._get_session()
        assert len(created) == 1
        created[0].close.assert_called_once()

    def test_does_not_close_injected_session(self, temp_db, session):
        fetcher = ResilientFetcher(temp_db, session=session)
        fetcher._get_session()
        fetcher.close()
        session.close.assert_not_called()
