"""Unit tests for the RetryingFetcher — classification, retries, backoff."""
import asyncio
from email.utils import formatdate

import aiohttp
import pytest

from src.core.data.backoff import BackoffLedger
from src.core.data.errors import (
    Backoff,
    FailureKind,
    RetriesExhausted,
    UpstreamError,
    UpstreamPayloadError,
    UpstreamUnavailable,
)
from src.core.data.fetcher import RetryingFetcher, RetryPolicy, jitter, parse_retry_after
from src.core.data.store.memory import MemoryStore


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeResponse:
    def __init__(self, status: int, body: str = "{}", headers: dict | None = None, delay: float = 0.0):
        self.status = status
        self.headers = headers or {}
        self._body = body
        self._delay = delay

    async def text(self) -> str:
        if self._delay:
            await asyncio.sleep(self._delay)
        if isinstance(self._body, bytes):
            return self._body.decode("utf-8")
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Replays a scripted list of responses or exceptions."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = []

    def get(self, url, headers=None, params=None):
        self.calls.append({"url": url, "headers": headers, "params": params})
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _fetcher(session, clock=None, policy=None):
    clock = clock or FakeClock()
    sleeps = []

    async def sleep(seconds):
        sleeps.append(seconds)

    ledger = BackoffLedger(MemoryStore(), clock=clock)
    fetcher = RetryingFetcher(session, ledger, policy=policy, sleep=sleep, clock=clock)
    return fetcher, ledger, sleeps


class TestRetryPolicy:

    def test_rate_limit_hint_is_capped(self):
        policy = RetryPolicy()
        assert policy.rate_limit_delay(1, 5.0) == 5.0
        assert policy.rate_limit_delay(1, 120.0) == 5.0

    def test_rate_limit_without_hint_is_exponential_with_jitter(self):
        policy = RetryPolicy()
        first = policy.rate_limit_delay(1, None)
        second = policy.rate_limit_delay(2, None)
        assert 0.5 <= first <= 0.75
        assert 1.0 <= second <= 1.5

    def test_transient_delay_capped(self):
        policy = RetryPolicy()
        assert policy.transient_delay(10) <= 1.5

    def test_jitter_bounds(self):
        for _ in range(50):
            assert 2.0 <= jitter(2.0) <= 3.0


class TestParseRetryAfter:

    def test_seconds(self):
        assert parse_retry_after("5") == 5.0

    def test_http_date(self):
        assert parse_retry_after(formatdate(1_030.0, usegmt=True), now=1_000.0) == pytest.approx(30.0)

    def test_missing_or_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("soon") is None


class TestRetryingFetcher:

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        session = FakeSession(FakeResponse(200, '{"data": []}'))
        fetcher, _, sleeps = _fetcher(session)
        result = await fetcher.fetch("https://x/assets", "bitcoin", params={"ids": "bitcoin"})
        assert result.ok
        assert result.json() == {"data": []}
        assert len(session.calls) == 1
        assert session.calls[0]["params"] == {"ids": "bitcoin"}
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_blocked_resource_makes_no_call(self):
        session = FakeSession()
        fetcher, ledger, _ = _fetcher(session)
        await ledger.set_backoff("bitcoin", 1_005.0)
        with pytest.raises(Backoff) as exc:
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert session.calls == []
        assert exc.value.retry_after == pytest.approx(5.0)
        assert exc.value.http_status == 503

    @pytest.mark.asyncio
    async def test_other_resources_not_blocked(self):
        session = FakeSession(FakeResponse(200))
        fetcher, ledger, _ = _fetcher(session)
        await ledger.set_backoff("bitcoin", 1_005.0)
        result = await fetcher.fetch("https://x/assets", "ethereum")
        assert result.status == 200

    @pytest.mark.asyncio
    async def test_429_with_hint_records_backoff_then_blocks(self):
        clock = FakeClock(1_000.0)
        session = FakeSession(
            FakeResponse(429, headers={"Retry-After": "5"}),
            FakeResponse(429, headers={"Retry-After": "5"}),
        )
        fetcher, ledger, sleeps = _fetcher(session, clock=clock)

        with pytest.raises(RetriesExhausted) as exc:
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert exc.value.last_error.kind == FailureKind.RATE_LIMIT
        assert exc.value.retry_after == 5.0
        assert await ledger.get_backoff("bitcoin") == pytest.approx(1_005.0)
        assert sleeps == [5.0]
        assert len(session.calls) == 2

        clock.now = 1_002.0
        with pytest.raises(Backoff):
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_429_then_success(self):
        session = FakeSession(FakeResponse(429), FakeResponse(200, '{"ok": true}'))
        fetcher, ledger, sleeps = _fetcher(session)
        result = await fetcher.fetch("https://x/assets", "bitcoin")
        assert result.ok
        assert len(sleeps) == 1
        assert 0.5 <= sleeps[0] <= 0.75
        assert await ledger.get_backoff("bitcoin") > 1_000.0

    @pytest.mark.asyncio
    async def test_auth_failure_is_terminal(self):
        session = FakeSession(FakeResponse(401, "bad key"), FakeResponse(200))
        fetcher, _, sleeps = _fetcher(session)
        with pytest.raises(RetriesExhausted) as exc:
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert exc.value.last_error.kind == FailureKind.AUTH
        assert exc.value.attempts == 1
        assert len(session.calls) == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_unreachable_fails_fast(self):
        session = FakeSession(FakeResponse(530), FakeResponse(200))
        fetcher, _, _ = _fetcher(session)
        with pytest.raises(UpstreamUnavailable) as exc:
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert exc.value.retry_after == 60.0
        assert exc.value.status == 530
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried_once(self):
        session = FakeSession(FakeResponse(502), FakeResponse(200, "{}"))
        fetcher, _, sleeps = _fetcher(session)
        result = await fetcher.fetch("https://x/assets", "bitcoin")
        assert result.ok
        assert len(session.calls) == 2
        assert len(sleeps) == 1 and sleeps[0] <= 1.5

    @pytest.mark.asyncio
    async def test_server_error_twice_exhausts(self):
        session = FakeSession(FakeResponse(500), FakeResponse(503))
        fetcher, _, _ = _fetcher(session)
        with pytest.raises(RetriesExhausted) as exc:
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert exc.value.last_error.kind == FailureKind.SERVER_ERROR
        assert exc.value.last_error.status == 503

    @pytest.mark.asyncio
    async def test_server_error_single_retry_even_with_larger_budget(self):
        session = FakeSession(FakeResponse(500), FakeResponse(500), FakeResponse(200))
        fetcher, _, _ = _fetcher(session, policy=RetryPolicy(max_attempts=3))
        with pytest.raises(RetriesExhausted):
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_other_4xx_returned_as_is(self):
        session = FakeSession(FakeResponse(404, '{"error": "not found"}'))
        fetcher, _, _ = _fetcher(session)
        result = await fetcher.fetch("https://x/assets/nope", "nope")
        assert result.status == 404
        assert not result.ok
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_network_error_then_success(self):
        session = FakeSession(aiohttp.ClientConnectionError("reset"), FakeResponse(200))
        fetcher, _, sleeps = _fetcher(session)
        result = await fetcher.fetch("https://x/assets", "bitcoin")
        assert result.ok
        assert len(sleeps) == 1

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_as_network(self):
        session = FakeSession(FakeResponse(200, delay=1.0), FakeResponse(200, delay=1.0))
        policy = RetryPolicy(attempt_timeout=0.01)
        fetcher, _, _ = _fetcher(session, policy=policy)
        with pytest.raises(RetriesExhausted) as exc:
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert exc.value.last_error.kind == FailureKind.NETWORK
        assert "timeout" in exc.value.last_error.message
        assert exc.value.diagnostic["type"] == "Network"

    @pytest.mark.asyncio
    async def test_invalid_utf8_body_is_payload_error(self):
        session = FakeSession(FakeResponse(200, b'{"data": "\xff\xfe"}'))
        fetcher, _, sleeps = _fetcher(session)
        with pytest.raises(UpstreamPayloadError) as exc:
            await fetcher.fetch("https://x/assets", "bitcoin")
        assert isinstance(exc.value, UpstreamError)
        assert exc.value.code == "upstream_payload"
        assert len(session.calls) == 1
        assert sleeps == []
