"""RetryingFetcher — one upstream GET with bounded, classified retries.

The attempt budget is small. Total latency stays under the dashboard's own
request timeout; once it is spent the cache layer serves stale data.
"""
from __future__ import annotations

import asyncio
import json
import random
import time
from dataclasses import dataclass, field
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable

import aiohttp
import structlog

from src.core.data.backoff import BackoffLedger
from src.core.data.errors import (
    Backoff,
    FailureKind,
    RetriesExhausted,
    UpstreamFailure,
    UpstreamPayloadError,
    UpstreamUnavailable,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    attempt_timeout: float = 5.0
    base_delay: float = 0.5         # first 429 delay without a Retry-After hint
    multiplier: float = 2.0
    rate_limit_cap: float = 5.0     # ceiling for 429 delays, hinted or computed
    transient_step: float = 0.3     # 5xx / network: step * attempt
    transient_cap: float = 1.0
    unreachable_statuses: frozenset[int] = field(default_factory=lambda: frozenset({530}))

    def rate_limit_delay(self, attempt: int, retry_after: float | None) -> float:
        if retry_after is not None:
            return min(retry_after, self.rate_limit_cap)
        return jitter(min(self.rate_limit_cap, self.base_delay * self.multiplier ** (attempt - 1)))

    def transient_delay(self, attempt: int) -> float:
        return jitter(min(self.transient_cap, self.transient_step * attempt))


def jitter(seconds: float) -> float:
    """Add up to +50% random spread."""
    return seconds + random.random() * (seconds / 2)


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """Retry-After is either delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = time.time() if now is None else now
    return max(0.0, when.timestamp() - now)


@dataclass
class FetchResult:
    status: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)
    latency: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body)


class RetryingFetcher:

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ledger: BackoffLedger,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self._session = session
        self._ledger = ledger
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def fetch(
        self,
        url: str,
        resource_id: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> FetchResult:
        until = await self._ledger.get_backoff(resource_id)
        now = self._clock()
        if until > now:
            logger.warning("fetch.backoff", resource=resource_id, seconds_left=round(until - now, 1))
            raise Backoff(resource_id, until, until - now)

        policy = self.policy
        last_error: UpstreamFailure | None = None
        attempt = 0
        while attempt < policy.max_attempts:
            attempt += 1
            started = self._clock()
            try:
                status, body, resp_headers = await asyncio.wait_for(
                    self._attempt(url, headers, params), timeout=policy.attempt_timeout
                )
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                message = (
                    f"timeout after {policy.attempt_timeout}s"
                    if isinstance(e, asyncio.TimeoutError)
                    else f"{type(e).__name__}: {e}"
                )
                last_error = UpstreamFailure(FailureKind.NETWORK, message)
                logger.warning("fetch.network_error", url=url, attempt=attempt, error=message)
                if attempt < policy.max_attempts:
                    await self._sleep(policy.transient_delay(attempt))
                continue
            except UnicodeDecodeError as e:
                logger.error("fetch.undecodable", url=url, attempt=attempt, error=str(e))
                raise UpstreamPayloadError(f"Undecodable response body from {url}: {e}") from e

            latency = self._clock() - started
            if 200 <= status < 300:
                logger.info("fetch.ok", url=url, attempt=attempt, latency_ms=int(latency * 1000))
                return FetchResult(status, body, resp_headers, latency)

            if status in (401, 403):
                last_error = UpstreamFailure(
                    FailureKind.AUTH, f"Authentication failed: {body[:100]}", status
                )
                logger.error("fetch.auth_failed", url=url, status=status)
                break

            if status == 429:
                hint = parse_retry_after(resp_headers.get("retry-after"), now=self._clock())
                delay = policy.rate_limit_delay(attempt, hint)
                await self._ledger.set_backoff(resource_id, self._clock() + delay)
                last_error = UpstreamFailure(FailureKind.RATE_LIMIT, "Rate limited", status)
                logger.warning("fetch.rate_limited", url=url, attempt=attempt, delay=round(delay, 2))
                if attempt < policy.max_attempts:
                    await self._sleep(delay)
                continue

            if status in policy.unreachable_statuses:
                logger.error("fetch.unreachable", url=url, status=status)
                raise UpstreamUnavailable(url, status)

            if 500 <= status < 600:
                last_error = UpstreamFailure(FailureKind.SERVER_ERROR, f"Server error {status}", status)
                # One short retry, then fail fast
                if attempt >= 2:
                    break
                logger.warning("fetch.server_error", url=url, status=status, attempt=attempt)
                if attempt < policy.max_attempts:
                    await self._sleep(policy.transient_delay(attempt))
                continue

            # Non-retryable 4xx: hand it back as-is
            logger.warning("fetch.client_error", url=url, status=status)
            return FetchResult(status, body, resp_headers, latency)

        logger.error("fetch.exhausted", url=url, attempts=attempt,
                     last_error=last_error.as_dict() if last_error else None)
        raise RetriesExhausted(url, attempt, last_error)

    async def _attempt(
        self, url: str, headers: dict[str, str] | None, params: dict[str, Any] | None
    ) -> tuple[int, str, dict[str, str]]:
        async with self._session.get(url, headers=headers, params=params) as resp:
            body = await resp.text()
            return resp.status, body, {k.lower(): v for k, v in resp.headers.items()}
