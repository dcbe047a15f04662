"""Error taxonomy for the data-acquisition layer.

Upstream failures carry enough context for the HTTP layer to build a
structured error (code, hint, suggested retry delay) without re-inspecting
the failure.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class MoodError(Exception):
    """Base class for every error raised by the service core."""


class FailureKind(str, Enum):
    AUTH = "Auth"
    RATE_LIMIT = "RateLimit"
    SERVER_ERROR = "ServerError"
    NETWORK = "Network"


@dataclass(frozen=True)
class UpstreamFailure:
    """Last classified failure observed by the retrying fetcher."""

    kind: FailureKind
    message: str
    status: int | None = None

    def as_dict(self) -> dict:
        return {"type": self.kind.value, "message": self.message, "status": self.status}


class UpstreamError(MoodError):
    code = "upstream_error"
    http_status = 502
    hint = "The upstream provider could not be reached. Please try again shortly."

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after

    @property
    def diagnostic(self) -> dict | None:
        return None


class Backoff(UpstreamError):
    """The resource is rate limited; no upstream call was attempted."""

    code = "backoff"
    http_status = 503
    hint = "The provider rate-limited this resource. Retry after the suggested delay."

    def __init__(self, resource_id: str, until: float, remaining: float):
        super().__init__(
            f"backoff in effect for {resource_id} ({remaining:.1f}s left)",
            retry_after=max(1.0, remaining),
        )
        self.resource_id = resource_id
        self.until = until


class RetriesExhausted(UpstreamError):
    code = "retries_exhausted"
    http_status = 502

    def __init__(self, url: str, attempts: int, last_error: UpstreamFailure | None):
        detail = (
            f"{last_error.kind.value} - {last_error.message}" if last_error else "No upstream response"
        )
        super().__init__(f"exhausted {attempts} attempt(s) for {url}: {detail}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        if last_error and last_error.kind == FailureKind.AUTH:
            self.hint = "The provider rejected our credentials. Check the configured API key."
        elif last_error and last_error.kind == FailureKind.RATE_LIMIT:
            self.hint = "The provider is rate limiting requests. Please retry in a few seconds."
            self.retry_after = 5.0

    @property
    def diagnostic(self) -> dict | None:
        return self.last_error.as_dict() if self.last_error else None


class UpstreamUnavailable(UpstreamError):
    """Persistent-class server error (origin unreachable); no retry is attempted."""

    code = "upstream_unavailable"
    http_status = 503
    hint = (
        "The provider is experiencing connectivity issues. "
        "This is usually temporary, please try again in a few moments."
    )

    def __init__(self, url: str, status: int):
        super().__init__(f"upstream {url} unreachable (HTTP {status})", retry_after=60.0)
        self.url = url
        self.status = status

    @property
    def diagnostic(self) -> dict | None:
        return {"type": "Unreachable", "message": str(self), "status": self.status}


class UpstreamPayloadError(UpstreamError):
    """The provider answered, but not with something we can decode."""

    code = "upstream_payload"
    http_status = 502
    hint = "The provider returned an unexpected response."

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

    @property
    def diagnostic(self) -> dict | None:
        return {"type": "Payload", "message": str(self), "status": self.status}


class ProviderNotConfigured(UpstreamError):
    code = "not_configured"
    http_status = 503
    hint = "This data source is not configured on the server."


class CacheCorrupt(MoodError):
    def __init__(self, key: str, reason: str):
        super().__init__(f"corrupt cache entry {key}: {reason}")
        self.key = key


class StoreUnavailable(MoodError):
    pass


class ComplianceViolation(MoodError):
    def __init__(self, violations: list[str]):
        super().__init__("; ".join(violations))
        self.violations = violations


class LanguageModelError(MoodError):
    def __init__(self, message: str, code: str = "llm-error"):
        super().__init__(message)
        self.code = code


class UnsupportedCoin(MoodError):
    def __init__(self, coin: str):
        super().__init__(f"Unsupported coin: {coin}")
        self.coin = coin
