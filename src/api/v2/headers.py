"""Observability headers attached to cacheable and narration responses."""
import time

from src.core.data.cache.orchestrator import ReadResult
from src.core.narration.narrator import NarrationResult

CACHE_CONTROL = "s-maxage=60, max-age=0, must-revalidate"
STALE_WARNING = "110 - stale response used due to upstream error"


def latency_ms(started: float) -> str:
    return str(int((time.perf_counter() - started) * 1000))


def cache_headers(result: ReadResult, started: float) -> dict[str, str]:
    headers = {
        "Cache-Control": CACHE_CONTROL,
        "X-Cache-Status": result.cache_status,
        "X-Cache-Source": result.cache_source,
        "X-Data-Age": str(int(result.age)),
        "X-Latency-ms": latency_ms(started),
    }
    if result.stale_if_error:
        headers["Warning"] = STALE_WARNING
    return headers


def narration_headers(result: NarrationResult, started: float) -> dict[str, str]:
    headers = {
        "X-AI-Status": result.header_status,
        "X-Latency-ms": latency_ms(started),
    }
    if result.reason:
        headers["X-AI-Reason"] = result.reason
    return headers
