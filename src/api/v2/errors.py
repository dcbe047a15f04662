"""Global error handlers."""
from datetime import datetime, timezone

from fastapi import Request
from fastapi.responses import JSONResponse

from src.core.data.errors import StoreUnavailable, UnsupportedCoin, UpstreamError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"error": str(exc), "code": "VALIDATION_ERROR", "details": {}},
    )


async def unsupported_coin_handler(request: Request, exc: UnsupportedCoin):
    return JSONResponse(
        status_code=400,
        content={"error": str(exc), "code": "UNSUPPORTED_COIN", "details": {"coin": exc.coin}},
    )


async def upstream_error_handler(request: Request, exc: UpstreamError):
    headers = {"X-Error-Type": exc.code, "X-Client-Cache": "no-store"}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "error": "Failed to fetch upstream data",
            "code": exc.code,
            "details": str(exc),
            "hint": exc.hint,
            "retry_after": exc.retry_after,
            "diagnostic": exc.diagnostic,
            "timestamp": _now(),
        },
        headers=headers,
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    return JSONResponse(
        status_code=503,
        content={"error": str(exc), "code": "STORE_UNAVAILABLE", "details": {}},
        headers={"X-Error-Type": "store_unavailable"},
    )
