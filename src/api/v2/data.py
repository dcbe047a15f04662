"""Market data endpoints: price snapshot and history, cache-first."""
import time

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from src.api.v2.deps import force_refresh, get_service
from src.api.v2.headers import cache_headers
from src.core.service import MoodService

router = APIRouter(tags=["Data"])


@router.get("/price")
async def get_price(
    coin: str = Query("bitcoin"),
    force: bool = Depends(force_refresh),
    service: MoodService = Depends(get_service),
):
    """Latest price snapshot; stale entries are served while a refresh runs."""
    started = time.perf_counter()
    result = await service.get_price(coin, force=force)
    return JSONResponse(result.payload.model_dump(mode="json"), headers=cache_headers(result, started))


@router.get("/history")
async def get_history(
    coin: str = Query("bitcoin"),
    days: int = Query(7),
    force: bool = Depends(force_refresh),
    service: MoodService = Depends(get_service),
):
    """Price series for the last *days* days, clamped to the configured window."""
    started = time.perf_counter()
    result = await service.get_history(coin, days, force=force)
    return JSONResponse(result.payload.model_dump(mode="json"), headers=cache_headers(result, started))
