"""News and sentiment endpoints."""
import time

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from src.api.v2.deps import force_refresh, get_service
from src.api.v2.headers import cache_headers
from src.api.v2.models import SentimentRequest, SentimentResponse
from src.core.service import MoodService

router = APIRouter(tags=["News"])


@router.get("/news")
async def get_news(
    coin: str = Query("bitcoin"),
    force: bool = Depends(force_refresh),
    service: MoodService = Depends(get_service),
):
    started = time.perf_counter()
    result = await service.get_news(coin, force=force)
    return JSONResponse(result.payload.model_dump(mode="json"), headers=cache_headers(result, started))


@router.get("/api/sentiment-summary")
async def get_sentiment_summary(
    coin: str = Query("bitcoin"),
    force: bool = Depends(force_refresh),
    service: MoodService = Depends(get_service),
):
    """Canonical mood score for *coin*, built from its latest headlines."""
    started = time.perf_counter()
    result = await service.get_sentiment_summary(coin, force=force)
    return JSONResponse(result.payload.model_dump(mode="json"), headers=cache_headers(result, started))


@router.post("/sentiment", response_model=SentimentResponse)
async def score_sentiment(req: SentimentRequest, service: MoodService = Depends(get_service)):
    """Score caller-supplied headlines."""
    headlines = req.as_headlines()
    if not headlines:
        return SentimentResponse(score=0.5, label="Neutral", count=0, method="no-data")
    result = await service.score_headlines(headlines)
    return SentimentResponse(
        score=result.score,
        label=result.label,
        count=len(headlines),
        method=result.source,
        summary=result.summary,
    )
