"""FastAPI application — crypto mood API v2."""
import asyncio
import contextlib
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.v2 import admin, analysis, coins, data, explain, news
from src.api.v2.errors import (
    store_unavailable_handler,
    unsupported_coin_handler,
    upstream_error_handler,
    value_error_handler,
)
from src.core.config import settings
from src.core.data.errors import StoreUnavailable, UnsupportedCoin, UpstreamError
from src.core.logging_config import configure_logging
from src.core.service import create_service

logger = structlog.get_logger()

VERSION = "2.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    service = create_service(settings)
    app.state.service = service
    sweeper = asyncio.create_task(service.run_sweeper())
    logger.info("startup", version=VERSION, store=settings.store_backend, provider=service.market.name)
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await service.aclose()
    logger.info("shutdown")


app = FastAPI(
    title="Crypto Mood API",
    version=VERSION,
    description="Cached market data, news sentiment and compliance-checked AI explanations",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Cache-Status", "X-Cache-Source", "X-Data-Age", "X-Latency-ms", "X-AI-Status", "X-AI-Reason"],
)

app.include_router(coins.router)
app.include_router(data.router)
app.include_router(news.router)
app.include_router(explain.router)
app.include_router(analysis.router)
app.include_router(admin.router)

app.add_exception_handler(UpstreamError, upstream_error_handler)
app.add_exception_handler(UnsupportedCoin, unsupported_coin_handler)
app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
app.add_exception_handler(ValueError, value_error_handler)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}
