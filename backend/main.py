"""
StockTicker — FastAPI 應用程式進入點。
負責建立 App、註冊路由、管理生命週期。
回填與快取邏輯位於 application/backfill。
"""

import os
import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from api.dependencies import require_api_key
from api.rate_limit import limiter
from api.routes.backfill_routes import router as backfill_router
from api.routes.cache_routes import router as cache_router
from api.routes.quote_routes import router as quote_router
from api.schemas import HealthResponse
from config.settings import init_settings
from logging_config import get_logger

# Load environment variables from .env file
load_dotenv()
init_settings()

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: 啟動時於背景開始回填
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("StockTicker 後端啟動中...")

    if os.getenv("BACKFILL_ON_STARTUP", "true").lower() != "false":
        from application.backfill import run_startup_backfill

        # daemon=True 確保不影響關閉
        threading.Thread(target=run_startup_backfill, daemon=True).start()
        logger.info("背景回填已啟動。")

    yield

    from application.backfill import shutdown_backfill

    shutdown_backfill()
    logger.info("StockTicker 後端關閉中...")


# ---------------------------------------------------------------------------
# App Factory
# ---------------------------------------------------------------------------

app = FastAPI(
    title="StockTicker API",
    description="StockTicker — 報價與技術統計快取",
    version="1.0.0",
    lifespan=lifespan,
    # Auth applied per-router, NOT globally (health must be exempt)
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGIN", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["X-API-Key", "Content-Type"],
)


# ---------------------------------------------------------------------------
# Health Check
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse, summary="Health check")
def health_check() -> dict:
    """Health check endpoint - NO auth."""
    return {"status": "ok", "service": "stockticker-backend"}


# ---------------------------------------------------------------------------
# 註冊路由
# ---------------------------------------------------------------------------

auth_deps = [Depends(require_api_key)]

app.include_router(backfill_router, dependencies=auth_deps)
app.include_router(cache_router, dependencies=auth_deps)
app.include_router(quote_router, dependencies=auth_deps)
