"""
API — 統計快取回填路由。
啟動 / 取消 / 查詢回填狀態。啟動時會重新讀取設定檔並套用快取失效政策。
"""

from fastapi import APIRouter, Depends, Request

from api.rate_limit import limiter
from api.schemas import (
    AcceptedResponse,
    BackfillCancelResponse,
    BackfillStartRequest,
    BackfillStartResponse,
    BackfillStatusResponse,
)
from application.backfill import BackfillService, get_backfill_service
from domain.constants import BACKFILL_START_RATE_LIMIT
from logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/backfill", tags=["backfill"])


@router.get(
    "/status", response_model=BackfillStatusResponse, summary="Get backfill status"
)
def get_backfill_status(
    service: BackfillService = Depends(get_backfill_service),
) -> BackfillStatusResponse:
    return BackfillStatusResponse(**service.backfill_status())


@router.post(
    "/start",
    response_model=BackfillStartResponse,
    status_code=202,
    summary="Start (or restart) the backfill",
)
@limiter.limit(BACKFILL_START_RATE_LIMIT)
def start_backfill(
    request: Request,
    payload: BackfillStartRequest | None = None,
    service: BackfillService = Depends(get_backfill_service),
) -> BackfillStartResponse:
    """
    取消執行中的回填並以最新設定檔重新啟動。

    Rate limited: 避免反覆重啟造成 Yahoo Finance 過載。
    """
    payload = payload or BackfillStartRequest()
    run_id = service.start_backfill(
        dispatch_delay=payload.dispatch_delay,
        max_concurrency=payload.max_concurrency,
    )
    logger.info("API 觸發回填：run %s", run_id)
    return BackfillStartResponse(run_id=run_id)


@router.post(
    "/cancel", response_model=BackfillCancelResponse, summary="Cancel the backfill"
)
def cancel_backfill(
    service: BackfillService = Depends(get_backfill_service),
) -> BackfillCancelResponse:
    return BackfillCancelResponse(cancelled=service.cancel_backfill())


@router.post(
    "/refresh",
    response_model=AcceptedResponse,
    summary="Restart the backfill if daily caches are stale",
)
def refresh_backfill(
    service: BackfillService = Depends(get_backfill_service),
) -> AcceptedResponse:
    """跨日（或週五 sneak peek）時清空日線類快取並重新回填。"""
    if service.refresh_if_stale():
        return AcceptedResponse(message="Daily caches refreshed; backfill restarted.")
    return AcceptedResponse(status="ok", message="Daily caches are up to date.")
