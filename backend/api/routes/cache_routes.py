"""
API — 統計快取查詢與管理路由。
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from api.rate_limit import limiter
from api.schemas import (
    CacheClearRequest,
    CacheClearResponse,
    CacheDetailResponse,
    CacheSummary,
)
from application.backfill import BackfillService, UnknownCacheError, get_backfill_service
from domain.constants import CACHE_CLEAR_RATE_LIMIT

router = APIRouter(tags=["caches"])


def _unknown_cache(name: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"error_code": "CACHE_NOT_FOUND", "detail": f"Unknown cache: {name}"},
    )


@router.get("/caches", response_model=list[CacheSummary], summary="List caches")
def list_caches(
    service: BackfillService = Depends(get_backfill_service),
) -> list[CacheSummary]:
    return [CacheSummary(**s) for s in service.cache_summaries()]


@router.get(
    "/caches/{name}", response_model=CacheDetailResponse, summary="Get cache entries"
)
def get_cache(
    name: str, service: BackfillService = Depends(get_backfill_service)
) -> CacheDetailResponse:
    try:
        return CacheDetailResponse(**service.cache_detail(name))
    except UnknownCacheError:
        raise _unknown_cache(name)


@router.post(
    "/caches/retry-missing",
    response_model=dict[str, int],
    summary="Retry a small batch of missing EMA / forward P/E entries",
)
def retry_missing(
    service: BackfillService = Depends(get_backfill_service),
) -> dict[str, int]:
    return service.retry_missing()


@router.post(
    "/admin/cache/clear",
    response_model=CacheClearResponse,
    summary="Clear statistic caches",
)
@limiter.limit(CACHE_CLEAR_RATE_LIMIT)
def clear_caches(
    request: Request,
    payload: CacheClearRequest | None = None,
    service: BackfillService = Depends(get_backfill_service),
) -> CacheClearResponse:
    """清空指定快取（未指定則全部）；執行中的回填會先被取消。"""
    payload = payload or CacheClearRequest()
    try:
        cleared = service.clear_caches(payload.names or None)
    except UnknownCacheError as e:
        raise _unknown_cache(str(e.args[0]))
    return CacheClearResponse(cleared=cleared)
