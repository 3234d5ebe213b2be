"""
API — 即時報價路由。依當下美東市場時段選擇輪詢方式。
"""

from fastapi import APIRouter, Depends, Query

from api.schemas import QuotesResponse
from application.backfill import BackfillService, get_backfill_service
from application.quotes import fetch_for_session
from domain.market_schedule import get_today_schedule

router = APIRouter(tags=["quotes"])


@router.get("/quotes", response_model=QuotesResponse, summary="Fetch latest quotes")
def get_quotes(
    initial: bool = Query(default=False, description="首次載入（同時抓取指數與 24h 市場）"),
    service: BackfillService = Depends(get_backfill_service),
) -> QuotesResponse:
    now = service.date_provider.now()
    schedule = get_today_schedule(now)
    result = fetch_for_session(
        service.stock_service, service.load_config(), now, initial_load=initial
    )
    return QuotesResponse.from_result(result, schedule.schedule, schedule.holiday_name)
