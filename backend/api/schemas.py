"""
API — Pydantic Request / Response Schemas。
僅用於 HTTP 層的資料驗證與序列化，不含業務邏輯。
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from domain.entities import FetchResult, StockQuote
from domain.enums import BackfillStatus


# ---------------------------------------------------------------------------
# Common
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """GET /health 回應。"""

    status: str
    service: str


class AcceptedResponse(BaseModel):
    """非同步操作已接受回應。"""

    status: str = "accepted"
    message: str


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------


class BackfillStartRequest(BaseModel):
    """POST /backfill/start 請求 Body（皆為選填，未填使用設定值）。"""

    dispatch_delay: Optional[float] = Field(default=None, ge=0)
    max_concurrency: Optional[int] = Field(default=None, ge=1)


class BackfillStartResponse(BaseModel):
    status: str = "accepted"
    run_id: str


class BackfillCancelResponse(BaseModel):
    cancelled: bool


class BackfillStatusResponse(BaseModel):
    """GET /backfill/status 回應。"""

    status: BackfillStatus
    run_id: Optional[str] = None
    phase: Optional[str] = None
    is_running: bool
    completed_units: int
    notifications: dict[str, int] = {}


# ---------------------------------------------------------------------------
# Caches
# ---------------------------------------------------------------------------


class CacheSummary(BaseModel):
    name: str
    entries: int
    stamp: Any = None
    last_updated: str
    policy: str


class CacheDetailResponse(BaseModel):
    name: str
    stamp: Any = None
    last_updated: str
    entries: dict[str, Any]


class CacheClearRequest(BaseModel):
    """POST /admin/cache/clear 請求 Body；names 為空代表全部。"""

    names: list[str] = []


class CacheClearResponse(BaseModel):
    status: str = "ok"
    cleared: list[str]


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


class QuoteResponse(BaseModel):
    symbol: str
    price: float
    previous_close: float
    change: float
    change_percent: float
    market_state: Optional[str] = None
    pre_market_price: Optional[float] = None
    pre_market_change_percent: Optional[float] = None
    post_market_price: Optional[float] = None
    post_market_change_percent: Optional[float] = None

    @classmethod
    def from_quote(cls, quote: StockQuote) -> "QuoteResponse":
        return cls(
            symbol=quote.symbol,
            price=quote.price,
            previous_close=quote.previous_close,
            change=round(quote.change, 4),
            change_percent=round(quote.change_percent, 4),
            market_state=quote.market_state,
            pre_market_price=quote.pre_market_price,
            pre_market_change_percent=quote.pre_market_change_percent,
            post_market_price=quote.post_market_price,
            post_market_change_percent=quote.post_market_change_percent,
        )


class QuotesResponse(BaseModel):
    """GET /quotes 回應。"""

    market_state: Optional[str] = None
    schedule: str
    holiday: Optional[str] = None
    quotes: dict[str, QuoteResponse]
    index_quotes: dict[str, QuoteResponse]
    fetched_symbols: list[str]
    should_merge_quotes: bool
    is_initial_load_complete: bool

    @classmethod
    def from_result(
        cls, result: FetchResult, schedule: str, holiday: Optional[str]
    ) -> "QuotesResponse":
        return cls(
            market_state=result.yahoo_market_state,
            schedule=schedule,
            holiday=holiday,
            quotes={s: QuoteResponse.from_quote(q) for s, q in result.quotes.items()},
            index_quotes={
                s: QuoteResponse.from_quote(q) for s, q in result.index_quotes.items()
            },
            fetched_symbols=result.fetched_symbols,
            should_merge_quotes=result.should_merge_quotes,
            is_initial_load_complete=result.is_initial_load_complete,
        )
