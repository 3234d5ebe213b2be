"""
Infrastructure — Yahoo Finance 行情適配器 (yfinance)。
實作 StockServiceProtocol：即時報價、歷史收盤統計、EMA / RSI / 波段與 forward P/E。
所有對外方法皆以 try/except 包裹，失敗時回傳 None（batch 版本只回傳成功的代號）；
底層呼叫含 tenacity 重試機制，針對暫時性網路 / DNS 錯誤自動指數退避重試。
"""

import threading
from datetime import datetime, timedelta, timezone

import pandas as pd
import yfinance as yf
from cachetools import TTLCache
from curl_cffi import requests as cffi_requests
from curl_cffi.curl import CurlError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from domain.analysis import (
    build_daily_analysis,
    build_swing_level_entry,
    compute_ema,
    compute_rsi,
    count_weeks_below,
    detect_weekly_crossover,
)
from domain.constants import (
    CURL_CFFI_IMPERSONATE,
    DAILY_EMA_HISTORY_PERIOD,
    DEFAULT_MAX_CONCURRENCY,
    MARKET_STATE_SYMBOL,
    QUOTE_CACHE_MAXSIZE,
    QUOTE_CACHE_TTL,
    RSI_HISTORY_PERIOD,
    WEEKLY_EMA_HISTORY_PERIOD,
    YAHOO_REQUEST_TIMEOUT,
    YAHOO_TIMESERIES_URL,
    YFINANCE_RATE_LIMIT_CPS,
    YFINANCE_RETRY_ATTEMPTS,
    YFINANCE_RETRY_WAIT_MAX,
    YFINANCE_RETRY_WAIT_MIN,
)
from domain.entities import DailyAnalysisResult, EMAEntry, StockQuote, SwingLevelEntry
from domain.market_schedule import to_eastern
from domain.protocols import DateProvider
from domain.quarters import quarter_identifier, timestamp_to_date
from infrastructure.concurrency import RateLimiter, throttled_map
from infrastructure.system import SystemDateProvider
from logging_config import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Retry Decorator：針對暫時性網路/DNS 錯誤自動指數退避重試
# ---------------------------------------------------------------------------
_RETRYABLE_EXCEPTIONS = (CurlError, ConnectionError, OSError)

_yf_retry = retry(
    stop=stop_after_attempt(YFINANCE_RETRY_ATTEMPTS),
    wait=wait_exponential(min=YFINANCE_RETRY_WAIT_MIN, max=YFINANCE_RETRY_WAIT_MAX),
    retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
    reraise=True,
)

_rate_limiter = RateLimiter(calls_per_second=YFINANCE_RATE_LIMIT_CPS)


def _get_session() -> cffi_requests.Session:
    """建立模擬 Chrome 瀏覽器的 Session，以繞過 Yahoo Finance 的 bot 防護。"""
    return cffi_requests.Session(impersonate=CURL_CFFI_IMPERSONATE)


# ---------------------------------------------------------------------------
# Retryable yfinance / HTTP primitives
# ---------------------------------------------------------------------------


@_yf_retry
def _yf_history(ticker: str, **kwargs) -> pd.DataFrame:
    """
    取得 yfinance 歷史資料（含重試）。
    空結果也視為可重試：yfinance 有時會吞掉 CurlError/SSL 錯誤，
    僅回傳空 DataFrame 而不拋出例外，導致 @_yf_retry 無法觸發。
    """
    _rate_limiter.wait()
    hist = yf.Ticker(ticker, session=_get_session()).history(auto_adjust=False, **kwargs)
    if hist.empty:
        raise OSError(
            f"{ticker}: yfinance returned empty history, possibly due to a swallowed network error"
        )
    return hist


@_yf_retry
def _yf_info(ticker: str) -> dict:
    """取得 yfinance quote info（含重試）。"""
    _rate_limiter.wait()
    return yf.Ticker(ticker, session=_get_session()).info or {}


@_yf_retry
def _timeseries_forward_pe(ticker: str, period1: int, period2: int) -> dict:
    """Yahoo fundamentals-timeseries：quarterlyForwardPeRatio（含重試）。"""
    _rate_limiter.wait()
    resp = _get_session().get(
        f"{YAHOO_TIMESERIES_URL}{ticker}",
        params={
            "type": "quarterlyForwardPeRatio",
            "period1": period1,
            "period2": period2,
        },
        timeout=YAHOO_REQUEST_TIMEOUT,
    )
    if resp.status_code >= 500:
        raise ConnectionError(f"{ticker}: timeseries HTTP {resp.status_code}")
    resp.raise_for_status()
    return resp.json()


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _closes_and_timestamps(hist: pd.DataFrame) -> tuple[list[float], list[int]]:
    """去除 NaN 收盤價，回傳 (closes, unix 秒)。"""
    closes: list[float] = []
    timestamps: list[int] = []
    for ts, close in hist["Close"].items():
        if pd.isna(close):
            continue
        closes.append(float(close))
        timestamps.append(int(pd.Timestamp(ts).timestamp()))
    return closes, timestamps


def _optional_float(value) -> float | None:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _quote_from_info(symbol: str, info: dict) -> StockQuote | None:
    price = _optional_float(info.get("regularMarketPrice") or info.get("currentPrice"))
    previous_close = _optional_float(
        info.get("regularMarketPreviousClose") or info.get("previousClose")
    )
    if price is None or previous_close is None:
        return None
    return StockQuote(
        symbol=symbol,
        price=price,
        previous_close=previous_close,
        market_state=info.get("marketState"),
        pre_market_price=_optional_float(info.get("preMarketPrice")),
        pre_market_change=_optional_float(info.get("preMarketChange")),
        pre_market_change_percent=_optional_float(info.get("preMarketChangePercent")),
        post_market_price=_optional_float(info.get("postMarketPrice")),
        post_market_change=_optional_float(info.get("postMarketChange")),
        post_market_change_percent=_optional_float(info.get("postMarketChangePercent")),
    )


def as_of_date_to_quarter(as_of_date: str) -> str | None:
    """ "2025-12-31" → "Q4-2025"；格式不符回傳 None。"""
    parts = as_of_date.split("-")
    if len(parts) != 3:
        return None
    try:
        year, month = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not 1 <= month <= 12:
        return None
    return quarter_identifier(year, (month - 1) // 3 + 1)


def parse_forward_pe_response(payload: dict) -> dict[str, float]:
    """
    解析 timeseries 回應為 {quarter id → ratio}。
    API 成功但無 forward P/E 資料時回傳空 dict（代表「確認無資料」）。
    """
    results = (payload.get("timeseries") or {}).get("result") or []
    entries = None
    for result in results:
        if result.get("quarterlyForwardPeRatio"):
            entries = result["quarterlyForwardPeRatio"]
            break
    if not entries:
        return {}

    ratios: dict[str, float] = {}
    for entry in entries:
        if not entry:
            continue
        quarter = as_of_date_to_quarter(str(entry.get("asOfDate", "")))
        raw = (entry.get("reportedValue") or {}).get("raw")
        if quarter is None or raw is None:
            continue
        ratios[quarter] = float(raw)
    return ratios


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class YahooStockService:
    """StockServiceProtocol 的 yfinance 實作。"""

    def __init__(
        self,
        date_provider: DateProvider | None = None,
        batch_max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self._date_provider = date_provider or SystemDateProvider()
        self._batch_max_concurrency = batch_max_concurrency
        self._quote_cache: TTLCache = TTLCache(
            maxsize=QUOTE_CACHE_MAXSIZE, ttl=QUOTE_CACHE_TTL
        )
        self._quote_cache_lock = threading.Lock()

    def _batch(self, symbols: list[str], fetcher) -> dict:
        return throttled_map(
            dict.fromkeys(symbols), fetcher, max_concurrency=self._batch_max_concurrency
        )

    def clear_quote_cache(self) -> int:
        with self._quote_cache_lock:
            size = len(self._quote_cache)
            self._quote_cache.clear()
        return size

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def fetch_quote(self, symbol: str) -> StockQuote | None:
        with self._quote_cache_lock:
            cached = self._quote_cache.get(symbol)
        if cached is not None:
            return cached

        try:
            quote = _quote_from_info(symbol, _yf_info(symbol))
        except Exception as e:
            logger.warning("%s 報價取得失敗：%s", symbol, e)
            return None
        if quote is None:
            logger.warning("%s 報價資料不完整，略過。", symbol)
            return None

        with self._quote_cache_lock:
            self._quote_cache[symbol] = quote
        return quote

    def fetch_quotes(self, symbols: list[str]) -> dict[str, StockQuote]:
        return self._batch(symbols, self.fetch_quote)

    def fetch_market_state(self, symbol: str = MARKET_STATE_SYMBOL) -> str | None:
        quote = self.fetch_quote(symbol)
        return quote.market_state if quote else None

    # ------------------------------------------------------------------
    # Historical close helpers
    # ------------------------------------------------------------------

    def _range_closes(
        self, symbol: str, period1: int, period2: int
    ) -> tuple[list[float], list[int]]:
        start = timestamp_to_date(period1)
        end = timestamp_to_date(period2) + timedelta(days=1)  # yfinance end 不含當日
        hist = _yf_history(symbol, start=start, end=end, interval="1d")
        return _closes_and_timestamps(hist)

    def _period_closes(self, symbol: str, period: str, interval: str) -> list[float]:
        hist = _yf_history(symbol, period=period, interval=interval)
        return _closes_and_timestamps(hist)[0]

    # ------------------------------------------------------------------
    # YTD / Quarter-end
    # ------------------------------------------------------------------

    def fetch_ytd_start_price(self, symbol: str) -> float | None:
        """去年最後一個交易日收盤價（以 12/24 ~ 12/31 區間涵蓋假日）。"""
        year = to_eastern(self._date_provider.now()).year
        start = datetime(year - 1, 12, 24, tzinfo=timezone.utc)
        end = datetime(year - 1, 12, 31, tzinfo=timezone.utc)
        try:
            closes, _ = self._range_closes(
                symbol, int(start.timestamp()), int(end.timestamp())
            )
        except Exception as e:
            logger.warning("%s YTD 起始價取得失敗：%s", symbol, e)
            return None
        return closes[-1] if closes else None

    def batch_fetch_ytd_prices(self, symbols: list[str]) -> dict[str, float]:
        return self._batch(symbols, self.fetch_ytd_start_price)

    def fetch_quarter_end_price(
        self, symbol: str, period1: int, period2: int
    ) -> float | None:
        try:
            closes, _ = self._range_closes(symbol, period1, period2)
        except Exception as e:
            logger.warning("%s 季末收盤價取得失敗：%s", symbol, e)
            return None
        return closes[-1] if closes else None

    def batch_fetch_quarter_end_prices(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, float]:
        return self._batch(
            symbols, lambda s: self.fetch_quarter_end_price(s, period1, period2)
        )

    # ------------------------------------------------------------------
    # Highest close / Swing levels / Daily analysis
    # ------------------------------------------------------------------

    def fetch_highest_close(
        self, symbol: str, period1: int, period2: int
    ) -> float | None:
        try:
            closes, _ = self._range_closes(symbol, period1, period2)
        except Exception as e:
            logger.warning("%s 最高收盤價取得失敗：%s", symbol, e)
            return None
        return max(closes) if closes else None

    def batch_fetch_highest_closes(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, float]:
        return self._batch(
            symbols, lambda s: self.fetch_highest_close(s, period1, period2)
        )

    def fetch_swing_levels(
        self, symbol: str, period1: int, period2: int
    ) -> SwingLevelEntry | None:
        try:
            closes, timestamps = self._range_closes(symbol, period1, period2)
        except Exception as e:
            logger.warning("%s 波段價位取得失敗：%s", symbol, e)
            return None
        return build_swing_level_entry(closes, timestamps)

    def batch_fetch_swing_levels(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, SwingLevelEntry]:
        return self._batch(
            symbols, lambda s: self.fetch_swing_levels(s, period1, period2)
        )

    def fetch_daily_analysis(
        self, symbol: str, period1: int, period2: int
    ) -> DailyAnalysisResult | None:
        try:
            closes, timestamps = self._range_closes(symbol, period1, period2)
        except Exception as e:
            logger.warning("%s 日線分析資料取得失敗：%s", symbol, e)
            return None
        return build_daily_analysis(closes, timestamps)

    def batch_fetch_daily_analysis(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, DailyAnalysisResult]:
        return self._batch(
            symbols, lambda s: self.fetch_daily_analysis(s, period1, period2)
        )

    # ------------------------------------------------------------------
    # RSI / EMA
    # ------------------------------------------------------------------

    def fetch_rsi(self, symbol: str) -> float | None:
        try:
            closes = self._period_closes(symbol, RSI_HISTORY_PERIOD, "1d")
        except Exception as e:
            logger.warning("%s RSI 取得失敗：%s", symbol, e)
            return None
        return compute_rsi(closes)

    def batch_fetch_rsi_values(self, symbols: list[str]) -> dict[str, float]:
        return self._batch(symbols, self.fetch_rsi)

    def fetch_daily_ema(self, symbol: str) -> float | None:
        try:
            closes = self._period_closes(symbol, DAILY_EMA_HISTORY_PERIOD, "1d")
        except Exception as e:
            logger.warning("%s 日線 EMA 取得失敗：%s", symbol, e)
            return None
        return compute_ema(closes)

    def _weekly_closes(self, symbol: str) -> list[float] | None:
        try:
            return self._period_closes(symbol, WEEKLY_EMA_HISTORY_PERIOD, "1wk")
        except Exception as e:
            logger.warning("%s 週線資料取得失敗：%s", symbol, e)
            return None

    def fetch_weekly_ema(self, symbol: str) -> float | None:
        closes = self._weekly_closes(symbol)
        return compute_ema(closes) if closes else None

    def fetch_ema_entry(
        self, symbol: str, precomputed_daily_ema: float | None = None
    ) -> EMAEntry | None:
        day = (
            precomputed_daily_ema
            if precomputed_daily_ema is not None
            else self.fetch_daily_ema(symbol)
        )
        weekly = self._weekly_closes(symbol)
        if day is None and not weekly:
            return None
        return EMAEntry(
            day=day,
            week=compute_ema(weekly) if weekly else None,
            week_crossover_weeks_below=detect_weekly_crossover(weekly) if weekly else None,
            week_below_count=count_weeks_below(weekly) if weekly else None,
        )

    def batch_fetch_ema_values(self, symbols: list[str]) -> dict[str, EMAEntry]:
        return self._batch(symbols, self.fetch_ema_entry)

    # ------------------------------------------------------------------
    # Forward P/E
    # ------------------------------------------------------------------

    def fetch_forward_pe_ratios(
        self, symbol: str, period1: int, period2: int
    ) -> dict[str, float] | None:
        try:
            payload = _timeseries_forward_pe(symbol, period1, period2)
        except Exception as e:
            logger.warning("%s forward P/E 取得失敗：%s", symbol, e)
            return None
        try:
            return parse_forward_pe_response(payload)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("%s forward P/E 回應格式錯誤：%s", symbol, e)
            return None

    def batch_fetch_forward_pe_ratios(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, dict[str, float]]:
        return self._batch(
            symbols, lambda s: self.fetch_forward_pe_ratios(s, period1, period2)
        )
