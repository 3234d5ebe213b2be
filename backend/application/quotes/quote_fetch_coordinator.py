"""
Application — 報價輪詢協調器。
依市場時段決定要抓哪些代號，並行呼叫遠端行情，組裝成 FetchResult。
所有函式皆為無狀態，遠端行情以 StockServiceProtocol 注入。
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from domain.constants import (
    MARKET_STATE_CLOSED,
    MARKET_STATE_SYMBOL,
    QUOTE_FETCH_THREAD_POOL_SIZE,
)
from domain.entities import FetchResult, StockQuote
from domain.enums import MarketState
from domain.market_schedule import get_today_schedule, is_weekend
from domain.protocols import StockServiceProtocol
from infrastructure.ticker_config import WatchlistConfig
from logging_config import get_logger

logger = get_logger(__name__)


def ensure_closed_market_symbol(symbol: str, symbols: list[str]) -> list[str]:
    """休市時顯示的代號若不在清單中則附加於尾端（不重複）。"""
    if symbol in symbols:
        return list(symbols)
    return [*symbols, symbol]


def extract_market_state(
    quotes: dict[str, StockQuote], symbol: str = MARKET_STATE_SYMBOL
) -> str | None:
    quote = quotes.get(symbol)
    return quote.market_state if quote is not None else None


def _fetch_concurrently(
    service: StockServiceProtocol, *symbol_lists: list[str]
) -> list[dict[str, StockQuote]]:
    """多組代號清單並行呼叫 fetch_quotes，依輸入順序回傳。"""
    with ThreadPoolExecutor(
        max_workers=QUOTE_FETCH_THREAD_POOL_SIZE, thread_name_prefix="quotes"
    ) as executor:
        futures = [executor.submit(service.fetch_quotes, s) for s in symbol_lists]
        return [f.result() for f in futures]


def fetch_initial_load(
    service: StockServiceProtocol,
    watchlist: list[str],
    index_symbols: list[str],
    always_open_symbols: list[str],
    closed_market_symbol: str,
    is_weekend: bool,
) -> FetchResult:
    """
    首次載入：watchlist、指數、24h 市場三組並行抓取。
    週末強制視為 CLOSED；否則取 watchlist 中的 SPY 狀態，再退回指數報價。
    """
    all_symbols = ensure_closed_market_symbol(closed_market_symbol, watchlist)
    quotes, index_quotes, always_open = _fetch_concurrently(
        service, all_symbols, index_symbols, always_open_symbols
    )
    combined_index = {**index_quotes, **always_open}

    if is_weekend:
        market_state = MARKET_STATE_CLOSED
    else:
        market_state = extract_market_state(quotes) or extract_market_state(
            combined_index
        )

    logger.debug(
        "首次載入報價：watchlist %d / 指數 %d 檔，市場狀態 %s。",
        len(quotes),
        len(combined_index),
        market_state,
    )
    return FetchResult(
        quotes=quotes,
        index_quotes=combined_index,
        yahoo_market_state=market_state,
        fetched_symbols=all_symbols,
        should_merge_quotes=False,
        is_initial_load_complete=True,
    )


def fetch_regular_session(
    service: StockServiceProtocol,
    watchlist: list[str],
    index_symbols: list[str],
    closed_market_symbol: str,
) -> FetchResult:
    all_symbols = ensure_closed_market_symbol(closed_market_symbol, watchlist)
    quotes, index_quotes = _fetch_concurrently(service, all_symbols, index_symbols)
    return FetchResult(
        quotes=quotes,
        index_quotes=index_quotes,
        yahoo_market_state=extract_market_state(quotes),
        fetched_symbols=all_symbols,
    )


def fetch_extended_hours(
    service: StockServiceProtocol,
    watchlist: list[str],
    always_open_symbols: list[str],
    closed_market_symbol: str,
) -> FetchResult:
    """盤前 / 盤後：指數不動，只更新 24h 市場。"""
    all_symbols = ensure_closed_market_symbol(closed_market_symbol, watchlist)
    quotes, always_open = _fetch_concurrently(service, all_symbols, always_open_symbols)
    return FetchResult(
        quotes=quotes,
        index_quotes=always_open,
        yahoo_market_state=extract_market_state(quotes),
        fetched_symbols=all_symbols,
    )


def fetch_closed_market(
    service: StockServiceProtocol,
    closed_market_symbol: str,
    always_open_symbols: list[str],
) -> FetchResult:
    """休市：只抓休市代號與 24h 市場，結果需合併進既有報價。"""
    symbols = list(dict.fromkeys([closed_market_symbol, *always_open_symbols]))
    quotes = service.fetch_quotes(symbols)
    return FetchResult(
        quotes=quotes,
        index_quotes=dict(quotes),
        yahoo_market_state=MARKET_STATE_CLOSED,
        fetched_symbols=symbols,
        should_merge_quotes=True,
    )


def fetch_for_session(
    service: StockServiceProtocol,
    config: WatchlistConfig,
    now: datetime,
    initial_load: bool = False,
) -> FetchResult:
    """依當下美東時段選擇輪詢方式。"""
    closed_symbol = config.menu_bar_asset_when_closed
    if initial_load:
        return fetch_initial_load(
            service,
            config.watchlist,
            config.index_symbol_list,
            config.always_open_symbol_list,
            closed_symbol,
            is_weekend(now),
        )

    state = get_today_schedule(now).state
    if state == MarketState.OPEN:
        return fetch_regular_session(
            service, config.watchlist, config.index_symbol_list, closed_symbol
        )
    if state in (MarketState.PRE_MARKET, MarketState.AFTER_HOURS):
        return fetch_extended_hours(
            service, config.watchlist, config.always_open_symbol_list, closed_symbol
        )
    return fetch_closed_market(service, closed_symbol, config.always_open_symbol_list)
