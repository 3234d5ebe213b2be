"""
Domain — 外部協作者介面 (Protocols)。
遠端行情、檔案系統與時鐘皆以 Protocol 描述，方便在測試中替換為 mock。
"""

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from domain.entities import DailyAnalysisResult, EMAEntry, StockQuote, SwingLevelEntry


@runtime_checkable
class StockServiceProtocol(Protocol):
    """
    Interface for remote market-data clients (yfinance, etc.).
    所有單檔方法失敗時回傳 None；batch 方法只回傳成功的代號。
    period1 / period2 為 Unix timestamp（秒）。
    """

    def fetch_quote(self, symbol: str) -> Optional[StockQuote]:
        """Latest quote with extended-hours fields."""
        ...

    def fetch_quotes(self, symbols: list[str]) -> dict[str, StockQuote]:
        ...

    def fetch_market_state(self, symbol: str = "SPY") -> Optional[str]:
        """Yahoo marketState of the reference symbol."""
        ...

    def fetch_ytd_start_price(self, symbol: str) -> Optional[float]:
        """Last close of the previous calendar year."""
        ...

    def batch_fetch_ytd_prices(self, symbols: list[str]) -> dict[str, float]:
        ...

    def fetch_quarter_end_price(
        self, symbol: str, period1: int, period2: int
    ) -> Optional[float]:
        """Last close inside [period1, period2]."""
        ...

    def batch_fetch_quarter_end_prices(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, float]:
        ...

    def fetch_highest_close(
        self, symbol: str, period1: int, period2: int
    ) -> Optional[float]:
        ...

    def batch_fetch_highest_closes(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, float]:
        ...

    def fetch_forward_pe_ratios(
        self, symbol: str, period1: int, period2: int
    ) -> Optional[dict[str, float]]:
        """Quarter id → forward P/E. 空 dict 表示「確認無資料」。"""
        ...

    def batch_fetch_forward_pe_ratios(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, dict[str, float]]:
        ...

    def fetch_swing_levels(
        self, symbol: str, period1: int, period2: int
    ) -> Optional[SwingLevelEntry]:
        ...

    def batch_fetch_swing_levels(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, SwingLevelEntry]:
        ...

    def fetch_rsi(self, symbol: str) -> Optional[float]:
        ...

    def batch_fetch_rsi_values(self, symbols: list[str]) -> dict[str, float]:
        ...

    def fetch_daily_ema(self, symbol: str) -> Optional[float]:
        ...

    def fetch_weekly_ema(self, symbol: str) -> Optional[float]:
        ...

    def fetch_ema_entry(
        self, symbol: str, precomputed_daily_ema: Optional[float] = None
    ) -> Optional[EMAEntry]:
        """Day + week EMA (with crossover counters); 已有日線值時跳過日線請求。"""
        ...

    def batch_fetch_ema_values(self, symbols: list[str]) -> dict[str, EMAEntry]:
        ...

    def fetch_daily_analysis(
        self, symbol: str, period1: int, period2: int
    ) -> Optional[DailyAnalysisResult]:
        """Highest close, swing levels, RSI and daily EMA from one history request."""
        ...

    def batch_fetch_daily_analysis(
        self, symbols: list[str], period1: int, period2: int
    ) -> dict[str, DailyAnalysisResult]:
        ...


@runtime_checkable
class FileSystem(Protocol):
    """Minimal file-system surface used by the cache blob store."""

    def exists(self, path: str) -> bool:
        ...

    def make_dirs(self, path: str) -> None:
        ...

    def read_bytes(self, path: str) -> Optional[bytes]:
        ...

    def write_bytes(self, path: str, data: bytes) -> None:
        ...


@runtime_checkable
class DateProvider(Protocol):
    """Injectable clock; now() 回傳帶時區的 datetime。"""

    def now(self) -> datetime:
        ...
