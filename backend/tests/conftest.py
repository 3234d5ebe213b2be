"""
Shared test fixtures — TestClient, in-memory file system, fixed clock, mock stock service.
"""

import os
import tempfile

# Set environment variables BEFORE any app imports to avoid touching ~/.stockticker
os.environ.setdefault(
    "LOG_DIR", os.path.join(tempfile.gettempdir(), "stockticker_test_logs")
)
os.environ.setdefault(
    "CACHE_DIR", os.path.join(tempfile.gettempdir(), "stockticker_test_cache")
)
os.environ.setdefault("BACKFILL_DISPATCH_DELAY", "0")
os.environ.setdefault("BACKFILL_ON_STARTUP", "false")
os.environ.pop("STOCKTICKER_API_KEY", None)

import threading  # noqa: E402
import time  # noqa: E402
from collections.abc import Generator  # noqa: E402
from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from api.rate_limit import limiter  # noqa: E402
from application.backfill import BackfillService, get_backfill_service  # noqa: E402
from domain.entities import (  # noqa: E402
    DailyAnalysisResult,
    EMAEntry,
    StockQuote,
    SwingLevelEntry,
)
from infrastructure.cache import create_backfill_caches  # noqa: E402
from main import app  # noqa: E402

TEST_CACHE_DIR = "/cache"
TEST_CONFIG_PATH = "/cache/config.json"

# Wednesday 2026-02-11 15:00 UTC (10:00 ET, regular session)
DEFAULT_NOW = datetime(2026, 2, 11, 15, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class MockFileSystem:
    """In-memory FileSystem; records make_dirs / write calls."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.directories: set[str] = set()
        self.make_dirs_calls: list[str] = []
        self.write_calls: list[str] = []
        self._lock = threading.Lock()

    def exists(self, path: str) -> bool:
        with self._lock:
            return path in self.files or path in self.directories

    def make_dirs(self, path: str) -> None:
        with self._lock:
            self.make_dirs_calls.append(path)
            self.directories.add(path)

    def read_bytes(self, path: str) -> bytes | None:
        with self._lock:
            return self.files.get(path)

    def write_bytes(self, path: str, data: bytes) -> None:
        with self._lock:
            self.write_calls.append(path)
            self.files[path] = data


class MockDateProvider:
    def __init__(self, now: datetime = DEFAULT_NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current


class TrackingMockStockService:
    """
    StockServiceProtocol test double.
    回傳預先設定的資料，記錄每次呼叫並追蹤同時進行中的呼叫數上限。
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.quotes: dict[str, StockQuote] = {}
        self.ytd_prices: dict[str, float] = {}
        self.quarter_prices: dict[str, float] = {}
        self.highest_closes: dict[str, float] = {}
        self.swing_levels: dict[str, SwingLevelEntry] = {}
        self.rsi_values: dict[str, float] = {}
        self.daily_emas: dict[str, float] = {}
        self.ema_entries: dict[str, EMAEntry] = {}
        self.forward_pes: dict[str, dict[str, float]] = {}
        self.daily_analysis: dict[str, DailyAnalysisResult] = {}
        self.calls: list[tuple[str, str]] = []
        self.quote_batches: list[list[str]] = []
        self.ema_precomputed: dict[str, float | None] = {}
        self.max_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()

    # -- tracking helpers ----------------------------------------------------

    def _enter(self, method: str, symbol: str) -> None:
        with self._lock:
            self.calls.append((method, symbol))
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        if self.delay:
            time.sleep(self.delay)

    def _exit(self) -> None:
        with self._lock:
            self._in_flight -= 1

    def _tracked(self, method: str, symbol: str, source: dict):
        self._enter(method, symbol)
        try:
            return source.get(symbol)
        finally:
            self._exit()

    def calls_for(self, method: str) -> list[str]:
        with self._lock:
            return [s for m, s in self.calls if m == method]

    # -- quotes --------------------------------------------------------------

    def fetch_quote(self, symbol):
        return self._tracked("fetch_quote", symbol, self.quotes)

    def fetch_quotes(self, symbols):
        with self._lock:
            self.quote_batches.append(list(symbols))
        return {s: self.quotes[s] for s in symbols if s in self.quotes}

    def fetch_market_state(self, symbol="SPY"):
        quote = self.quotes.get(symbol)
        return quote.market_state if quote else None

    # -- single-symbol statistics -------------------------------------------

    def fetch_ytd_start_price(self, symbol):
        return self._tracked("fetch_ytd_start_price", symbol, self.ytd_prices)

    def fetch_quarter_end_price(self, symbol, period1, period2):
        return self._tracked("fetch_quarter_end_price", symbol, self.quarter_prices)

    def fetch_highest_close(self, symbol, period1, period2):
        return self._tracked("fetch_highest_close", symbol, self.highest_closes)

    def fetch_swing_levels(self, symbol, period1, period2):
        return self._tracked("fetch_swing_levels", symbol, self.swing_levels)

    def fetch_rsi(self, symbol):
        return self._tracked("fetch_rsi", symbol, self.rsi_values)

    def fetch_daily_ema(self, symbol):
        return self._tracked("fetch_daily_ema", symbol, self.daily_emas)

    def fetch_weekly_ema(self, symbol):
        entry = self.ema_entries.get(symbol)
        return entry.week if entry else None

    def fetch_ema_entry(self, symbol, precomputed_daily_ema=None):
        with self._lock:
            self.ema_precomputed[symbol] = precomputed_daily_ema
        return self._tracked("fetch_ema_entry", symbol, self.ema_entries)

    def fetch_forward_pe_ratios(self, symbol, period1, period2):
        return self._tracked("fetch_forward_pe_ratios", symbol, self.forward_pes)

    def fetch_daily_analysis(self, symbol, period1, period2):
        return self._tracked("fetch_daily_analysis", symbol, self.daily_analysis)

    # -- batch variants ------------------------------------------------------

    def _batch(self, symbols, fetcher):
        results = {s: fetcher(s) for s in symbols}
        return {s: v for s, v in results.items() if v is not None}

    def batch_fetch_ytd_prices(self, symbols):
        return self._batch(symbols, self.fetch_ytd_start_price)

    def batch_fetch_quarter_end_prices(self, symbols, period1, period2):
        return self._batch(
            symbols, lambda s: self.fetch_quarter_end_price(s, period1, period2)
        )

    def batch_fetch_highest_closes(self, symbols, period1, period2):
        return self._batch(symbols, lambda s: self.fetch_highest_close(s, period1, period2))

    def batch_fetch_swing_levels(self, symbols, period1, period2):
        return self._batch(symbols, lambda s: self.fetch_swing_levels(s, period1, period2))

    def batch_fetch_rsi_values(self, symbols):
        return self._batch(symbols, self.fetch_rsi)

    def batch_fetch_ema_values(self, symbols):
        return self._batch(symbols, self.fetch_ema_entry)

    def batch_fetch_forward_pe_ratios(self, symbols, period1, period2):
        return self._batch(
            symbols, lambda s: self.fetch_forward_pe_ratios(s, period1, period2)
        )

    def batch_fetch_daily_analysis(self, symbols, period1, period2):
        return self._batch(
            symbols, lambda s: self.fetch_daily_analysis(s, period1, period2)
        )


def make_quote(symbol: str, price: float = 100.0, market_state: str | None = "REGULAR"):
    return StockQuote(
        symbol=symbol, price=price, previous_close=price - 1.0, market_state=market_state
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def file_system() -> MockFileSystem:
    return MockFileSystem()


@pytest.fixture()
def date_provider() -> MockDateProvider:
    return MockDateProvider()


@pytest.fixture()
def stock_service() -> TrackingMockStockService:
    return TrackingMockStockService()


@pytest.fixture()
def caches(file_system, date_provider):
    """已載入（空檔案系統）的七個快取，與啟動後 prepare_caches 的狀態一致。"""
    bundle = create_backfill_caches(TEST_CACHE_DIR, file_system, date_provider)
    bundle.load_all()
    return bundle


@pytest.fixture()
def backfill_service(
    stock_service, caches, date_provider, file_system
) -> Generator[BackfillService, None, None]:
    service = BackfillService(
        stock_service=stock_service,
        caches=caches,
        date_provider=date_provider,
        file_system=file_system,
        config_path=TEST_CONFIG_PATH,
    )
    yield service
    service.cancel_backfill()
    service.scheduler.join(timeout=5)


@pytest.fixture()
def client(backfill_service) -> Generator[TestClient, None, None]:
    """TestClient wired to an in-memory BackfillService."""
    app.dependency_overrides[get_backfill_service] = lambda: backfill_service
    limiter.reset()

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
