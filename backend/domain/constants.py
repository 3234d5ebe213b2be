"""
Domain — 集中管理所有常數與閾值。
避免散落在各模組中的 magic numbers / magic strings。
config/settings.py 的 init_settings() 會在啟動時以環境變數覆寫部分數值。
"""

import os as _os

# ---------------------------------------------------------------------------
# Technical Indicator Parameters
# ---------------------------------------------------------------------------
RSI_PERIOD = 14
EMA_PERIOD = 5
SWING_THRESHOLD = 0.10  # 10% 回檔 / 反彈才算有效波段高低點

# ---------------------------------------------------------------------------
# Quarter Window
# ---------------------------------------------------------------------------
QUARTER_WINDOW_SIZE = 12  # 顯示用：最近 12 個已結束季度
QUARTER_FETCH_WINDOW_SIZE = 13  # 回填用：多抓一季作為 QoQ 基準
QUARTER_END_LOOKBACK_DAYS = 5  # 季末前 5 天（涵蓋週末 / 假日）
QUARTER_END_LOOKAHEAD_DAYS = 2

# ---------------------------------------------------------------------------
# Persistent Cache Directory: 每種統計一個 JSON 檔
# ---------------------------------------------------------------------------
CACHE_DIR = _os.path.join(_os.path.expanduser("~"), ".stockticker")

YTD_CACHE_FILE = "ytd-cache.json"
QUARTERLY_CACHE_FILE = "quarterly-cache.json"
HIGHEST_CLOSE_CACHE_FILE = "highest-close-cache.json"
FORWARD_PE_CACHE_FILE = "forward-pe-cache.json"
SWING_LEVEL_CACHE_FILE = "swing-level-cache.json"
RSI_CACHE_FILE = "rsi-cache.json"
EMA_CACHE_FILE = "ema-cache.json"

# ---------------------------------------------------------------------------
# Market Hours (US/Eastern, minutes since midnight)
# ---------------------------------------------------------------------------
MARKET_TIMEZONE = "America/New_York"
PRE_MARKET_OPEN_MINUTES = 4 * 60
MARKET_OPEN_MINUTES = 9 * 60 + 30
MARKET_CLOSE_MINUTES = 16 * 60
EARLY_CLOSE_MINUTES = 13 * 60
AFTER_HOURS_CLOSE_MINUTES = 20 * 60

# EMA sneak-peek：週五 14:00 ET 之後提前刷新一次週線
SNEAK_PEEK_WEEKDAY = 4  # Monday=0 ... Friday=4
SNEAK_PEEK_HOUR = 14

# ---------------------------------------------------------------------------
# Reference Symbols
# ---------------------------------------------------------------------------
MARKET_STATE_SYMBOL = "SPY"
DEFAULT_CLOSED_MARKET_SYMBOL = "BTC-USD"
MARKET_STATE_CLOSED = "CLOSED"

# ---------------------------------------------------------------------------
# Backfill Scheduler
# ---------------------------------------------------------------------------
BACKFILL_DISPATCH_DELAY = 4.0  # seconds between dispatches
BACKFILL_MAX_CONCURRENCY = 1
BACKFILL_BATCH_NOTIFY_SIZE = 10
CACHE_RETRY_BATCH_SIZE = 5  # 每次重試補抓缺漏快取的最大檔數

# ---------------------------------------------------------------------------
# Throttled Task Runner
# ---------------------------------------------------------------------------
DEFAULT_MAX_CONCURRENCY = 20
QUOTE_FETCH_THREAD_POOL_SIZE = 3  # 報價 / 指數 / 全天候市場 三路並行

# ---------------------------------------------------------------------------
# Rate Limiter & Retry (yfinance)
# ---------------------------------------------------------------------------
YFINANCE_RATE_LIMIT_CPS = 2.0  # calls per second
YFINANCE_RETRY_ATTEMPTS = 3
YFINANCE_RETRY_WAIT_MIN = 1  # seconds
YFINANCE_RETRY_WAIT_MAX = 8  # seconds
CURL_CFFI_IMPERSONATE = "chrome"
QUOTE_CACHE_MAXSIZE = 500
QUOTE_CACHE_TTL = 10  # seconds；輪詢間隔內避免重複請求
YAHOO_TIMESERIES_URL = (
    "https://query2.finance.yahoo.com/ws/fundamentals-timeseries/v1/finance/timeseries/"
)
YAHOO_REQUEST_TIMEOUT = 15
RSI_HISTORY_PERIOD = "1y"
DAILY_EMA_HISTORY_PERIOD = "1mo"
WEEKLY_EMA_HISTORY_PERIOD = "6mo"

# ---------------------------------------------------------------------------
# Watchlist Config
# ---------------------------------------------------------------------------
CONFIG_PATH = _os.path.join(CACHE_DIR, "config.json")

DEFAULT_WATCHLIST: list[str] = [
    "SPY", "QQQ", "XLU", "XLP", "XLC", "XLRE", "XLI", "XLV", "XLE", "XLF",
    "XLK", "XLY", "XLB", "IWM", "DIA", "IBIT", "ETHA", "SLV", "GLD", "SMH",
    "NVDA", "AAPL", "GOOGL", "MSFT", "AMZN", "TSM", "META", "AVGO", "TSLA",
    "BRK-B", "WMT", "LLY", "JPM", "XOM", "V", "JNJ", "ASML", "TMUS",
]  # fmt: skip

DEFAULT_INDEX_SYMBOLS: list[tuple[str, str]] = [
    ("^GSPC", "SPX"),
    ("^DJI", "DJI"),
    ("^IXIC", "NDX"),
    ("^VIX", "VIX"),
    ("^RUT", "RUT"),
    ("BTC-USD", "BTC"),
]

DEFAULT_ALWAYS_OPEN_SYMBOLS: list[tuple[str, str]] = [
    ("BTC-USD", "BTC"),
    ("ETH-USD", "ETH"),
    ("SOL-USD", "SOL"),
    ("DOGE-USD", "DOGE"),
    ("XRP-USD", "XRP"),
]

# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
API_KEY_ENV = "STOCKTICKER_API_KEY"
BACKFILL_START_RATE_LIMIT = "6/minute"
CACHE_CLEAR_RATE_LIMIT = "10/minute"
