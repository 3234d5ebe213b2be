"""
Domain — 列舉定義。
回填階段、市場狀態與交易時段等分類常數。
"""

from enum import StrEnum


class BackfillPhase(StrEnum):
    """回填階段（宣告順序即執行順序）"""

    YTD = "ytd"
    DAILY_ANALYSIS = "daily_analysis"
    WEEKLY_EMA = "weekly_ema"
    FORWARD_PE = "forward_pe"
    QUARTERLY = "quarterly"


# 階段依賴順序：後段階段讀取前段寫入的快取（例如 WEEKLY_EMA 補齊 DAILY_ANALYSIS 的 EMA）
BACKFILL_PHASE_ORDER: tuple[BackfillPhase, ...] = tuple(BackfillPhase)


class BackfillStatus(StrEnum):
    """回填排程器狀態"""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MarketState(StrEnum):
    """美股市場狀態（以美東時間判定）"""

    PRE_MARKET = "Pre-Market"
    OPEN = "Open"
    AFTER_HOURS = "After-Hours"
    CLOSED = "Closed"

    @classmethod
    def from_yahoo_state(cls, state: str | None) -> "MarketState":
        """將 Yahoo marketState（PRE / REGULAR / POST ...）轉為 MarketState。"""
        match (state or "").upper():
            case "PRE" | "PREPRE":
                return cls.PRE_MARKET
            case "REGULAR":
                return cls.OPEN
            case "POST" | "POSTPOST":
                return cls.AFTER_HOURS
            case _:
                return cls.CLOSED


class CacheName(StrEnum):
    """持久化快取名稱（API 路徑參數使用）"""

    YTD = "ytd"
    QUARTERLY = "quarterly"
    HIGHEST_CLOSE = "highest_close"
    FORWARD_PE = "forward_pe"
    SWING_LEVEL = "swing_level"
    RSI = "rsi"
    EMA = "ema"
