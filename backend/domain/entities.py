"""
Domain — 值物件 (Value Objects)。
回填與報價流程中傳遞的不可變資料結構，以及與快取 JSON 之間的轉換。
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Quarter
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuarterInfo:
    """已結束的日曆季度（identifier 例如 "Q4-2025"，display_label 例如 "Q4'25"）。"""

    identifier: str
    display_label: str
    year: int
    quarter: int


# ---------------------------------------------------------------------------
# Technical Statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SwingLevelEntry:
    """波段突破 / 跌破價位；兩半各自可為 None。日期格式為 M/D/YY。"""

    breakout_price: float | None = None
    breakout_date: str | None = None
    breakdown_price: float | None = None
    breakdown_date: str | None = None

    def to_dict(self) -> dict:
        return {
            "breakoutPrice": self.breakout_price,
            "breakoutDate": self.breakout_date,
            "breakdownPrice": self.breakdown_price,
            "breakdownDate": self.breakdown_date,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SwingLevelEntry:
        return cls(
            breakout_price=data.get("breakoutPrice"),
            breakout_date=data.get("breakoutDate"),
            breakdown_price=data.get("breakdownPrice"),
            breakdown_date=data.get("breakdownDate"),
        )


@dataclass(frozen=True)
class EMAEntry:
    """
    5 期 EMA 快照。
    day / week 各自可為 None：日線分析階段只寫 day，週線階段再補上 week。
    week_crossover_weeks_below：本週收盤剛由下往上穿越週 EMA 時，先前連續低於 EMA 的週數。
    week_below_count：目前連續收在週 EMA 之下的週數。
    """

    day: float | None = None
    week: float | None = None
    week_crossover_weeks_below: int | None = None
    week_below_count: int | None = None

    def merged(self, update: EMAEntry) -> EMAEntry:
        """以 update 中非 None 的欄位覆寫自身，其餘保留。"""
        return EMAEntry(
            day=update.day if update.day is not None else self.day,
            week=update.week if update.week is not None else self.week,
            week_crossover_weeks_below=(
                update.week_crossover_weeks_below
                if update.week_crossover_weeks_below is not None
                else self.week_crossover_weeks_below
            ),
            week_below_count=(
                update.week_below_count
                if update.week_below_count is not None
                else self.week_below_count
            ),
        )

    def to_dict(self) -> dict:
        return {
            "day": self.day,
            "week": self.week,
            "weekCrossoverWeeksBelow": self.week_crossover_weeks_below,
            "weekBelowCount": self.week_below_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> EMAEntry:
        return cls(
            day=data.get("day"),
            week=data.get("week"),
            week_crossover_weeks_below=data.get("weekCrossoverWeeksBelow"),
            week_below_count=data.get("weekBelowCount"),
        )


@dataclass(frozen=True)
class DailyAnalysisResult:
    """單次日線歷史請求衍生出的四項統計，由回填排程器分送至各快取。"""

    highest_close: float | None
    swing_level_entry: SwingLevelEntry | None
    rsi: float | None
    daily_ema: float | None


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockQuote:
    """即時報價快照。market_state 為 Yahoo 原始字串（PRE / REGULAR / POST / CLOSED）。"""

    symbol: str
    price: float
    previous_close: float
    market_state: str | None = None
    pre_market_price: float | None = None
    pre_market_change: float | None = None
    pre_market_change_percent: float | None = None
    post_market_price: float | None = None
    post_market_change: float | None = None
    post_market_change_percent: float | None = None

    @property
    def change(self) -> float:
        return self.price - self.previous_close

    @property
    def change_percent(self) -> float:
        if self.previous_close == 0:
            return 0.0
        return self.change / self.previous_close * 100


@dataclass(frozen=True)
class FetchResult:
    """報價協調器單次輪詢的組裝結果。"""

    quotes: dict[str, StockQuote] = field(default_factory=dict)
    index_quotes: dict[str, StockQuote] = field(default_factory=dict)
    yahoo_market_state: str | None = None
    fetched_symbols: list[str] = field(default_factory=list)
    should_merge_quotes: bool = False
    is_initial_load_complete: bool = False
