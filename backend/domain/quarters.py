"""
Domain — 季度 / 日期運算（純函式）。
計算已結束季度清單、季末查價區間與快取失效用的季度範圍 token。
時間戳一律以 UTC 日界計算，可獨立測試。
"""

import calendar
from datetime import date, datetime, timedelta, timezone

from domain.constants import (
    QUARTER_END_LOOKAHEAD_DAYS,
    QUARTER_END_LOOKBACK_DAYS,
    QUARTER_WINDOW_SIZE,
)
from domain.entities import QuarterInfo
from domain.market_schedule import to_eastern


def quarter_identifier(year: int, quarter: int) -> str:
    """Q4-2025"""
    return f"Q{quarter}-{year}"


def display_label(year: int, quarter: int) -> str:
    """Q4'25"""
    return f"Q{quarter}'{year % 100:02d}"


def make_quarter_info(year: int, quarter: int) -> QuarterInfo:
    return QuarterInfo(
        identifier=quarter_identifier(year, quarter),
        display_label=display_label(year, quarter),
        year=year,
        quarter=quarter,
    )


def last_n_completed_quarters(now: date | datetime, count: int) -> list[QuarterInfo]:
    """
    從 now 往回數 count 個「已結束」季度，最新的在前。
    當季尚未結束，因此由上一季開始。帶時區的 datetime 以美東日期判定。
    """
    if isinstance(now, datetime) and now.tzinfo is not None:
        now = to_eastern(now)
    year = now.year
    quarter = (now.month - 1) // 3  # 上一季；0 代表去年 Q4
    if quarter < 1:
        quarter = 4
        year -= 1

    results: list[QuarterInfo] = []
    for _ in range(max(count, 0)):
        results.append(make_quarter_info(year, quarter))
        quarter -= 1
        if quarter < 1:
            quarter = 4
            year -= 1
    return results


def _utc_timestamp(d: date) -> int:
    return calendar.timegm(d.timetuple())


def quarter_end_date_range(year: int, quarter: int) -> tuple[int, int]:
    """
    季末查價區間（Unix 秒）：季末日 −5 天 ~ +2 天。
    涵蓋季末落在週末或假日時，仍能取到最後一個交易日收盤。
    """
    end_month = quarter * 3
    last_day = calendar.monthrange(year, end_month)[1]
    end_date = date(year, end_month, last_day)
    period1 = end_date - timedelta(days=QUARTER_END_LOOKBACK_DAYS)
    period2 = end_date + timedelta(days=QUARTER_END_LOOKAHEAD_DAYS)
    return _utc_timestamp(period1), _utc_timestamp(period2)


def quarter_start_timestamp(year: int, quarter: int) -> int:
    start_month = (quarter - 1) * 3 + 1
    return _utc_timestamp(date(year, start_month, 1))


def quarter_range_token(quarters: list[QuarterInfo]) -> str:
    """"{最舊}:{最新}"，例如 "Q1-2023:Q4-2025"；空清單回傳空字串。"""
    if not quarters:
        return ""
    return f"{quarters[-1].identifier}:{quarters[0].identifier}"


def cache_quarter_range(now: date | datetime) -> str:
    """Highest-Close / Swing-Level / Forward-P/E 快取的失效 stamp（12 季窗口）。"""
    return quarter_range_token(last_n_completed_quarters(now, QUARTER_WINDOW_SIZE))


def stats_period(now: datetime) -> tuple[int, int]:
    """
    日線統計查詢區間：12 季窗口中最舊季度的起始日 ~ now。
    窗口為空時回傳 (0, now)。
    """
    quarters = last_n_completed_quarters(now, QUARTER_WINDOW_SIZE)
    period2 = int(now.timestamp()) if now.tzinfo else _utc_timestamp(now)
    if not quarters:
        return 0, period2
    oldest = quarters[-1]
    return quarter_start_timestamp(oldest.year, oldest.quarter), period2


def timestamp_to_date(ts: int) -> date:
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()
