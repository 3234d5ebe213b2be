"""
Domain — 美股交易時段與休市日曆（純函式，時鐘由呼叫端注入）。
包含固定假日（含週末順延）、浮動假日、復活節推算的 Good Friday 以及提早收盤日。
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from domain.constants import (
    AFTER_HOURS_CLOSE_MINUTES,
    EARLY_CLOSE_MINUTES,
    MARKET_CLOSE_MINUTES,
    MARKET_OPEN_MINUTES,
    MARKET_TIMEZONE,
    PRE_MARKET_OPEN_MINUTES,
)
from domain.enums import MarketState

EASTERN = ZoneInfo(MARKET_TIMEZONE)

PRE_MARKET_SCHEDULE = "4:00 AM - 9:30 AM ET"
REGULAR_SCHEDULE = "9:30 AM - 4:00 PM ET"
EARLY_CLOSE_SCHEDULE = "9:30 AM - 1:00 PM ET"
AFTER_HOURS_SCHEDULE = "4:00 PM - 8:00 PM ET"

# 臨時休市（非規則性）
_SPECIAL_CLOSURES: dict[date, str] = {
    date(2025, 1, 9): "National Day of Mourning",
}


@dataclass(frozen=True)
class MarketHoliday:
    date: date
    name: str
    early_close: bool = False


@dataclass(frozen=True)
class DaySchedule:
    state: MarketState
    schedule: str
    holiday_name: str | None = None


# ---------------------------------------------------------------------------
# Holiday Calculation
# ---------------------------------------------------------------------------


def _nth_weekday(year: int, month: int, weekday: int, nth: int) -> date:
    """weekday: Monday=0 ... Sunday=6"""
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + 7 * (nth - 1))


def _last_weekday(year: int, month: int, weekday: int) -> date:
    next_month = date(year + month // 12, month % 12 + 1, 1)
    last = next_month - timedelta(days=1)
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def _observed(year: int, month: int, day: int, name: str) -> MarketHoliday:
    d = date(year, month, day)
    if d.weekday() == 6:  # Sunday → Monday
        return MarketHoliday(d + timedelta(days=1), f"{name} (Observed)")
    if d.weekday() == 5:  # Saturday → Friday
        return MarketHoliday(d - timedelta(days=1), f"{name} (Observed)")
    return MarketHoliday(d, name)


def easter_sunday(year: int) -> date:
    """Anonymous Gregorian algorithm."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def holidays_for_year(year: int) -> list[MarketHoliday]:
    """NYSE 休市與提早收盤日，依日期排序。"""
    holidays = [
        _observed(year, 1, 1, "New Year's Day"),
        _observed(year, 6, 19, "Juneteenth"),
        _observed(year, 7, 4, "Independence Day"),
        _observed(year, 12, 25, "Christmas Day"),
        MarketHoliday(_nth_weekday(year, 1, 0, 3), "Martin Luther King Jr. Day"),
        MarketHoliday(_nth_weekday(year, 2, 0, 3), "Presidents' Day"),
        MarketHoliday(easter_sunday(year) - timedelta(days=2), "Good Friday"),
        MarketHoliday(_last_weekday(year, 5, 0), "Memorial Day"),
        MarketHoliday(_nth_weekday(year, 9, 0, 1), "Labor Day"),
    ]
    thanksgiving = _nth_weekday(year, 11, 3, 4)
    holidays.append(MarketHoliday(thanksgiving, "Thanksgiving Day"))

    # 提早收盤：7/4 落在週二至週五時的 7/3
    if date(year, 7, 4).weekday() in (1, 2, 3, 4):
        holidays.append(
            MarketHoliday(date(year, 7, 3), "Day Before Independence Day", early_close=True)
        )
    holidays.append(
        MarketHoliday(
            thanksgiving + timedelta(days=1), "Day After Thanksgiving", early_close=True
        )
    )
    # 12/24 為平日且聖誕節不在週六（週六時 12/24 即為補假日）
    dec24 = date(year, 12, 24)
    if dec24.weekday() < 5 and date(year, 12, 25).weekday() != 5:
        holidays.append(MarketHoliday(dec24, "Christmas Eve", early_close=True))

    holidays.extend(
        MarketHoliday(d, name) for d, name in _SPECIAL_CLOSURES.items() if d.year == year
    )
    return sorted(holidays, key=lambda h: h.date)


# ---------------------------------------------------------------------------
# Session State
# ---------------------------------------------------------------------------


def to_eastern(now: datetime) -> datetime:
    """naive datetime 視為 UTC。"""
    if now.tzinfo is None:
        now = now.replace(tzinfo=ZoneInfo("UTC"))
    return now.astimezone(EASTERN)


def is_weekend(now: datetime) -> bool:
    return to_eastern(now).weekday() >= 5


def _session_state(minutes: int, early_close: bool) -> MarketState:
    close = EARLY_CLOSE_MINUTES if early_close else MARKET_CLOSE_MINUTES
    if minutes < PRE_MARKET_OPEN_MINUTES:
        return MarketState.CLOSED
    if minutes < MARKET_OPEN_MINUTES:
        return MarketState.PRE_MARKET
    if minutes < close:
        return MarketState.OPEN
    if not early_close and minutes < AFTER_HOURS_CLOSE_MINUTES:
        return MarketState.AFTER_HOURS
    return MarketState.CLOSED


def _schedule_string(state: MarketState, early_close: bool) -> str:
    if state == MarketState.PRE_MARKET:
        return PRE_MARKET_SCHEDULE
    if state == MarketState.AFTER_HOURS:
        return AFTER_HOURS_SCHEDULE
    return EARLY_CLOSE_SCHEDULE if early_close else REGULAR_SCHEDULE


def get_today_schedule(now: datetime) -> DaySchedule:
    """依美東時間判定當下市場狀態、時段字串與假日名稱。"""
    et = to_eastern(now)
    if et.weekday() >= 5:
        return DaySchedule(MarketState.CLOSED, "Closed - Weekend")

    today = et.date()
    holiday = next((h for h in holidays_for_year(et.year) if h.date == today), None)
    minutes = et.hour * 60 + et.minute

    if holiday is None:
        state = _session_state(minutes, early_close=False)
        return DaySchedule(state, _schedule_string(state, False))

    if holiday.early_close:
        state = _session_state(minutes, early_close=True)
        return DaySchedule(state, _schedule_string(state, True), holiday.name)

    return DaySchedule(MarketState.CLOSED, "Closed", holiday.name)


def get_next_holiday(now: datetime) -> MarketHoliday | None:
    """下一個全日休市日（不含提早收盤日）。"""
    today = to_eastern(now).date()
    candidates = holidays_for_year(today.year) + holidays_for_year(today.year + 1)
    return next((h for h in candidates if h.date > today and not h.early_close), None)
