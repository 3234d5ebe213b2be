"""
Domain — 純粹的技術分析計算函式。
RSI、EMA（含週線穿越計數）、波段高低點與日線分析組合。
不依賴任何外部服務或框架，僅接收收盤價序列並回傳結果，可獨立測試。
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from domain.constants import EMA_PERIOD, RSI_PERIOD, SWING_THRESHOLD
from domain.entities import DailyAnalysisResult, SwingLevelEntry

# ---------------------------------------------------------------------------
# RSI
# ---------------------------------------------------------------------------


def compute_rsi(closes: list[float], period: int = RSI_PERIOD) -> float | None:
    """
    以 Wilder's Smoothed Method 計算 RSI。
    需要至少 period+1 筆收盤價。純函式，無副作用。
    """
    if len(closes) < period + 1:
        return None

    deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]

    gains = [d if d > 0 else 0.0 for d in deltas[:period]]
    losses = [-d if d < 0 else 0.0 for d in deltas[:period]]
    avg_gain = sum(gains) / period
    avg_loss = sum(losses) / period

    for d in deltas[period:]:
        gain = d if d > 0 else 0.0
        loss = -d if d < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return round(100.0 - (100.0 / (1.0 + rs)), 2)


# ---------------------------------------------------------------------------
# EMA
# ---------------------------------------------------------------------------


def _ema_series(closes: list[float], period: int) -> list[float]:
    """以前 period 筆 SMA 為種子的 EMA 序列；第 0 筆對應 closes[period - 1]。"""
    multiplier = 2.0 / (period + 1)
    ema = sum(closes[:period]) / period
    series = [ema]
    for close in closes[period:]:
        ema = (close - ema) * multiplier + ema
        series.append(ema)
    return series


def compute_ema(closes: list[float], period: int = EMA_PERIOD) -> float | None:
    """最新一期 EMA。資料不足 period 筆回傳 None；恰好 period 筆時即為 SMA。"""
    if period <= 0 or len(closes) < period:
        return None
    return _ema_series(closes, period)[-1]


def detect_weekly_crossover(
    closes: list[float], period: int = EMA_PERIOD
) -> int | None:
    """
    最新一根週 K 收盤剛由下往上穿越 EMA 時，回傳穿越前連續收在 EMA 之下（含等於）的週數。
    未發生穿越或資料不足回傳 None。
    """
    if period <= 0 or len(closes) < period + 1:
        return None

    ema_values = _ema_series(closes, period)
    last = len(ema_values) - 1
    offset = period - 1

    if not (
        closes[offset + last] > ema_values[last]
        and closes[offset + last - 1] <= ema_values[last - 1]
    ):
        return None

    weeks_below = 1
    for j in range(last - 2, -1, -1):
        if closes[offset + j] > ema_values[j]:
            break
        weeks_below += 1
    return weeks_below


def count_weeks_below(closes: list[float], period: int = EMA_PERIOD) -> int | None:
    """最新一根週 K 收在 EMA 之下（含等於）時，回傳連續週數；否則 None。"""
    if period <= 0 or len(closes) < period + 1:
        return None

    ema_values = _ema_series(closes, period)
    last = len(ema_values) - 1
    offset = period - 1

    if closes[offset + last] > ema_values[last]:
        return None

    weeks_below = 1
    for j in range(last - 1, -1, -1):
        if closes[offset + j] > ema_values[j]:
            break
        weeks_below += 1
    return weeks_below


# ---------------------------------------------------------------------------
# Swing Levels: 10% 回檔 / 反彈確認的波段高低點
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SwingResult:
    breakout_price: float | None
    breakout_index: int | None
    breakdown_price: float | None
    breakdown_index: int | None


def _find_breakout(closes: list[float], threshold: float) -> tuple[float | None, int | None]:
    best: tuple[float, int] | None = None
    running_max, running_max_idx = closes[0], 0

    for i, close in enumerate(closes):
        if close > running_max:
            running_max, running_max_idx = close, i
        if running_max <= 0:
            continue
        if (running_max - close) / running_max >= threshold:
            if best is None or running_max > best[0]:
                best = (running_max, running_max_idx)
            running_max, running_max_idx = close, i

    return (best[0], best[1]) if best else (None, None)


def _find_breakdown(closes: list[float], threshold: float) -> tuple[float | None, int | None]:
    best: tuple[float, int] | None = None
    running_min, running_min_idx = closes[0], 0

    for i, close in enumerate(closes):
        if close < running_min:
            running_min, running_min_idx = close, i
        if running_min <= 0:
            continue
        if (close - running_min) / running_min >= threshold:
            if best is None or running_min < best[0]:
                best = (running_min, running_min_idx)
            running_min, running_min_idx = close, i

    return (best[0], best[1]) if best else (None, None)


def analyze_swing(closes: list[float], threshold: float = SWING_THRESHOLD) -> SwingResult:
    """
    突破價：所有「之後回檔 ≥ threshold」的波段高點中最高者。
    跌破價：所有「之後反彈 ≥ threshold」的波段低點中最低者。
    同時回傳其在 closes 中的索引，供換算日期。
    """
    if not closes:
        return SwingResult(None, None, None, None)

    breakout_price, breakout_idx = _find_breakout(closes, threshold)
    breakdown_price, breakdown_idx = _find_breakdown(closes, threshold)
    return SwingResult(breakout_price, breakout_idx, breakdown_price, breakdown_idx)


def format_swing_date(ts: int) -> str:
    """Unix 秒 → "M/D/YY"（UTC），例如 1/5/26。"""
    d = datetime.fromtimestamp(ts, tz=timezone.utc)
    return f"{d.month}/{d.day}/{d.year % 100:02d}"


def build_swing_level_entry(
    closes: list[float], timestamps: list[int]
) -> SwingLevelEntry | None:
    if not closes or len(closes) != len(timestamps):
        return None

    result = analyze_swing(closes)
    return SwingLevelEntry(
        breakout_price=result.breakout_price,
        breakout_date=(
            format_swing_date(timestamps[result.breakout_index])
            if result.breakout_index is not None
            else None
        ),
        breakdown_price=result.breakdown_price,
        breakdown_date=(
            format_swing_date(timestamps[result.breakdown_index])
            if result.breakdown_index is not None
            else None
        ),
    )


# ---------------------------------------------------------------------------
# Daily Analysis: 一次日線歷史請求衍生四項統計
# ---------------------------------------------------------------------------


def build_daily_analysis(
    closes: list[float], timestamps: list[int]
) -> DailyAnalysisResult | None:
    """由同一段日線收盤價計算 highest close、swing、RSI 與日 EMA；空資料回傳 None。"""
    if not closes:
        return None

    return DailyAnalysisResult(
        highest_close=max(closes),
        swing_level_entry=build_swing_level_entry(closes, timestamps),
        rsi=compute_rsi(closes),
        daily_ema=compute_ema(closes),
    )
