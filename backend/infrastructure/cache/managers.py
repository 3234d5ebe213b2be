"""
Infrastructure — 七種統計快取的具體管理器與建構工廠。
同一個 CacheManager 以不同 codec / 合併策略 / 失效政策實例化。
"""

import os
from dataclasses import dataclass

from domain import constants
from domain.entities import EMAEntry
from domain.enums import CacheName
from domain.market_schedule import to_eastern
from domain.protocols import DateProvider, FileSystem
from infrastructure.cache.manager import CacheManager, parse_timestamp
from infrastructure.cache.policies import (
    DAILY,
    EMA_CODEC,
    FLOAT_CODEC,
    FLOAT_MAPPING_CODEC,
    QUARTER_PRUNE,
    RANGE,
    RANGE_AND_DAILY,
    SWING_LEVEL_CODEC,
    YEARLY,
    MergeStrategy,
)
from infrastructure.cache.storage import CacheStorage
from infrastructure.system import LocalFileSystem, SystemDateProvider
from logging_config import get_logger

logger = get_logger(__name__)


class YTDCacheManager(CacheManager[float]):
    """symbol → 去年最後收盤價；stamp 為年份。"""

    def _initial_stamp(self) -> int:
        return to_eastern(self._now()).year


class QuarterlyCacheManager(CacheManager[dict[str, float]]):
    """quarter id → {symbol → 季末收盤價}；以 prune 維持有效窗口。"""

    def get_price(self, symbol: str, quarter: str) -> float | None:
        with self._lock:
            return self._entries.get(quarter, {}).get(symbol)

    def set_prices(self, quarter: str, prices: dict[str, float]) -> None:
        self.set(quarter, prices)

    def get_missing_for_quarter(self, quarter: str, symbols: list[str]) -> list[str]:
        with self._lock:
            cached = self._entries.get(quarter, {})
            return [s for s in symbols if s not in cached]

    def prune_old_quarters(self, keeping: list[str]) -> None:
        with self._lock:
            active = set(keeping)
            stale = [q for q in self._entries if q not in active]
            if not stale:
                return
            for quarter in stale:
                del self._entries[quarter]
            self._ensure_document()
            logger.info("季度快取移除窗口外季度：%s", ", ".join(sorted(stale)))

    def clear_all_quarters(self) -> None:
        with self._lock:
            self._reset(None)


class ForwardPECacheManager(CacheManager[dict[str, float]]):
    """symbol → {quarter id → forward P/E}；空 dict 代表「確認無資料」，不算缺漏。"""

    def set_forward_pe(self, symbol: str, quarter_pes: dict[str, float]) -> None:
        self.set(symbol, quarter_pes)


class EMACacheManager(CacheManager[EMAEntry]):
    """symbol → EMAEntry；合併非 None 欄位，每日清空，週五 14:00 ET 後額外刷新一次。"""

    def get_missing_weekly(self, symbols: list[str]) -> list[str]:
        """已有日線 EMA 但尚無週線值的代號。"""
        with self._lock:
            return [
                s
                for s in symbols
                if (entry := self._entries.get(s)) is not None
                and entry.day is not None
                and entry.week is None
            ]

    def needs_sneak_peek_refresh(self) -> bool:
        """
        週五 14:00 ET 之後、且快取最後更新早於當日 14:00 時為 True。
        其他日子、14:00 之前或從未寫入皆為 False。
        """
        with self._lock:
            now_et = to_eastern(self._now())
            if now_et.weekday() != constants.SNEAK_PEEK_WEEKDAY:
                return False
            if now_et.hour < constants.SNEAK_PEEK_HOUR:
                return False
            last = parse_timestamp(self._last_updated)
            if last is None:
                return False
            boundary = now_et.replace(
                hour=constants.SNEAK_PEEK_HOUR, minute=0, second=0, microsecond=0
            )
            return to_eastern(last) < boundary


# ---------------------------------------------------------------------------
# Cache Bundle
# ---------------------------------------------------------------------------


@dataclass
class BackfillCaches:
    """回填排程器與 API 共用的七個快取管理器。"""

    ytd: YTDCacheManager
    quarterly: QuarterlyCacheManager
    highest_close: CacheManager[float]
    forward_pe: ForwardPECacheManager
    swing_level: CacheManager
    rsi: CacheManager[float]
    ema: EMACacheManager

    def by_name(self) -> dict[CacheName, CacheManager]:
        return {
            CacheName.YTD: self.ytd,
            CacheName.QUARTERLY: self.quarterly,
            CacheName.HIGHEST_CLOSE: self.highest_close,
            CacheName.FORWARD_PE: self.forward_pe,
            CacheName.SWING_LEVEL: self.swing_level,
            CacheName.RSI: self.rsi,
            CacheName.EMA: self.ema,
        }

    def load_all(self) -> None:
        for manager in self.by_name().values():
            manager.load()

    def ensure_loaded(self) -> None:
        """只載入尚未載入的快取；已載入的快取不會重新讀檔。"""
        for manager in self.by_name().values():
            manager.ensure_loaded()

    def save_all(self) -> None:
        for manager in self.by_name().values():
            manager.save()


def create_backfill_caches(
    cache_dir: str | None = None,
    file_system: FileSystem | None = None,
    date_provider: DateProvider | None = None,
) -> BackfillCaches:
    """建立七個（尚未載入的）快取管理器；cache_dir 預設讀取 constants.CACHE_DIR。"""
    directory = cache_dir or constants.CACHE_DIR
    fs = file_system or LocalFileSystem()
    clock = date_provider or SystemDateProvider()

    def _storage(file_name: str, label: str) -> CacheStorage:
        return CacheStorage(fs, os.path.join(directory, file_name), label)

    return BackfillCaches(
        ytd=YTDCacheManager(
            CacheName.YTD,
            _storage(constants.YTD_CACHE_FILE, "YTD"),
            clock,
            FLOAT_CODEC,
            policy=YEARLY,
        ),
        quarterly=QuarterlyCacheManager(
            CacheName.QUARTERLY,
            _storage(constants.QUARTERLY_CACHE_FILE, "Quarterly"),
            clock,
            FLOAT_MAPPING_CODEC,
            merge_strategy=MergeStrategy.MERGE_MAPPING,
            policy=QUARTER_PRUNE,
        ),
        highest_close=CacheManager(
            CacheName.HIGHEST_CLOSE,
            _storage(constants.HIGHEST_CLOSE_CACHE_FILE, "Highest Close"),
            clock,
            FLOAT_CODEC,
            policy=RANGE_AND_DAILY,
        ),
        forward_pe=ForwardPECacheManager(
            CacheName.FORWARD_PE,
            _storage(constants.FORWARD_PE_CACHE_FILE, "Forward P/E"),
            clock,
            FLOAT_MAPPING_CODEC,
            merge_strategy=MergeStrategy.MERGE_MAPPING,
            policy=RANGE,
        ),
        swing_level=CacheManager(
            CacheName.SWING_LEVEL,
            _storage(constants.SWING_LEVEL_CACHE_FILE, "Swing Level"),
            clock,
            SWING_LEVEL_CODEC,
            policy=RANGE_AND_DAILY,
        ),
        rsi=CacheManager(
            CacheName.RSI,
            _storage(constants.RSI_CACHE_FILE, "RSI"),
            clock,
            FLOAT_CODEC,
            policy=DAILY,
        ),
        ema=EMACacheManager(
            CacheName.EMA,
            _storage(constants.EMA_CACHE_FILE, "EMA"),
            clock,
            EMA_CODEC,
            merge_strategy=MergeStrategy.MERGE_NON_NULL,
            policy=DAILY,
        ),
    )
