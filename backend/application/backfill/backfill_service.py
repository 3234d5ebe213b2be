"""
Application — 回填服務：組合設定檔、七個快取、遠端行情與排程器。
API 層只透過此服務操作回填與快取，不直接碰觸排程器或管理器。
"""

import threading
from collections import Counter

from application.backfill.cache_lifecycle import (
    prepare_caches,
    refresh_daily_caches,
    retry_missing_entries,
)
from application.backfill.scheduler import BackfillScheduler
from domain import constants
from domain.enums import BackfillPhase, CacheName
from domain.protocols import DateProvider, FileSystem, StockServiceProtocol
from domain.quarters import last_n_completed_quarters, stats_period
from infrastructure.cache.managers import BackfillCaches, create_backfill_caches
from infrastructure.market_data import YahooStockService
from infrastructure.system import LocalFileSystem, SystemDateProvider
from infrastructure.ticker_config import WatchlistConfig, load_config
from logging_config import get_logger

logger = get_logger(__name__)


class UnknownCacheError(KeyError):
    """指定的快取名稱不存在。"""


class BackfillService:
    def __init__(
        self,
        stock_service: StockServiceProtocol | None = None,
        caches: BackfillCaches | None = None,
        date_provider: DateProvider | None = None,
        file_system: FileSystem | None = None,
        config_path: str | None = None,
        scheduler: BackfillScheduler | None = None,
    ):
        self.date_provider = date_provider or SystemDateProvider()
        self.file_system = file_system or LocalFileSystem()
        self.stock_service = stock_service or YahooStockService(
            date_provider=self.date_provider
        )
        self.caches = caches or create_backfill_caches(
            file_system=self.file_system, date_provider=self.date_provider
        )
        self.scheduler = scheduler or BackfillScheduler()
        self._config_path = config_path
        self._progress: Counter[str] = Counter()
        self._progress_lock = threading.Lock()
        self._load_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def load_config(self) -> WatchlistConfig:
        return load_config(self._config_path, self.file_system)

    def _ensure_caches_loaded(self) -> None:
        """API 操作前確保快取已從檔案載入，避免以空快取覆寫磁碟上的資料。"""
        with self._load_lock:
            self.caches.ensure_loaded()

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    def start_backfill(
        self,
        dispatch_delay: float | None = None,
        max_concurrency: int | None = None,
    ) -> str:
        """
        重新讀取設定檔、套用快取失效政策後啟動回填。
        已有回填執行中時先取消，新的 run 使用最新的設定檔。
        """
        self.scheduler.cancel()
        config = self.load_config()
        now = self.date_provider.now()
        prepare_caches(self.caches, now)

        period1, period2 = stats_period(now)
        quarter_infos = last_n_completed_quarters(
            now, constants.QUARTER_FETCH_WINDOW_SIZE
        )
        with self._progress_lock:
            self._progress.clear()

        return self.scheduler.start(
            symbols=config.all_cache_symbols,
            extra_stats_symbols=config.extra_stats_symbols,
            quarter_infos=quarter_infos,
            period1=period1,
            period2=period2,
            forward_pe_period1=period1,
            stock_service=self.stock_service,
            caches=self.caches,
            dispatch_delay=dispatch_delay,
            on_phase_complete=self._on_phase_complete,
            max_concurrency=max_concurrency,
        )

    def cancel_backfill(self) -> bool:
        """取消執行中的回填；回傳原本是否有回填在執行。"""
        was_running = self.scheduler.is_running
        self.scheduler.cancel()
        return was_running

    def _on_phase_complete(self, phase: BackfillPhase) -> None:
        with self._progress_lock:
            self._progress[phase.value] += 1
        logger.debug("回填進度通知：%s", phase)

    def backfill_status(self) -> dict:
        status = self.scheduler.status()
        with self._progress_lock:
            status["notifications"] = dict(self._progress)
        status["is_running"] = self.scheduler.is_running
        return status

    def refresh_if_stale(self) -> bool:
        """跨日時清空日線類快取並重新回填；回傳是否觸發回填。"""
        self._ensure_caches_loaded()
        if not refresh_daily_caches(self.caches):
            return False
        logger.info("日線類快取已過期，重新啟動回填。")
        self.start_backfill()
        return True

    def retry_missing(self) -> dict[str, int]:
        self._ensure_caches_loaded()
        return retry_missing_entries(
            self.caches,
            self.stock_service,
            self.load_config(),
            self.date_provider.now(),
        )

    # ------------------------------------------------------------------
    # Cache inspection
    # ------------------------------------------------------------------

    def _manager(self, name: str):
        try:
            return self.caches.by_name()[CacheName(name)]
        except ValueError as e:
            raise UnknownCacheError(name) from e

    def cache_summaries(self) -> list[dict]:
        self._ensure_caches_loaded()
        return [
            {
                "name": name.value,
                "entries": len(manager),
                "stamp": manager.stamp,
                "last_updated": manager.last_updated,
                "policy": manager.policy.describe(),
            }
            for name, manager in self.caches.by_name().items()
        ]

    def cache_detail(self, name: str) -> dict:
        manager = self._manager(name)
        self._ensure_caches_loaded()
        return {
            "name": manager.name,
            "stamp": manager.stamp,
            "last_updated": manager.last_updated,
            "entries": manager.export_entries(),
        }

    def clear_caches(self, names: list[str] | None = None) -> list[str]:
        """清空指定（預設全部）快取並寫回檔案；執行中的回填會先被取消。"""
        managers = (
            [self._manager(n) for n in names]
            if names
            else list(self.caches.by_name().values())
        )
        self.scheduler.cancel()
        self._ensure_caches_loaded()
        for manager in managers:
            manager.clear()
            manager.save()
        cleared = [str(m.name) for m in managers]
        logger.info("已清空快取：%s", ", ".join(cleared))
        return cleared


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_service: BackfillService | None = None
_service_lock = threading.Lock()


def get_backfill_service() -> BackfillService:
    global _service
    with _service_lock:
        if _service is None:
            _service = BackfillService()
        return _service


def run_startup_backfill() -> None:
    """lifespan 背景執行緒進入點；任何失敗只記錄 log，不影響服務啟動。"""
    try:
        run_id = get_backfill_service().start_backfill()
        logger.info("啟動回填已排程（run %s）。", run_id)
    except Exception as exc:
        logger.error("啟動回填失敗：%s", exc, exc_info=True)


def shutdown_backfill() -> None:
    """lifespan 關閉時呼叫：取消執行中的回填（服務尚未建立則略過）。"""
    with _service_lock:
        service = _service
    if service is not None:
        service.cancel_backfill()
