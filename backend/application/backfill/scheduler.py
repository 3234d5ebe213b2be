"""
Application — 統計快取回填排程器 (Backfill Scheduler)。
依固定順序逐階段回填：YTD → 日線分析 → 週線 EMA → Forward P/E → 季度。
每個階段完全結束後才進入下一階段；每階段的逐代號工作交由 throttled_map 節流派工。

同一時間最多一個執行中的 run；start() 會先取消前一個 run。
結果寫入與 cancel() 共用同一把鎖，被取代的 run 在 cancel() 返回後不會再寫入快取。
"""

import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from domain import constants
from domain.entities import DailyAnalysisResult, EMAEntry, QuarterInfo
from domain.enums import BACKFILL_PHASE_ORDER, BackfillPhase, BackfillStatus
from domain.protocols import StockServiceProtocol
from domain.quarters import quarter_end_date_range
from infrastructure.cache.managers import BackfillCaches
from infrastructure.concurrency import throttled_map
from logging_config import get_logger, run_id_var

logger = get_logger(__name__)

PhaseCallback = Callable[[BackfillPhase], None]


@dataclass(frozen=True)
class BackfillRequest:
    """一次回填所需的全部輸入。"""

    symbols: list[str]
    extra_stats_symbols: list[str]
    quarter_infos: list[QuarterInfo]
    period1: int
    period2: int
    forward_pe_period1: int
    stock_service: StockServiceProtocol
    caches: BackfillCaches
    dispatch_delay: float
    max_concurrency: int
    on_phase_complete: PhaseCallback | None = None


@dataclass
class _BackfillRun:
    run_id: str
    request: BackfillRequest
    cancel_event: threading.Event = field(default_factory=threading.Event)
    status: BackfillStatus = BackfillStatus.RUNNING
    phase: BackfillPhase | None = None
    completed_units: int = 0
    thread: threading.Thread | None = None


class BackfillScheduler:
    """多階段回填排程器。狀態：Idle → Running(phase) → Completed | Cancelled → Idle。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._run: _BackfillRun | None = None
        self._last_run: _BackfillRun | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(
        self,
        symbols: list[str],
        extra_stats_symbols: list[str],
        quarter_infos: list[QuarterInfo],
        period1: int,
        period2: int,
        forward_pe_period1: int,
        stock_service: StockServiceProtocol,
        caches: BackfillCaches,
        dispatch_delay: float | None = None,
        on_phase_complete: PhaseCallback | None = None,
        max_concurrency: int | None = None,
    ) -> str:
        """取消既有 run 後啟動新的回填執行緒，回傳 run_id。"""
        request = BackfillRequest(
            symbols=list(symbols),
            extra_stats_symbols=list(extra_stats_symbols),
            quarter_infos=list(quarter_infos),
            period1=period1,
            period2=period2,
            forward_pe_period1=forward_pe_period1,
            stock_service=stock_service,
            caches=caches,
            dispatch_delay=(
                constants.BACKFILL_DISPATCH_DELAY
                if dispatch_delay is None
                else dispatch_delay
            ),
            max_concurrency=max_concurrency or constants.BACKFILL_MAX_CONCURRENCY,
            on_phase_complete=on_phase_complete,
        )

        with self._lock:
            self._cancel_locked()
            run = _BackfillRun(run_id=uuid.uuid4().hex[:8], request=request)
            thread = threading.Thread(
                target=self._execute,
                args=(run,),
                daemon=True,
                name=f"backfill-{run.run_id}",
            )
            run.thread = thread
            self._run = run
            self._last_run = run
            thread.start()

        logger.info(
            "回填 run %s 已啟動：%d 檔（統計 %d 檔）、%d 個季度。",
            run.run_id,
            len(request.symbols),
            len(request.extra_stats_symbols),
            len(request.quarter_infos),
        )
        return run.run_id

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._run is not None

    @property
    def current_phase(self) -> BackfillPhase | None:
        with self._lock:
            return self._run.phase if self._run is not None else None

    def status(self) -> dict:
        """最近一次 run 的狀態快照（供 /backfill/status）。"""
        with self._lock:
            run = self._last_run
            if run is None:
                return {
                    "status": BackfillStatus.IDLE,
                    "run_id": None,
                    "phase": None,
                    "completed_units": 0,
                }
            return {
                "status": run.status,
                "run_id": run.run_id,
                "phase": run.phase,
                "completed_units": run.completed_units,
            }

    def join(self, timeout: float | None = None) -> bool:
        """等待最近一次 run 的執行緒結束；回傳是否已結束。"""
        with self._lock:
            run = self._last_run
        if run is None or run.thread is None:
            return True
        run.thread.join(timeout)
        return not run.thread.is_alive()

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _cancel_locked(self) -> None:
        run = self._run
        if run is None:
            return
        run.cancel_event.set()
        run.status = BackfillStatus.CANCELLED
        self._run = None
        logger.info("回填 run %s 已取消（階段：%s）。", run.run_id, run.phase)

    def _is_active(self, run: _BackfillRun) -> bool:
        return self._run is run and not run.cancel_event.is_set()

    def _execute(self, run: _BackfillRun) -> None:
        token = run_id_var.set(run.run_id)
        try:
            for phase in BACKFILL_PHASE_ORDER:
                if run.cancel_event.is_set():
                    break
                with self._lock:
                    if not self._is_active(run):
                        break
                    run.phase = phase
                logger.info("回填階段開始：%s", phase)
                self._PHASE_RUNNERS[phase](self, run)
        except Exception:
            logger.error("回填 run %s 發生未預期錯誤，中止。", run.run_id, exc_info=True)
        finally:
            with self._lock:
                if self._run is run:
                    self._run = None
                    run.status = BackfillStatus.COMPLETED
                    run.phase = None
                    logger.info(
                        "回填 run %s 完成，共處理 %d 項。", run.run_id, run.completed_units
                    )
            run_id_var.reset(token)

    def _apply(self, run: _BackfillRun, write: Callable[[], None]) -> bool:
        """run 仍有效時才寫入快取；檢查與寫入皆在排程器鎖內完成。"""
        with self._lock:
            if not self._is_active(run):
                return False
            write()
            return True

    def _notify(self, run: _BackfillRun, phase: BackfillPhase) -> None:
        callback = run.request.on_phase_complete
        if callback is None:
            return
        with self._lock:
            if not self._is_active(run):
                return
        try:
            callback(phase)
        except Exception:
            logger.warning("回填進度回呼失敗（%s）。", phase, exc_info=True)

    def _process(
        self,
        run: _BackfillRun,
        phase: BackfillPhase,
        symbols: list[str],
        work: Callable[[str], object],
        write: Callable[[str, object], None],
    ) -> None:
        """節流派工 symbols；每個非 None 結果以 write 寫入，每 N 項與結束時通知進度。"""
        if not symbols:
            return

        completed = 0
        counter_lock = threading.Lock()
        batch_size = constants.BACKFILL_BATCH_NOTIFY_SIZE

        def _on_result(symbol: str, value: object) -> None:
            nonlocal completed
            if value is not None:
                self._apply(run, lambda: write(symbol, value))
            with counter_lock:
                completed += 1
                notify = completed % batch_size == 0
            with self._lock:
                run.completed_units += 1
            if notify:
                self._notify(run, phase)

        throttled_map(
            symbols,
            work,
            max_concurrency=run.request.max_concurrency,
            dispatch_delay=run.request.dispatch_delay,
            cancel_event=run.cancel_event,
            on_result=_on_result,
        )

        if completed > 0:
            self._notify(run, phase)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_ytd(self, run: _BackfillRun) -> None:
        req = run.request
        cache = req.caches.ytd
        missing = cache.get_missing(req.symbols)
        if not missing:
            logger.debug("YTD 快取已齊全，跳過。")
            return

        def _write(symbol: str, price: float) -> None:
            cache.set(symbol, price)
            cache.save()

        self._process(
            run, BackfillPhase.YTD, missing, req.stock_service.fetch_ytd_start_price, _write
        )

    def _run_daily_analysis(self, run: _BackfillRun) -> None:
        req = run.request
        caches = req.caches
        highest_missing = set(caches.highest_close.get_missing(req.extra_stats_symbols))
        swing_missing = set(caches.swing_level.get_missing(req.extra_stats_symbols))
        rsi_missing = set(caches.rsi.get_missing(req.extra_stats_symbols))
        ema_missing = set(caches.ema.get_missing(req.extra_stats_symbols))
        union = highest_missing | swing_missing | rsi_missing | ema_missing
        to_fetch = [s for s in req.extra_stats_symbols if s in union]
        if not to_fetch:
            logger.debug("日線分析快取已齊全，跳過。")
            return

        def _work(symbol: str) -> DailyAnalysisResult | None:
            return req.stock_service.fetch_daily_analysis(
                symbol, req.period1, req.period2
            )

        def _write(symbol: str, result: DailyAnalysisResult) -> None:
            # 只寫入原本缺少該代號的快取
            if symbol in highest_missing and result.highest_close is not None:
                caches.highest_close.set(symbol, result.highest_close)
                caches.highest_close.save()
            if symbol in swing_missing and result.swing_level_entry is not None:
                caches.swing_level.set(symbol, result.swing_level_entry)
                caches.swing_level.save()
            if symbol in rsi_missing and result.rsi is not None:
                caches.rsi.set(symbol, result.rsi)
                caches.rsi.save()
            if symbol in ema_missing and result.daily_ema is not None:
                caches.ema.set(symbol, EMAEntry(day=result.daily_ema))
                caches.ema.save()

        self._process(run, BackfillPhase.DAILY_ANALYSIS, to_fetch, _work, _write)

    def _run_weekly_ema(self, run: _BackfillRun) -> None:
        req = run.request
        cache = req.caches.ema
        candidates = set(cache.get_missing(req.extra_stats_symbols))
        candidates.update(cache.get_missing_weekly(req.extra_stats_symbols))
        to_fetch = [s for s in req.extra_stats_symbols if s in candidates]
        if not to_fetch:
            logger.debug("週線 EMA 快取已齊全，跳過。")
            return

        existing = cache.get_all()

        def _work(symbol: str) -> EMAEntry | None:
            entry = existing.get(symbol)
            return req.stock_service.fetch_ema_entry(
                symbol, entry.day if entry is not None else None
            )

        def _write(symbol: str, entry: EMAEntry) -> None:
            cache.set(symbol, entry)
            cache.save()

        self._process(run, BackfillPhase.WEEKLY_EMA, to_fetch, _work, _write)

    def _run_forward_pe(self, run: _BackfillRun) -> None:
        req = run.request
        cache = req.caches.forward_pe
        missing = cache.get_missing(req.extra_stats_symbols)
        if not missing:
            logger.debug("Forward P/E 快取已齊全，跳過。")
            return

        def _work(symbol: str) -> dict[str, float] | None:
            return req.stock_service.fetch_forward_pe_ratios(
                symbol, req.forward_pe_period1, req.period2
            )

        def _write(symbol: str, quarter_pes: dict[str, float]) -> None:
            cache.set_forward_pe(symbol, quarter_pes)
            cache.save()

        self._process(run, BackfillPhase.FORWARD_PE, missing, _work, _write)

    def _run_quarterly(self, run: _BackfillRun) -> None:
        req = run.request
        cache = req.caches.quarterly
        for info in req.quarter_infos:
            if run.cancel_event.is_set():
                return
            missing = cache.get_missing_for_quarter(info.identifier, req.symbols)
            if not missing:
                continue
            period1, period2 = quarter_end_date_range(info.year, info.quarter)

            def _work(symbol: str, p1=period1, p2=period2) -> float | None:
                return req.stock_service.fetch_quarter_end_price(symbol, p1, p2)

            def _write(symbol: str, price: float, quarter=info.identifier) -> None:
                cache.set_prices(quarter, {symbol: price})
                cache.save()

            logger.debug("季度 %s 缺少 %d 檔，開始回填。", info.identifier, len(missing))
            self._process(run, BackfillPhase.QUARTERLY, missing, _work, _write)

    _PHASE_RUNNERS = {
        BackfillPhase.YTD: _run_ytd,
        BackfillPhase.DAILY_ANALYSIS: _run_daily_analysis,
        BackfillPhase.WEEKLY_EMA: _run_weekly_ema,
        BackfillPhase.FORWARD_PE: _run_forward_pe,
        BackfillPhase.QUARTERLY: _run_quarterly,
    }
