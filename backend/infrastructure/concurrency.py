"""
Infrastructure — 節流並行工具。
- RateLimiter：全程序共用的最小呼叫間隔（yfinance 防封鎖）
- throttled_map：有上限的並行 + 派工間隔，將每個 key 的工作結果收集為 dict
"""

import contextvars
import threading
import time
from collections.abc import Callable, Hashable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

from domain.constants import DEFAULT_MAX_CONCURRENCY, YFINANCE_RATE_LIMIT_CPS
from logging_config import get_logger

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

logger = get_logger(__name__)

# 等待並行名額時的輪詢間隔（秒），期間仍會檢查取消
_SLOT_POLL_INTERVAL = 0.05


# ---------------------------------------------------------------------------
# Rate Limiter：限制 yfinance (Yahoo Finance) 呼叫頻率，避免被封鎖
# ---------------------------------------------------------------------------


class RateLimiter:
    """Thread-safe rate limiter，確保呼叫間隔不低於 min_interval。"""

    def __init__(self, calls_per_second: float = YFINANCE_RATE_LIMIT_CPS):
        self._min_interval = 1.0 / calls_per_second
        self._lock = threading.Lock()
        self._last_call = 0.0

    def wait(self) -> None:
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_call
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_call = time.monotonic()


# ---------------------------------------------------------------------------
# Throttled Map
# ---------------------------------------------------------------------------


def _is_cancelled(cancel_event: threading.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _acquire_slot(
    slots: threading.BoundedSemaphore, cancel_event: threading.Event | None
) -> bool:
    """取得並行名額；等待期間若被取消則回傳 False。"""
    if cancel_event is None:
        slots.acquire()
        return True
    while not cancel_event.is_set():
        if slots.acquire(timeout=_SLOT_POLL_INTERVAL):
            return True
    return False


def _wait_dispatch_delay(delay: float, cancel_event: threading.Event | None) -> bool:
    """派工間隔；回傳 False 代表等待期間被取消。"""
    if delay <= 0:
        return not _is_cancelled(cancel_event)
    if cancel_event is None:
        time.sleep(delay)
        return True
    return not cancel_event.wait(delay)


def throttled_map(
    items: Iterable[K],
    work: Callable[[K], T | None],
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    dispatch_delay: float = 0.0,
    cancel_event: threading.Event | None = None,
    on_result: Callable[[K, T | None], None] | None = None,
) -> dict[K, T]:
    """
    對 items 中每個 key 執行 work，最多 max_concurrency 個同時進行，
    相鄰兩次派工至少間隔 dispatch_delay 秒（第一次立即派工）。

    - 回傳 dict 只包含 work 回傳非 None 的 key；work 拋出的例外記錄 log 後視為 None。
    - items 為空時立即回傳 {}，不派工也不等待。
    - cancel_event 被設定後不再派工，且不等待進行中的工作即返回（只收集已完成的結果）。
    - on_result(key, value) 於每個工作完成時在 worker thread 中呼叫（含 None）。
    """
    keys = list(items)
    if not keys:
        return {}

    max_concurrency = max(1, max_concurrency)
    slots = threading.BoundedSemaphore(max_concurrency)
    results: dict[K, T] = {}
    results_lock = threading.Lock()
    futures: dict[Future, K] = {}

    def _run(key: K) -> T | None:
        try:
            value = work(key)
        except Exception:
            logger.warning("節流工作 %s 執行失敗，視為無結果。", key, exc_info=True)
            value = None
        if value is not None:
            with results_lock:
                results[key] = value
        if on_result is not None:
            try:
                on_result(key, value)
            except Exception:
                logger.warning("節流工作 %s 的結果回呼失敗。", key, exc_info=True)
        return value

    executor = ThreadPoolExecutor(
        max_workers=min(max_concurrency, len(keys)), thread_name_prefix="throttled"
    )
    cancelled = False
    try:
        for i, key in enumerate(keys):
            if i > 0 and not _wait_dispatch_delay(dispatch_delay, cancel_event):
                cancelled = True
                break
            if _is_cancelled(cancel_event) or not _acquire_slot(slots, cancel_event):
                cancelled = True
                break
            # 每個工作複製呼叫端 context（保留 run_id 等 contextvars）
            future = executor.submit(contextvars.copy_context().run, _run, key)
            future.add_done_callback(lambda _f: slots.release())
            futures[future] = key

        pending = set(futures)
        poll = _SLOT_POLL_INTERVAL if cancel_event is not None else None
        while pending and not cancelled:
            if _is_cancelled(cancel_event):
                cancelled = True
                break
            _done, pending = wait(pending, timeout=poll, return_when=FIRST_COMPLETED)
    finally:
        executor.shutdown(wait=not cancelled, cancel_futures=cancelled)

    if cancelled:
        logger.info("節流工作已取消：已派工 %d / %d 項。", len(futures), len(keys))

    with results_lock:
        return dict(results)
