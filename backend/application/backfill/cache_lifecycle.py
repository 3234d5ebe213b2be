"""
Application — 統計快取生命週期：啟動載入、依失效政策清空、補抓缺漏項目。
失效判斷一律使用快取自身的 needs_* 純判斷；只有這裡會呼叫 clear_*。
"""

from datetime import datetime

from domain import constants
from domain.enums import CacheName
from domain.protocols import StockServiceProtocol
from domain.quarters import cache_quarter_range, last_n_completed_quarters, stats_period
from infrastructure.cache.manager import CacheManager
from infrastructure.cache.managers import BackfillCaches
from infrastructure.ticker_config import WatchlistConfig
from logging_config import get_logger

logger = get_logger(__name__)


def _apply_policy(
    name: CacheName, manager: CacheManager, range_token: str
) -> list[str]:
    """依 manager.policy 執行清空，回傳執行過的動作描述。"""
    actions: list[str] = []
    policy = manager.policy

    if policy.yearly and manager.needs_year_rollover():
        manager.clear_for_new_year()
        actions.append(f"{name}: new year")

    if policy.range_based and manager.needs_invalidation(range_token):
        manager.clear_for_new_range(range_token)
        actions.append(f"{name}: new range {range_token}")

    if policy.daily and len(manager) and manager.needs_daily_refresh():
        manager.clear_for_daily_refresh()
        actions.append(f"{name}: daily refresh")

    return actions


def prepare_caches(caches: BackfillCaches, now: datetime) -> list[str]:
    """
    載入全部快取並套用失效政策：
    - YTD：跨年清空
    - Highest Close / Forward P/E / Swing Level：季度範圍改變時清空
    - Highest Close / Swing Level / RSI / EMA：跨日清空
    - EMA：週五 14:00 ET 後額外刷新一次（sneak peek 週線）
    - Quarterly：移除 13 季窗口外的季度
    回傳執行過的動作描述（供 log / API 使用）。
    """
    caches.load_all()
    range_token = cache_quarter_range(now)
    actions: list[str] = []

    for name, manager in caches.by_name().items():
        actions.extend(_apply_policy(name, manager, range_token))

    if caches.ema.needs_sneak_peek_refresh():
        caches.ema.clear_for_daily_refresh()
        actions.append(f"{CacheName.EMA}: sneak peek refresh")

    if caches.quarterly.policy.prune_quarters:
        keeping = [
            q.identifier
            for q in last_n_completed_quarters(now, constants.QUARTER_FETCH_WINDOW_SIZE)
        ]
        caches.quarterly.prune_old_quarters(keeping)

    caches.save_all()

    if actions:
        logger.info("快取失效處理：%s", "; ".join(actions))
    else:
        logger.info("快取皆有效，無需清空。")
    return actions


def refresh_daily_caches(caches: BackfillCaches) -> bool:
    """盤中定期呼叫：跨日或 sneak peek 時清空對應快取。空快取不需刷新。回傳是否有任何快取被清空。"""
    refreshed = False
    for name, manager in caches.by_name().items():
        if manager.policy.daily and len(manager) and manager.needs_daily_refresh():
            manager.clear_for_daily_refresh()
            manager.save()
            refreshed = True
            logger.info("%s 快取跨日刷新。", name)

    if caches.ema.needs_sneak_peek_refresh():
        caches.ema.clear_for_daily_refresh()
        caches.ema.save()
        refreshed = True
    return refreshed


def retry_missing_entries(
    caches: BackfillCaches,
    stock_service: StockServiceProtocol,
    config: WatchlistConfig,
    now: datetime,
    batch_size: int = constants.CACHE_RETRY_BATCH_SIZE,
) -> dict[str, int]:
    """
    小批次補抓 EMA 與 forward P/E 缺漏項目（每種最多 batch_size 檔），
    回傳各快取實際寫入的筆數。
    """
    written = {CacheName.EMA.value: 0, CacheName.FORWARD_PE.value: 0}

    ema_missing = caches.ema.get_missing(config.all_cache_symbols)[:batch_size]
    if ema_missing:
        fetched = stock_service.batch_fetch_ema_values(ema_missing)
        for symbol, entry in fetched.items():
            caches.ema.set(symbol, entry)
        if fetched:
            caches.ema.save()
        written[CacheName.EMA.value] = len(fetched)

    pe_missing = caches.forward_pe.get_missing(config.extra_stats_symbols)[:batch_size]
    if pe_missing:
        period1, period2 = stats_period(now)
        fetched_pe = stock_service.batch_fetch_forward_pe_ratios(
            pe_missing, period1, period2
        )
        for symbol, quarter_pes in fetched_pe.items():
            caches.forward_pe.set_forward_pe(symbol, quarter_pes)
        if fetched_pe:
            caches.forward_pe.save()
        written[CacheName.FORWARD_PE.value] = len(fetched_pe)

    if any(written.values()):
        logger.info("缺漏快取補抓完成：%s", written)
    return written
