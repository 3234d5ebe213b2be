"""
Config — 從環境變數覆寫 domain 常數。
在應用程式啟動時呼叫一次 init_settings()。
"""

import os

from domain import constants
from logging_config import get_logger

logger = get_logger(__name__)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("環境變數 %s=%r 不是數值，沿用預設值 %s。", name, raw, default)
        return default


def init_settings() -> None:
    """Override domain constants from environment. Call once at startup."""
    cache_dir = os.getenv("CACHE_DIR")
    if cache_dir:
        constants.CACHE_DIR = cache_dir
        # 設定檔預設跟著快取目錄走，除非另外指定 CONFIG_PATH
        constants.CONFIG_PATH = os.path.join(cache_dir, "config.json")

    config_path = os.getenv("CONFIG_PATH")
    if config_path:
        constants.CONFIG_PATH = config_path

    constants.BACKFILL_DISPATCH_DELAY = max(
        0.0, _float_env("BACKFILL_DISPATCH_DELAY", constants.BACKFILL_DISPATCH_DELAY)
    )
    constants.BACKFILL_MAX_CONCURRENCY = max(
        1,
        int(_float_env("BACKFILL_MAX_CONCURRENCY", constants.BACKFILL_MAX_CONCURRENCY)),
    )
