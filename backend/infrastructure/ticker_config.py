"""
Infrastructure — 追蹤清單設定檔 (config.json) 讀寫。
支援舊版欄位名稱（tickers / indexTickers / closedMarketAsset）；
檔案不存在或格式錯誤時回傳預設設定。
"""

import json
import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from domain import constants
from domain.protocols import FileSystem
from infrastructure.system import LocalFileSystem
from logging_config import get_logger

logger = get_logger(__name__)

_LEGACY_KEYS = {
    "tickers": "watchlist",
    "indexTickers": "indexSymbols",
    "closedMarketAsset": "menuBarAssetWhenClosed",
}


class IndexSymbol(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    display_name: str = Field(alias="displayName")


def _default_index_symbols() -> list[IndexSymbol]:
    return [
        IndexSymbol(symbol=s, display_name=n) for s, n in constants.DEFAULT_INDEX_SYMBOLS
    ]


def _default_always_open() -> list[IndexSymbol]:
    return [
        IndexSymbol(symbol=s, display_name=n)
        for s, n in constants.DEFAULT_ALWAYS_OPEN_SYMBOLS
    ]


class WatchlistConfig(BaseModel):
    """追蹤清單設定。JSON 使用 camelCase 欄位名稱。"""

    model_config = ConfigDict(populate_by_name=True)

    watchlist: list[str] = Field(
        default_factory=lambda: list(constants.DEFAULT_WATCHLIST)
    )
    universe: list[str] = Field(default_factory=list)
    index_symbols: list[IndexSymbol] = Field(
        default_factory=_default_index_symbols, alias="indexSymbols"
    )
    always_open_markets: list[IndexSymbol] = Field(
        default_factory=_default_always_open, alias="alwaysOpenMarkets"
    )
    menu_bar_asset_when_closed: str = Field(
        default=constants.DEFAULT_CLOSED_MARKET_SYMBOL, alias="menuBarAssetWhenClosed"
    )

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for legacy, current in _LEGACY_KEYS.items():
            if legacy in data and current not in data:
                data[current] = data.pop(legacy)
        return data

    # ------------------------------------------------------------------
    # Derived symbol sets
    # ------------------------------------------------------------------

    @property
    def index_symbol_list(self) -> list[str]:
        return [s.symbol for s in self.index_symbols]

    @property
    def always_open_symbol_list(self) -> list[str]:
        return [s.symbol for s in self.always_open_markets]

    @property
    def all_cache_symbols(self) -> list[str]:
        """YTD / 季度快取涵蓋的代號：watchlist + universe + 指數（去重，保留順序）。"""
        return list(dict.fromkeys(self.watchlist + self.universe + self.index_symbol_list))

    @property
    def extra_stats_symbols(self) -> list[str]:
        """日線分析 / EMA / forward P/E 涵蓋的代號：watchlist + universe。"""
        return list(dict.fromkeys(self.watchlist + self.universe))


def load_config(
    path: str | None = None, file_system: FileSystem | None = None
) -> WatchlistConfig:
    path = path or constants.CONFIG_PATH
    fs = file_system or LocalFileSystem()

    if not fs.exists(path):
        logger.info("設定檔 %s 不存在，使用預設追蹤清單。", path)
        return WatchlistConfig()

    try:
        raw = fs.read_bytes(path)
        return WatchlistConfig.model_validate(json.loads(raw or b"{}"))
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("設定檔 %s 解析失敗，使用預設追蹤清單：%s", path, e)
        return WatchlistConfig()


def save_config(
    config: WatchlistConfig,
    path: str | None = None,
    file_system: FileSystem | None = None,
) -> None:
    path = path or constants.CONFIG_PATH
    fs = file_system or LocalFileSystem()

    directory = os.path.dirname(path)
    try:
        if directory and not fs.exists(directory):
            fs.make_dirs(directory)
        data = json.dumps(
            config.model_dump(by_alias=True), indent=2, sort_keys=True, ensure_ascii=False
        )
        fs.write_bytes(path, data.encode("utf-8"))
    except OSError as e:
        logger.warning("寫入設定檔 %s 失敗：%s", path, e)
