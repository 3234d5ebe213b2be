"""
Infrastructure — 快取合併策略、序列化與失效政策。
每個快取管理器以「具名策略」組合而成，不由欄位是否為 None 推斷合併行為。
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from domain.entities import EMAEntry, SwingLevelEntry

# ---------------------------------------------------------------------------
# Merge Strategies：set(key, value) 時新值如何與既有值合併
# ---------------------------------------------------------------------------


class MergeStrategy(StrEnum):
    REPLACE = "replace"  # 整筆覆寫
    MERGE_MAPPING = "merge_mapping"  # dict 值：合併內層 key
    MERGE_NON_NULL = "merge_non_null"  # EMAEntry：非 None 欄位覆寫


def _replace(existing: Any, incoming: Any) -> Any:
    return incoming


def _merge_mapping(existing: dict | None, incoming: dict) -> dict:
    merged = dict(existing or {})
    merged.update(incoming)
    return merged


def _merge_non_null(existing: EMAEntry | None, incoming: EMAEntry) -> EMAEntry:
    if existing is None:
        return incoming
    return existing.merged(incoming)


_MERGERS: dict[MergeStrategy, Callable[[Any, Any], Any]] = {
    MergeStrategy.REPLACE: _replace,
    MergeStrategy.MERGE_MAPPING: _merge_mapping,
    MergeStrategy.MERGE_NON_NULL: _merge_non_null,
}


def merge_value(strategy: MergeStrategy, existing: Any, incoming: Any) -> Any:
    return _MERGERS[strategy](existing, incoming)


# ---------------------------------------------------------------------------
# Value Codecs：entries 值 <-> JSON
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValueCodec:
    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]


def _decode_float(raw: Any) -> float:
    return float(raw)


def _decode_float_mapping(raw: Any) -> dict[str, float]:
    return {str(k): float(v) for k, v in dict(raw).items()}


FLOAT_CODEC = ValueCodec(encode=lambda v: v, decode=_decode_float)
FLOAT_MAPPING_CODEC = ValueCodec(encode=dict, decode=_decode_float_mapping)
SWING_LEVEL_CODEC = ValueCodec(
    encode=lambda v: v.to_dict(), decode=SwingLevelEntry.from_dict
)
EMA_CODEC = ValueCodec(encode=lambda v: v.to_dict(), decode=EMAEntry.from_dict)


# ---------------------------------------------------------------------------
# Invalidation Policy：啟動 / 定期刷新時應套用哪些失效規則
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvalidationPolicy:
    """
    range_based：stamp 為季度範圍 token，範圍改變即清空。
    daily：lastUpdated 不是今天（美東）即清空，保留 stamp。
    yearly：stamp 為年份，跨年即清空。
    prune_quarters：以季度 id 為 key，只保留有效窗口內的季度。
    """

    range_based: bool = False
    daily: bool = False
    yearly: bool = False
    prune_quarters: bool = False

    def describe(self) -> str:
        flags = [
            name
            for name, on in (
                ("range", self.range_based),
                ("daily", self.daily),
                ("yearly", self.yearly),
                ("prune", self.prune_quarters),
            )
            if on
        ]
        return "+".join(flags) or "none"


YEARLY = InvalidationPolicy(yearly=True)
QUARTER_PRUNE = InvalidationPolicy(prune_quarters=True)
RANGE = InvalidationPolicy(range_based=True)
RANGE_AND_DAILY = InvalidationPolicy(range_based=True, daily=True)
DAILY = InvalidationPolicy(daily=True)
