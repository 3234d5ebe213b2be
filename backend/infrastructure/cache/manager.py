"""
Infrastructure — 泛型快取管理器 (Typed Cache Manager)。
每個管理器持有 entries + stamp + lastUpdated，包裝 CacheStorage，
所有操作以單一 RLock 序列化（single-writer）。
判斷是否失效的 needs_* 皆為純判斷，只有 clear_* 會改變狀態。
"""

import threading
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from domain.market_schedule import to_eastern
from domain.protocols import DateProvider
from infrastructure.cache.policies import (
    InvalidationPolicy,
    MergeStrategy,
    ValueCodec,
    merge_value,
)
from infrastructure.cache.storage import CacheStorage
from logging_config import get_logger

logger = get_logger(__name__)

V = TypeVar("V")


def parse_timestamp(value: str) -> datetime | None:
    """ISO-8601 → aware datetime；空字串或無法解析回傳 None。naive 視為 UTC。"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _copy_value(value: Any) -> Any:
    return dict(value) if isinstance(value, dict) else value


class CacheManager(Generic[V]):
    """
    泛型快取管理器。
    狀態：Unloaded → load() → Loaded → set / clear_* → save()。
    save() 在尚未載入到任何檔案、也未曾 set / clear 前為 no-op。
    """

    def __init__(
        self,
        name: str,
        storage: CacheStorage,
        date_provider: DateProvider,
        codec: ValueCodec,
        merge_strategy: MergeStrategy = MergeStrategy.REPLACE,
        policy: InvalidationPolicy = InvalidationPolicy(),
    ):
        self.name = name
        self.merge_strategy = merge_strategy
        self.policy = policy
        self._storage = storage
        self._date_provider = date_provider
        self._codec = codec
        self._lock = threading.RLock()
        self._entries: dict[str, V] = {}
        self._stamp: Any = None
        self._last_updated = ""
        self._loaded = False
        self._has_document = False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        raw = self._storage.load()
        with self._lock:
            self._loaded = True
            self._entries = {}
            self._stamp = None
            self._last_updated = ""
            self._has_document = raw is not None
            if raw is None:
                logger.debug("%s 快取檔不存在或無法解析，以空快取啟動。", self.name)
                return

            self._stamp = raw.get("stamp")
            self._last_updated = str(raw.get("lastUpdated") or "")
            for key, encoded in (raw.get("entries") or {}).items():
                try:
                    self._entries[str(key)] = self._codec.decode(encoded)
                except (TypeError, ValueError, AttributeError) as e:
                    logger.warning("%s 快取略過無法解析的項目 %s：%s", self.name, key, e)
            logger.debug("%s 快取已載入 %d 筆。", self.name, len(self._entries))

    def ensure_loaded(self) -> bool:
        """尚未載入時才從檔案載入；回傳是否實際執行了載入。"""
        with self._lock:
            if self._loaded:
                return False
            self.load()
            return True

    def save(self) -> None:
        with self._lock:
            if not self._has_document:
                return
            document = {
                "stamp": self._stamp,
                "lastUpdated": self._last_updated,
                "entries": self.export_entries(),
            }
            self._storage.save(document)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, key: str) -> V | None:
        with self._lock:
            return _copy_value(self._entries.get(key))

    def get_all(self) -> dict[str, V]:
        with self._lock:
            return {k: _copy_value(v) for k, v in self._entries.items()}

    def export_entries(self) -> dict[str, Any]:
        """entries 的 JSON 形式（與檔案內容一致），供 API 輸出。"""
        with self._lock:
            return {k: self._codec.encode(v) for k, v in self._entries.items()}

    def get_missing(self, candidates: list[str]) -> list[str]:
        """candidates 中尚未存在於 entries 的 key（以存在與否判斷，不看值是否為空），保留順序。"""
        with self._lock:
            return [c for c in candidates if c not in self._entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def stamp(self) -> Any:
        with self._lock:
            return self._stamp

    @property
    def last_updated(self) -> str:
        with self._lock:
            return self._last_updated

    @property
    def is_loaded(self) -> bool:
        with self._lock:
            return self._loaded

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._ensure_document()
            self._entries[key] = merge_value(
                self.merge_strategy, self._entries.get(key), value
            )
            self._touch()

    def _ensure_document(self) -> None:
        if self._has_document:
            return
        self._has_document = True
        if self._stamp is None:
            self._stamp = self._initial_stamp()

    def _initial_stamp(self) -> Any:
        """尚無快取文件時，第一次 set 所使用的 stamp。"""
        return None

    def _touch(self) -> None:
        self._last_updated = self._now().isoformat()

    def _now(self) -> datetime:
        return self._date_provider.now()

    def _reset(self, stamp: Any) -> None:
        self._entries = {}
        self._last_updated = ""
        self._stamp = stamp
        self._has_document = True
        self._loaded = True

    # ------------------------------------------------------------------
    # Invalidation predicates (pure)
    # ------------------------------------------------------------------

    def needs_invalidation(self, current_stamp: Any) -> bool:
        with self._lock:
            return not self._loaded or self._stamp != current_stamp

    def needs_daily_refresh(self) -> bool:
        with self._lock:
            if not self._loaded and not self._has_document:
                return True
            last = parse_timestamp(self._last_updated)
            if last is None:
                return True
            return to_eastern(last).date() != to_eastern(self._now()).date()

    def needs_year_rollover(self) -> bool:
        with self._lock:
            if not self._loaded and not self._has_document:
                return True
            try:
                stored_year = int(self._stamp)
            except (TypeError, ValueError):
                return True
            return stored_year != to_eastern(self._now()).year

    # ------------------------------------------------------------------
    # Invalidation mutations
    # ------------------------------------------------------------------

    def clear_for_new_range(self, stamp: Any) -> None:
        with self._lock:
            logger.info("%s 快取範圍變更（%s → %s），清空。", self.name, self._stamp, stamp)
            self._reset(stamp)

    def clear_for_new_year(self) -> None:
        with self._lock:
            year = to_eastern(self._now()).year
            logger.info("%s 快取跨年（%s → %d），清空。", self.name, self._stamp, year)
            self._reset(year)

    def clear_for_daily_refresh(self) -> None:
        with self._lock:
            logger.info("%s 快取每日刷新，清空 %d 筆。", self.name, len(self._entries))
            self._reset(self._stamp)

    def clear(self) -> None:
        """清空 entries 與 stamp（管理 API 使用）。"""
        with self._lock:
            self._reset(None)
