"""
Infrastructure — 快取 JSON 檔讀寫 (Durable Blob Store)。
檔案不存在、為空或解析失敗時視為「無資料」；寫入失敗僅記錄 log，不拋出例外。
"""

import json
import os

from domain.protocols import FileSystem
from logging_config import get_logger

logger = get_logger(__name__)


class CacheStorage:
    """單一快取檔的讀寫；透過注入的 FileSystem 存取磁碟。"""

    def __init__(self, file_system: FileSystem, path: str, label: str):
        self.file_system = file_system
        self.path = path
        self.label = label

    def load(self) -> dict | None:
        if not self.file_system.exists(self.path):
            return None

        try:
            data = self.file_system.read_bytes(self.path)
        except OSError as e:
            logger.warning("讀取 %s 快取失敗：%s", self.label, e)
            return None
        if not data:
            return None

        try:
            value = json.loads(data)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("%s 快取檔解析失敗，視為空快取：%s", self.label, e)
            return None
        if not isinstance(value, dict):
            logger.warning("%s 快取檔格式不符（非 JSON object），視為空快取。", self.label)
            return None
        return value

    def save(self, value: dict) -> None:
        directory = os.path.dirname(self.path)
        if directory and not self.file_system.exists(directory):
            try:
                self.file_system.make_dirs(directory)
            except OSError as e:
                logger.warning("建立 %s 快取目錄失敗：%s", self.label, e)
                return

        try:
            data = json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False)
            self.file_system.write_bytes(self.path, data.encode("utf-8"))
        except (OSError, TypeError, ValueError) as e:
            logger.warning("寫入 %s 快取失敗：%s", self.label, e)
