"""
Infrastructure — 本機檔案系統與系統時鐘適配器。
實作 domain.protocols 中的 FileSystem / DateProvider。
"""

import os
from datetime import UTC, datetime


class LocalFileSystem:
    """以 os / 內建 open 實作的 FileSystem。"""

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def make_dirs(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)

    def read_bytes(self, path: str) -> bytes | None:
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def write_bytes(self, path: str, data: bytes) -> None:
        # 先寫暫存檔再 rename，讀取端不會看到寫到一半的檔案
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)


class SystemDateProvider:
    """回傳帶 UTC 時區的現在時間。"""

    def now(self) -> datetime:
        return datetime.now(UTC)
