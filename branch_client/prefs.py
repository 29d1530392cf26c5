"""偏好存储 - 进程级持久化的标量键值存储

所有状态保存在 ~/.branch_client/prefs.json 中，跨进程重启保留。
接口层用 None 表示“未设置”，磁盘上使用哨兵字符串 bnc_no_value，
以兼容已有的状态文件。
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

from .defines import NO_STRING_VALUE

logger = logging.getLogger("branch_client")


def get_state_dir() -> Path:
    """获取客户端状态目录"""
    return Path.home() / ".branch_client"


def get_prefs_path() -> Path:
    """获取偏好存储文件路径"""
    return get_state_dir() / "prefs.json"


class PreferenceStore:
    """线程安全的标量键值存储

    每次写入都会落盘（last-write-wins）。path 为 None 时只保存在内存中。
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._lock = threading.RLock()
        self._data: dict[str, Any] = {}
        self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("读取偏好存储失败，将使用空状态: %s", e)
            return
        if isinstance(data, dict):
            self._data = data
        else:
            logger.warning("偏好存储文件格式错误: %s", self._path)

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self._path)

    # ============ 字符串 ============

    def get_string(self, key: str) -> Optional[str]:
        """读取字符串，未设置时返回 None（空字符串是合法值）"""
        with self._lock:
            value = self._data.get(key, NO_STRING_VALUE)
        if value == NO_STRING_VALUE or value is None:
            return None
        return str(value)

    def set_string(self, key: str, value: Optional[str]) -> None:
        """写入字符串，value 为 None 时重置为“未设置”"""
        with self._lock:
            self._data[key] = NO_STRING_VALUE if value is None else value
            self._save()

    def set_string_if_unset(self, key: str, value: str) -> bool:
        """仅当键未设置时写入（检查与写入在同一把锁内完成）

        Returns:
            True 表示本次写入生效
        """
        with self._lock:
            current = self._data.get(key, NO_STRING_VALUE)
            if current != NO_STRING_VALUE and current is not None:
                return False
            self._data[key] = value
            self._save()
            return True

    # ============ 整数 ============

    def get_long(self, key: str, default: int = 0) -> int:
        with self._lock:
            value = self._data.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def set_long(self, key: str, value: int) -> None:
        with self._lock:
            self._data[key] = int(value)
            self._save()

    # ============ 布尔 ============

    def get_bool(self, key: str, default: bool = False) -> bool:
        with self._lock:
            value = self._data.get(key, default)
        return bool(value)

    def set_bool(self, key: str, value: bool) -> None:
        with self._lock:
            self._data[key] = bool(value)
            self._save()

    # ============ 其他 ============

    def clear(self) -> None:
        """清空全部状态"""
        with self._lock:
            self._data = {}
            self._save()

    def snapshot(self) -> dict[str, Any]:
        """返回当前状态的副本（哨兵值转换为 None）"""
        with self._lock:
            return {
                k: (None if v == NO_STRING_VALUE else v)
                for k, v in self._data.items()
            }
