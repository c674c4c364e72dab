"""持久化键值数据库（YAML 文件）

按 section 组织: {section: {key: value}}。
每次写入都同步落盘（原子写入），返回即表示已持久化。
"""

from __future__ import annotations

import copy
import logging
import threading
from pathlib import Path
from typing import Any

from dnpmanager.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)


class KeyValueDb:
    """线程安全的 YAML 键值库"""

    def __init__(self, db_file: str | Path) -> None:
        self.db_file = Path(db_file)
        self._lock = threading.Lock()
        self._data: dict[str, Any] = load_yaml(self.db_file)

    def get(self, section: str, key: str, default: Any = None) -> Any:
        with self._lock:
            return copy.deepcopy((self._data.get(section) or {}).get(key, default))

    def section(self, section: str) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._data.get(section) or {})

    def put(self, section: str, key: str, value: Any) -> None:
        with self._lock:
            entries = self._data.setdefault(section, {})
            old = entries.get(key)
            entries[key] = value
            try:
                save_yaml(self.db_file, self._data)
            except OSError:
                # 落盘失败时内存状态回滚，与磁盘保持一致
                if old is None:
                    entries.pop(key, None)
                else:
                    entries[key] = old
                raise
        logger.debug("已持久化: %s.%s", section, key)
