"""资源余量检查

安装计划需要回答 "当前主机放得下吗"：
  - 镜像总大小 + 预留空间 <= 数据目录所在分区的可用空间

与兼容性检查相互独立，不足时只体现在 AvailabilityReport 中，不抛异常。
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from dnpmanager.core.models import AvailabilityReport

logger = logging.getLogger(__name__)


@dataclass
class DiskStatus:
    """磁盘状态快照"""

    path: str = ""
    total: int = 0
    used: int = 0
    free: int = 0
    timestamp: float = 0.0


def _format_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


class DiskHeadroom:
    """数据目录所在分区的余量检查"""

    def __init__(self, path: str | Path, min_free_bytes: int = 0) -> None:
        self.path = Path(path)
        self.min_free_bytes = max(0, min_free_bytes)

    def _existing_path(self) -> Path:
        # 数据目录可能尚未创建，向上找到第一个存在的目录
        p = self.path.resolve()
        while not p.exists() and p != p.parent:
            p = p.parent
        return p

    def status(self) -> DiskStatus:
        target = self._existing_path()
        try:
            usage = shutil.disk_usage(target)
        except OSError as e:
            logger.error("查询磁盘空间失败 %s: %s", target, e)
            return DiskStatus(path=str(target), timestamp=time.time())
        return DiskStatus(
            path=str(target), total=usage.total, used=usage.used,
            free=usage.free, timestamp=time.time(),
        )

    def check(self, required_bytes: int) -> AvailabilityReport:
        s = self.status()
        needed = max(0, required_bytes) + self.min_free_bytes
        if s.free >= needed:
            return AvailabilityReport(is_available=True, message="")
        message = (
            f"磁盘空间不足: 需要 {_format_bytes(needed)}（含预留 {_format_bytes(self.min_free_bytes)}），"
            f"{s.path} 仅剩 {_format_bytes(s.free)}"
        )
        logger.warning(message)
        return AvailabilityReport(is_available=False, message=message)
