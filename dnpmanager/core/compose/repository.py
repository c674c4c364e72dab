"""已安装包的 compose 仓库

目录结构: <repo_dir>/<包名>/docker-compose.yml

ComposeRepository 是已安装 compose 文件的唯一写入者：
每次写入都持有该包的独占锁（PackageLocks），安装流程与全局环境变量
传播流程并发写同一个包时按包串行，不同包之间互不阻塞。
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from dnpmanager.core.compose.editor import COMPOSE_FILE_NAME, ComposeEditor
from dnpmanager.core.exceptions import ComposeParseError
from dnpmanager.core.models import InstalledPackage

logger = logging.getLogger(__name__)


class PackageLocks:
    """按包名分配的可重入互斥锁"""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, name: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        lock = self.get(name)
        with lock:
            yield


class ComposeRepository:
    """已安装包 compose 文件的读写与枚举"""

    def __init__(self, repo_dir: str | Path, locks: PackageLocks | None = None) -> None:
        self.repo_dir = Path(repo_dir)
        self.locks = locks or PackageLocks()

    def compose_path(self, name: str) -> Path:
        if not name or "/" in name or name.startswith("."):
            raise ValueError(f"非法包名: {name!r}")
        return self.repo_dir / name / COMPOSE_FILE_NAME

    def exists(self, name: str) -> bool:
        return self.compose_path(name).is_file()

    def read(self, name: str) -> ComposeEditor | None:
        path = self.compose_path(name)
        if not path.is_file():
            return None
        return ComposeEditor.read(path)

    def write(self, name: str, compose: ComposeEditor) -> Path:
        path = self.compose_path(name)
        with self.locks.hold(name):
            compose.write(path)
        logger.info("compose 已更新: %s -> %s", name, path)
        return path

    def update(self, name: str, mutate: Callable[[ComposeEditor], bool]) -> bool:
        """在包锁内完成 读 -> 修改 -> 写，mutate 返回 False 时不写入

        返回是否写入。包未安装时返回 False。
        """
        path = self.compose_path(name)
        with self.locks.hold(name):
            if not path.is_file():
                return False
            compose = ComposeEditor.read(path)
            if not mutate(compose):
                return False
            compose.write(path)
        logger.info("compose 已更新: %s -> %s", name, path)
        return True

    def list_names(self) -> list[str]:
        if not self.repo_dir.is_dir():
            return []
        return sorted(
            d.name for d in self.repo_dir.iterdir()
            if d.is_dir() and not d.name.startswith(".") and (d / COMPOSE_FILE_NAME).is_file()
        )

    def list_installed(self) -> dict[str, InstalledPackage]:
        """枚举已安装包；compose 损坏的包记录日志后跳过"""
        installed: dict[str, InstalledPackage] = {}
        for name in self.list_names():
            try:
                pkg = self.get_installed(name)
            except ComposeParseError:
                logger.exception("已安装包 compose 损坏，跳过: %s", name)
                continue
            if pkg is not None:
                installed[name] = pkg
        return installed

    def get_installed(self, name: str) -> InstalledPackage | None:
        compose = self.read(name)
        if compose is None:
            return None
        return InstalledPackage(
            name=name,
            version=compose.package_version(),
            compose_path=str(self.compose_path(name)),
            dependencies=compose.package_dependencies(),
            origin=compose.package_origin(),
        )
