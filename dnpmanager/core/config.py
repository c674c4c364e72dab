"""集中配置管理

替代各模块散落的 DEFAULT_* 常量，提供统一的配置入口。
支持从 YAML 文件加载 + 编程式覆盖。

fetch_timeout 是运行期可调参数：通过 set_fetch_timeout() 修改后，
ReleaseFetcher 的下一次网络调用立即生效，无需重启进程。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field

import yaml

from dnpmanager.core.exceptions import ConfigError, ValidationError
from dnpmanager.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

GLOBAL_ENVS_PREFIX = "_DAPPNODE_GLOBAL_"


@dataclass
class Config:
    """全局配置"""

    # 目录 / 文件
    repo_dir: str = "data/dnp_repo"
    data_dir: str = "data"
    db_file: str = "data/db.yml"
    global_env_file: str = "data/dnp_repo/dnp.global.env"
    release_index: str = "data/release_index.yml"
    auto_update_file: str = "data/auto_update.yml"

    # 内容存储
    ipfs_api_url: str = "http://ipfs.dappnode:5001"
    ipfs_gateway_url: str = "http://ipfs.dappnode:8080"
    fetch_timeout: float = 30.0  # 秒

    # 主机
    core_version: str = "0.2.0"
    max_workers: int = 4
    min_free_bytes: int = 1024 * 1024 * 1024

    # 放不到字段里的配置项
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str = "configs/default.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"配置文件无法解析: {path}: {e}") from e
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def set_fetch_timeout(self, timeout: float | None) -> None:
        """运行期修改内容存储超时（秒）"""
        try:
            value = float(timeout) if timeout else 0.0
        except (TypeError, ValueError) as e:
            raise ValidationError(f"timeout 不是数字: {timeout}") from e
        if value <= 0:
            raise ValidationError("timeout 必须为正数")
        with self._lock:
            old, self.fetch_timeout = self.fetch_timeout, value
        logger.info("内容存储超时已修改: %ss -> %ss", old, self.fetch_timeout)

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI / Web 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "configs/default.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
