"""全局环境变量存储

主机级配置（IP、域名、主机名、可达性等）在所有已安装包之间共享。
键名必须带前缀 _DAPPNODE_GLOBAL_，缺失时自动补全后再持久化。

set() 的顺序:
  1. 规范化键名并按固定 schema 校验类型
  2. 同步写入持久层，写入完成即返回
  3. 通知观察者（传播引擎即其中之一）；观察者的异常只记录日志，不抛给调用方
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Protocol, Union

from dnpmanager.core.compose.fields import format_env_value
from dnpmanager.core.config import GLOBAL_ENVS_PREFIX
from dnpmanager.core.exceptions import ValidationError

if TYPE_CHECKING:
    from dnpmanager.core.db import KeyValueDb

logger = logging.getLogger(__name__)

GlobalEnvValue = Union[str, bool]

DB_SECTION = "global_envs"

_KEY_RE = re.compile(r"[A-Za-z0-9_]+")
# env 文件按行解析，值中不能出现换行和 NUL
_FORBIDDEN_VALUE_CHARS = ("\n", "\r", "\0")

# 已识别的全局变量及其取值类型（键名不含前缀）
GLOBAL_ENV_SCHEMA: dict[str, type] = {
    "ACTIVE": bool,
    "INTERNAL_IP": str,
    "STATIC_IP": str,
    "HOSTNAME": str,
    "UPNP_AVAILABLE": bool,
    "NO_NAT_LOOPBACK": bool,
    "DOMAIN": str,
    "PUBKEY": str,
    "ADDRESS": str,
    "PUBLIC_IP": str,
    "SERVER_NAME": str,
}


class GlobalEnvObserver(Protocol):
    """全局变量写入后的观察者"""

    def on_global_env_set(self, key: str, value: GlobalEnvValue) -> Any:
        ...


def normalize_key(key: str, prefix: str = GLOBAL_ENVS_PREFIX) -> str:
    key = (key or "").strip()
    if not key:
        raise ValidationError("全局变量键名不能为空")
    if not _KEY_RE.fullmatch(key):
        raise ValidationError(f"全局变量键名只能包含字母、数字和下划线: {key!r}")
    return key if key.startswith(prefix) else f"{prefix}{key}"


class GlobalEnvStore:
    """全局环境变量存储 + 写后观察者"""

    def __init__(self, db: KeyValueDb, prefix: str = GLOBAL_ENVS_PREFIX) -> None:
        self.db = db
        self.prefix = prefix
        self._observers: list[GlobalEnvObserver] = []

    def add_observer(self, observer: GlobalEnvObserver) -> None:
        self._observers.append(observer)

    def get(self, key: str, default: GlobalEnvValue | None = None) -> GlobalEnvValue | None:
        return self.db.get(DB_SECTION, normalize_key(key, self.prefix), default)

    def all(self) -> dict[str, GlobalEnvValue]:
        return self.db.section(DB_SECTION)

    def validate(self, key: str, value: Any) -> None:
        text = format_env_value(value)
        if any(c in text for c in _FORBIDDEN_VALUE_CHARS):
            raise ValidationError(f"全局变量 {key} 的值不能包含换行或 NUL 字符")
        short = key[len(self.prefix):]
        expected = GLOBAL_ENV_SCHEMA.get(short)
        if expected is None:
            return
        if not isinstance(value, expected):
            raise ValidationError(
                f"全局变量 {short} 应为 {expected.__name__}，实际为 {type(value).__name__}"
            )

    def coerce(self, key: str, raw: Any) -> GlobalEnvValue:
        """把命令行 / 表单传入的文本转为 schema 要求的类型"""
        short = normalize_key(key, self.prefix)[len(self.prefix):]
        if GLOBAL_ENV_SCHEMA.get(short) is bool and isinstance(raw, str):
            text = raw.strip().lower()
            if text in ("true", "1", "yes", "on"):
                return True
            if text in ("false", "0", "no", "off"):
                return False
            raise ValidationError(f"全局变量 {short} 应为布尔值: {raw}")
        return raw

    def set(self, key: str, value: GlobalEnvValue) -> str:
        """写入全局变量，返回带前缀的键名

        持久化完成即返回；传播在后台进行，其失败不会影响本次调用。
        """
        full_key = normalize_key(key, self.prefix)
        self.validate(full_key, value)
        self.db.put(DB_SECTION, full_key, value)
        logger.info("全局变量已写入: %s=%s", full_key, value)

        for observer in list(self._observers):
            try:
                observer.on_global_env_set(full_key, value)
            except Exception:
                logger.exception("全局变量观察者处理失败: %s (%s)", full_key, type(observer).__name__)
        return full_key
