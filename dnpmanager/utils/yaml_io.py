"""YAML / 文本文件统一读写工具

compose 文件、数据库文件、发布索引都经由此处读写:
统一 encoding="utf-8"、大小保护、原子写入。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 单个 YAML 文件最大 10MB
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """原子写入：同目录临时文件 + os.replace，失败时目标文件保持原样"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, str(path))
    except BaseException:
        # 中断（含 KeyboardInterrupt）同样不能留下半成品
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def dump_yaml(data: Any) -> str:
    """序列化为 YAML 文本，保持键顺序"""
    return yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)


def parse_yaml(text: str | bytes, *, source: str = "<text>") -> Any:
    """解析 YAML 文本，出错时抛 yaml.YAMLError"""
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 失败: %s, 错误: %s", source, e)
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """安全读取 YAML 文件

    文件不存在、为空或顶层不是字典时返回空字典。
    文件超过 MAX_YAML_SIZE 抛 ValueError。
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), 超过限制 {MAX_YAML_SIZE} 字节"
        )

    result = parse_yaml(p.read_text(encoding="utf-8"), source=str(p))
    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning("%s 内容不是字典类型 (实际: %s)，返回空字典", p, type(result).__name__)
        return {}
    return result


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML 文件（自动创建父目录）"""
    p = Path(path)
    try:
        atomic_write(p, dump_yaml(data))
    except (yaml.YAMLError, OSError) as e:
        logger.error("写入文件失败: %s, 错误: %s", p, e)
        raise
