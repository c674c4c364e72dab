"""compose 模块

- fields.py:     environment / ports / volumes 字段解析
- editor.py:     ComposeEditor、默认值追踪标签
- merge.py:      模板与上一版合并、用户设置提取
- repository.py: 已安装 compose 的加锁读写
"""

from dnpmanager.core.compose.editor import (
    COMPOSE_FILE_NAME,
    ComposeEditor,
    ServiceDefaults,
    get_container_name,
    get_image,
    read_defaults_from_labels,
    write_defaults_to_labels,
)
from dnpmanager.core.compose.merge import get_settings, merge
from dnpmanager.core.compose.repository import ComposeRepository, PackageLocks

__all__ = [
    "COMPOSE_FILE_NAME",
    "ComposeEditor",
    "ComposeRepository",
    "PackageLocks",
    "ServiceDefaults",
    "get_container_name",
    "get_image",
    "get_settings",
    "merge",
    "read_defaults_from_labels",
    "write_defaults_to_labels",
]
