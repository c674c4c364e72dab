"""自动更新设置

id 取值:
  - "my-packages":     用户安装的全部包
  - "system-packages": 核心系统包
  - 具体包名:           单个包（覆盖 my-packages 的总开关）

存储格式（YAML）:
  auto_update:
    my-packages: {enabled: true}
    bitcoin.dnp.dappnode.eth: {enabled: false}
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from dnpmanager.core.exceptions import ValidationError
from dnpmanager.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

MY_PACKAGES = "my-packages"
SYSTEM_PACKAGES = "system-packages"

_SECTION = "auto_update"


class AutoUpdateSettings:
    """自动更新开关"""

    def __init__(self, settings_file: str | Path) -> None:
        self.settings_file = Path(settings_file)
        self._lock = threading.Lock()
        self._data: dict[str, Any] = load_yaml(self.settings_file)

    def _section(self) -> dict[str, dict[str, Any]]:
        return self._data.setdefault(_SECTION, {})

    def edit(self, id: str, enabled: bool) -> None:  # noqa: A002
        if not id:
            raise ValidationError("需要提供 id（my-packages / system-packages / 包名）")
        with self._lock:
            self._section()[id] = {"enabled": bool(enabled)}
            save_yaml(self.settings_file, self._data)
        scope = {MY_PACKAGES: "用户包", SYSTEM_PACKAGES: "系统包"}.get(id, id)
        logger.info("自动更新已%s: %s", "开启" if enabled else "关闭", scope)

    def is_enabled(self, id: str) -> bool:  # noqa: A002
        """单个包的开关优先，其次是 my-packages 总开关"""
        with self._lock:
            section = self._section()
            entry = section.get(id)
            if entry is None and id not in (MY_PACKAGES, SYSTEM_PACKAGES):
                entry = section.get(MY_PACKAGES)
            return bool((entry or {}).get("enabled", False))

    def list_all(self) -> dict[str, bool]:
        with self._lock:
            return {k: bool((v or {}).get("enabled", False)) for k, v in self._section().items()}
