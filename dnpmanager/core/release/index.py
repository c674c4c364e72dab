"""发布索引 — 包名 + 版本 -> 内容哈希

索引文件格式:

    packages:
      main.dnp.dappnode.eth:
        versions:
          0.1.0: QmXXX...
          0.1.1: QmYYY...
"""

from __future__ import annotations

import logging
from pathlib import Path

from dnpmanager.core.exceptions import NotFoundError, ValidationError
from dnpmanager.core.models import PackageRequest
from dnpmanager.core.versions import SelectorKind, highest_satisfying, normalize_hash
from dnpmanager.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


class ReleaseIndex:
    """发布索引 - 从 YAML 文件加载"""

    def __init__(self, index_path: str | Path) -> None:
        self.index_path = Path(index_path)
        self._packages: dict[str, dict[str, str]] | None = None

    def load(self) -> dict[str, dict[str, str]]:
        if not self.index_path.exists():
            logger.warning("发布索引不存在: %s", self.index_path)
            return {}
        data = load_yaml(self.index_path)
        packages: dict[str, dict[str, str]] = {}
        for name, info in (data.get("packages") or {}).items():
            if info is None:
                continue
            versions = info.get("versions") or {}
            packages[str(name)] = {str(v): normalize_hash(str(h)) for v, h in versions.items()}
        logger.info("已加载发布索引: %d 个包", len(packages))
        return packages

    @property
    def packages(self) -> dict[str, dict[str, str]]:
        if self._packages is None:
            self._packages = self.load()
        return self._packages

    def versions(self, name: str) -> dict[str, str]:
        versions = self.packages.get(name)
        if versions is None:
            raise NotFoundError(f"包 '{name}' 不在发布索引中")
        return versions

    def locate(self, request: PackageRequest) -> tuple[str, str]:
        """按范围 / latest 解析，返回 (版本号, 内容哈希)"""
        if request.kind == SelectorKind.HASH:
            raise ValueError("哈希请求无需查询索引")
        versions = self.versions(request.name)
        spec = None if request.kind == SelectorKind.LATEST else request.selector
        try:
            version = highest_satisfying(list(versions), spec)
        except ValueError as e:
            raise ValidationError(f"非法的版本范围 '{request.selector}': {e}") from e
        if version is None:
            raise NotFoundError(
                f"包 '{request.name}' 没有满足 '{request.selector}' 的版本。"
                f"可用: {sorted(versions)}"
            )
        logger.info("版本已解析: %s -> %s", request, version)
        return version, versions[version]
