"""依赖兼容性检查

输入: 完整拉取结果（必须等全部依赖拉取返回后才调用）+ 已安装状态。
输出: CompatibilityReport。

这是约束检查而非求解器：发现第一处冲突即停止，不回溯、不搜索替代版本。
冲突以数据形式写入报告（is_compatible=False + error），不抛异常。
"""

from __future__ import annotations

import logging

from dnpmanager.core.models import (
    CompatibilityReport,
    FetchResult,
    InstalledPackage,
    Release,
    VersionChange,
)
from dnpmanager.core.versions import SelectorKind, is_newer, normalize_hash, satisfies, selector_kind

logger = logging.getLogger(__name__)


def release_satisfies(release: Release, selector: str) -> bool:
    """发布是否满足某个版本选择器"""
    kind = selector_kind(selector)
    if kind == SelectorKind.LATEST:
        return True
    if kind == SelectorKind.HASH:
        return normalize_hash(selector) == release.hash
    return satisfies(release.version, selector)


class DependencyResolver:
    """依赖兼容性检查器"""

    def __init__(self, core_version: str) -> None:
        self.core_version = core_version

    def resolve(
        self, fetched: FetchResult, installed: dict[str, InstalledPackage],
    ) -> CompatibilityReport:
        report = CompatibilityReport(resolving=True)
        try:
            report.dnps = {
                name: VersionChange(
                    from_version=installed[name].version if name in installed else None,
                    to_version=release.req_version,
                )
                for name, release in fetched.releases.items()
            }
            error = self._check_core(fetched, report) or self._first_conflict(fetched, installed)
            report.error = error
            report.is_compatible = not error
        finally:
            report.resolving = False

        if report.is_compatible:
            logger.info("兼容性检查通过: %s (%d 个包)", fetched.root, len(fetched.releases))
        else:
            logger.warning("兼容性检查未通过: %s - %s", fetched.root, report.error)
        return report

    def _check_core(self, fetched: FetchResult, report: CompatibilityReport) -> str:
        for release in fetched.releases.values():
            minimum = release.manifest.minimum_core_version
            if minimum and is_newer(minimum, self.core_version):
                report.requires_core_update = True
                return (
                    f"{release.name}@{release.version} 需要核心版本 {minimum}，"
                    f"当前为 {self.core_version}"
                )
        return ""

    @staticmethod
    def _first_conflict(fetched: FetchResult, installed: dict[str, InstalledPackage]) -> str:
        releases = fetched.releases
        for edge in fetched.edges:
            dep = releases[edge.name]
            if not release_satisfies(dep, edge.selector):
                return (
                    f"{edge.parent} 需要 {edge.name}@{edge.selector}，"
                    f"但本次解析得到 {dep.name}@{dep.version}"
                )

        # 未参与本次变更的已安装包，对被变更包的依赖也必须继续满足
        for pkg in installed.values():
            if pkg.name in releases:
                continue
            for dep_name, selector in pkg.dependencies.items():
                dep = releases.get(dep_name)
                if dep is not None and not release_satisfies(dep, selector):
                    return (
                        f"已安装的 {pkg.name} 需要 {dep_name}@{selector}，"
                        f"但本次请求将其变更为 {dep.version}"
                    )
        return ""
