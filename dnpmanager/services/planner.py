"""安装计划服务

plan(request) 的流程:
  1. ReleaseFetcher 递归拉取请求包及全部依赖（等待全部返回）
  2. DependencyResolver 对完整结果做兼容性检查
  3. 逐包把发布模板与已安装 compose 合并，提取用户设置
  4. 特殊权限、头像地址、安装向导、资源余量

plan 只读：不写 compose、不拉镜像、不重启容器。
兼容性冲突只体现在报告里；结构性错误（找不到、循环、超时）直接抛出。
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from dnpmanager.core.compose.merge import get_settings, merge
from dnpmanager.core.exceptions import ValidationError
from dnpmanager.core.models import (
    FetchResult,
    PackageRequest,
    Release,
    RequestedDnp,
    SpecialPermission,
)
from dnpmanager.core.versions import SelectorKind
from dnpmanager.utils.net import join_url

if TYPE_CHECKING:
    from dnpmanager.core.compose.repository import ComposeRepository
    from dnpmanager.core.release.fetcher import ReleaseFetcher
    from dnpmanager.core.resolver import DependencyResolver
    from dnpmanager.core.resource import DiskHeadroom

logger = logging.getLogger(__name__)

PACKAGE_VOLUME_PERMISSION = "Access to package volume"


def _volume_prefix(name: str) -> str:
    # docker compose 生成卷名时去掉包名中的非字母数字字符
    return re.sub(r"[^a-z0-9]", "", name.lower())


class InstallPlanner:
    """安装计划生成器"""

    def __init__(
        self,
        fetcher: ReleaseFetcher,
        resolver: DependencyResolver,
        compose_repo: ComposeRepository,
        resources: DiskHeadroom,
        gateway_url: str,
    ) -> None:
        self.fetcher = fetcher
        self.resolver = resolver
        self.compose_repo = compose_repo
        self.resources = resources
        self.gateway_url = gateway_url

    def plan(self, request: PackageRequest | str) -> RequestedDnp:
        if isinstance(request, str):
            try:
                request = PackageRequest.parse(request)
            except ValueError as e:
                raise ValidationError(str(e)) from e

        logger.info("生成安装计划: %s", request)
        fetched = self.fetcher.resolve(request)
        installed = self.compose_repo.list_installed()
        compatible = self.resolver.resolve(fetched, installed)

        settings: dict[str, dict] = {}
        setup_wizard: dict[str, dict] = {}
        special_permissions: dict[str, list[SpecialPermission]] = {}
        for name, release in fetched.releases.items():
            previous = self.compose_repo.read(name) if name in installed else None
            merged = merge(release.compose, previous)
            settings[name] = get_settings(merged, release.compose)
            special_permissions[name] = self._special_permissions(release, fetched)
            if release.setup_wizard:
                setup_wizard[name] = release.setup_wizard

        root = fetched.root_release
        required = sum(
            r.image_size for n, r in fetched.releases.items()
            if n not in installed or installed[n].version != r.req_version
        )
        available = self.resources.check(required)

        current = installed.get(root.name)
        result = RequestedDnp(
            name=root.name,
            req_version=root.req_version,
            sem_version=root.version,
            origin=root.hash if request.kind == SelectorKind.HASH else None,
            avatar_url=join_url(self.gateway_url, f"ipfs/{root.avatar_hash}") if root.avatar_hash else "",
            metadata=root.manifest.to_metadata(root.disclaimer),
            special_permissions=special_permissions,
            setup_wizard=setup_wizard,
            image_size=root.image_size,
            is_updated=current is not None and current.version == root.req_version,
            is_installed=current is not None,
            settings=settings,
            compatible=compatible,
            available=available,
        )
        logger.info(
            "安装计划完成: %s@%s compatible=%s available=%s",
            root.name, root.version, compatible.is_compatible, available.is_available,
        )
        return result

    @staticmethod
    def _special_permissions(release: Release, fetched: FetchResult) -> list[SpecialPermission]:
        perms: list[SpecialPermission] = []
        prefixes = {_volume_prefix(n): n for n in fetched.releases if n != release.name}
        for service_name, volume in release.compose.external_volumes():
            owner = next((n for p, n in prefixes.items() if p and volume.startswith(p)), "")
            logger.info(
                "  %s 访问外部卷 %s (所属包: %s, service: %s)",
                release.name, volume, owner or "未知", service_name,
            )
            perms.append(SpecialPermission(
                name=PACKAGE_VOLUME_PERMISSION,
                details=f"Allows to read and write to the volume {volume}",
                service_name=service_name,
            ))
        return perms
