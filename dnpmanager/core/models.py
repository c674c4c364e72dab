"""核心数据模型

发布解析、依赖检查、安装计划各层共用的数据类集中定义于此。
to_dict() 输出的键名与管理界面消费的 JSON 结构一致（camelCase）。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dnpmanager.core.versions import LATEST, SelectorKind, is_hash, normalize_hash, selector_kind

if TYPE_CHECKING:
    from dnpmanager.core.compose.editor import ComposeEditor


# =========================================================================
# 请求
# =========================================================================


@dataclass(frozen=True)
class PackageRequest:
    """包请求: {包名, 版本选择器}

    按哈希请求时包名可以为空，拉取清单后才知道真实包名。
    """

    name: str
    selector: str = LATEST

    @property
    def kind(self) -> SelectorKind:
        return selector_kind(self.selector)

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.selector)

    @classmethod
    def parse(cls, text: str) -> PackageRequest:
        """解析 "name@selector" / 裸哈希 / 裸包名（= latest）"""
        text = (text or "").strip()
        if not text:
            raise ValueError("请求不能为空")
        if is_hash(text):
            return cls(name="", selector=normalize_hash(text))
        name, sep, selector = text.partition("@")
        if not name:
            raise ValueError(f"请求缺少包名: {text}")
        selector = selector.strip() if sep else LATEST
        if is_hash(selector):
            selector = normalize_hash(selector)
        return cls(name=name.strip(), selector=selector or LATEST)

    def __str__(self) -> str:
        return f"{self.name}@{self.selector}" if self.name else self.selector


# =========================================================================
# 发布
# =========================================================================

# 清单中不属于展示元数据的字段
_NON_METADATA_KEYS = ("image", "avatar", "setupWizard", "disclaimer")


@dataclass
class Manifest:
    """包清单，按哈希拉取后不可变"""

    name: str
    version: str
    dependencies: dict[str, str] = field(default_factory=dict)
    image: dict[str, Any] | None = None
    avatar: str = ""
    setup_wizard: dict[str, Any] | None = None
    disclaimer: str = ""
    requirements: dict[str, str] = field(default_factory=dict)
    type: str = "service"
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        name = data.get("name")
        version = data.get("version")
        if not name or not version:
            raise ValueError("清单缺少 name 或 version")
        disclaimer = data.get("disclaimer") or ""
        if isinstance(disclaimer, dict):
            disclaimer = disclaimer.get("message", "")
        return cls(
            name=str(name),
            version=str(version),
            dependencies={str(k): str(v) for k, v in (data.get("dependencies") or {}).items()},
            image=data.get("image"),
            avatar=data.get("avatar") or "",
            setup_wizard=data.get("setupWizard"),
            disclaimer=disclaimer,
            requirements=dict(data.get("requirements") or {}),
            type=data.get("type") or "service",
            raw=dict(data),
        )

    @property
    def minimum_core_version(self) -> str:
        return str(self.requirements.get("minimumCoreVersion", ""))

    def to_metadata(self, disclaimer: str = "") -> dict[str, Any]:
        """展示用元数据：去掉镜像、头像、向导等，补全 type / disclaimer"""
        meta = {k: v for k, v in self.raw.items() if k not in _NON_METADATA_KEYS}
        meta["type"] = self.type
        message = disclaimer or self.disclaimer
        if message:
            meta["disclaimer"] = {"message": message}
        return meta


@dataclass
class Release:
    """一次解析得到的完整发布"""

    name: str
    version: str
    hash: str
    manifest: Manifest
    compose: ComposeEditor
    request: PackageRequest
    setup_wizard: dict[str, Any] | None = None
    disclaimer: str = ""
    avatar_hash: str = ""
    image_size: int = 0
    is_directory: bool = False

    @property
    def req_version(self) -> str:
        """请求所用的版本标识：哈希请求保留哈希，否则为解析出的版本号"""
        if self.request.kind == SelectorKind.HASH:
            return self.hash
        return self.version


@dataclass(frozen=True)
class DependencyEdge:
    """依赖图中的一条 "requires" 边"""

    parent: str
    name: str
    selector: str


@dataclass
class FetchResult:
    """递归拉取结果：根包 + 全部发布 + 依赖边"""

    root: str
    releases: dict[str, Release] = field(default_factory=dict)
    edges: list[DependencyEdge] = field(default_factory=list)

    @property
    def root_release(self) -> Release:
        return self.releases[self.root]


# =========================================================================
# 已安装状态
# =========================================================================


@dataclass
class InstalledPackage:
    """已安装的包（磁盘上存在 compose 文件）"""

    name: str
    version: str
    compose_path: str
    dependencies: dict[str, str] = field(default_factory=dict)
    origin: str = ""


# =========================================================================
# 报告
# =========================================================================


@dataclass
class VersionChange:
    """单个包的版本变化: from（已安装，可为空）-> to（请求）"""

    from_version: str | None
    to_version: str

    def to_dict(self) -> dict[str, str | None]:
        return {"from": self.from_version, "to": self.to_version}


@dataclass
class CompatibilityReport:
    """兼容性检查报告

    resolving 仅在图遍历未完成时为 True；检查结束（无论成功或冲突）即为 False。
    """

    requires_core_update: bool = False
    resolving: bool = True
    is_compatible: bool = False
    error: str = ""
    dnps: dict[str, VersionChange] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requiresCoreUpdate": self.requires_core_update,
            "resolving": self.resolving,
            "isCompatible": self.is_compatible,
            "error": self.error,
            "dnps": {k: v.to_dict() for k, v in self.dnps.items()},
        }


@dataclass
class AvailabilityReport:
    """资源余量检查结果"""

    is_available: bool = True
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"isAvailable": self.is_available, "message": self.message}


@dataclass
class SpecialPermission:
    """需要用户知情的特殊权限"""

    name: str
    details: str
    service_name: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "details": self.details, "serviceName": self.service_name}


@dataclass
class RequestedDnp:
    """安装计划: 管理界面据此展示并确认安装"""

    name: str
    req_version: str
    sem_version: str
    origin: str | None
    avatar_url: str
    metadata: dict[str, Any]
    special_permissions: dict[str, list[SpecialPermission]]
    setup_wizard: dict[str, dict[str, Any]]
    image_size: int
    is_updated: bool
    is_installed: bool
    settings: dict[str, dict[str, Any]]
    compatible: CompatibilityReport
    available: AvailabilityReport

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "reqVersion": self.req_version,
            "semVersion": self.sem_version,
            "origin": self.origin,
            "avatarUrl": self.avatar_url,
            "metadata": self.metadata,
            "specialPermissions": {
                k: [p.to_dict() for p in perms]
                for k, perms in self.special_permissions.items()
            },
            "setupWizard": self.setup_wizard,
            "imageSize": self.image_size,
            "isUpdated": self.is_updated,
            "isInstalled": self.is_installed,
            "settings": self.settings,
            "request": {
                "compatible": self.compatible.to_dict(),
                "available": self.available.to_dict(),
            },
        }
