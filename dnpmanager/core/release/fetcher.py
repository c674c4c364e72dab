"""发布拉取器

职责:
- 请求定位（哈希直达 / 索引解析范围与 latest）
- 两种发布形态:
    清单发布: 单个 JSON 清单，image 字段描述镜像，compose 由其生成
    目录发布: 内容寻址目录，含清单、compose、可选安装向导、可选免责声明
- 依赖递归拉取（深度优先 + 当前路径检测循环，同层依赖并发预取）
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import yaml

from dnpmanager.core.compose.editor import ComposeEditor
from dnpmanager.core.exceptions import (
    CyclicDependencyError,
    NotFoundError,
    ValidationError,
)
from dnpmanager.core.models import (
    DependencyEdge,
    FetchResult,
    Manifest,
    PackageRequest,
    Release,
)
from dnpmanager.core.versions import SelectorKind, is_hash, normalize_hash
from dnpmanager.utils.yaml_io import parse_yaml

if TYPE_CHECKING:
    from dnpmanager.core.release.content_store import ContentEntry, ContentStore
    from dnpmanager.core.release.index import ReleaseIndex

logger = logging.getLogger(__name__)

# 目录发布中的文件识别规则
_MANIFEST_RE = re.compile(r"^(dnp_package|dappnode_package|manifest).*\.json$", re.IGNORECASE)
_COMPOSE_RE = re.compile(r"compose.*\.ya?ml$", re.IGNORECASE)
_SETUP_WIZARD_RE = re.compile(r"^setup-wizard\..*(json|ya?ml)$", re.IGNORECASE)
_DISCLAIMER_RE = re.compile(r"^disclaimer\.md$", re.IGNORECASE)
_AVATAR_RE = re.compile(r"^avatar.*\.png$", re.IGNORECASE)
_IMAGE_RE = re.compile(r"\.tar\.xz$", re.IGNORECASE)


def _find(entries: list[ContentEntry], pattern: re.Pattern[str]) -> ContentEntry | None:
    return next((e for e in entries if not e.is_dir and pattern.search(e.name)), None)


class ReleaseFetcher:
    """发布拉取器 - 单个发布解析 + 依赖递归"""

    def __init__(
        self,
        store: ContentStore,
        index: ReleaseIndex,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.index = index
        self.max_workers = max(1, max_workers)

    # ------------------------------------------------------------------
    # 单个发布
    # ------------------------------------------------------------------

    def get_release(self, request: PackageRequest) -> Release:
        """解析单个发布（不含依赖）"""
        if request.kind == SelectorKind.HASH:
            content_hash = normalize_hash(request.selector)
        else:
            _, content_hash = self.index.locate(request)

        entries = self.store.ls(content_hash)
        if entries:
            release = self._from_directory(content_hash, entries, request)
        else:
            release = self._from_manifest(content_hash, request)

        if request.name and release.name != request.name:
            raise ValidationError(
                f"发布 {content_hash} 的包名 '{release.name}' 与请求的 '{request.name}' 不一致"
            )
        release.compose.set_package_metadata(
            release.version, release.manifest.dependencies, origin=content_hash,
        )
        logger.info("发布已解析: %s -> %s@%s (%s)", request, release.name, release.version,
                    "目录发布" if release.is_directory else "清单发布")
        return release

    def _from_manifest(self, content_hash: str, request: PackageRequest) -> Release:
        manifest = self._parse_manifest(self.store.cat(content_hash), content_hash)
        if not manifest.image:
            raise ValidationError(f"清单发布缺少 image 描述: {content_hash}")
        return Release(
            name=manifest.name,
            version=manifest.version,
            hash=content_hash,
            manifest=manifest,
            compose=ComposeEditor.from_image(manifest.name, manifest.version, manifest.image),
            request=request,
            setup_wizard=manifest.setup_wizard,
            disclaimer=manifest.disclaimer,
            avatar_hash=_avatar_hash(manifest.avatar),
            image_size=int(manifest.image.get("size") or 0),
        )

    def _from_directory(
        self, content_hash: str, entries: list[ContentEntry], request: PackageRequest,
    ) -> Release:
        manifest_entry = _find(entries, _MANIFEST_RE)
        if manifest_entry is None:
            raise NotFoundError(f"目录发布中没有清单文件: {content_hash}")
        manifest = self._parse_manifest(self.store.cat(manifest_entry.hash), content_hash)

        compose_entry = _find(entries, _COMPOSE_RE)
        if compose_entry is not None:
            compose = ComposeEditor.parse(
                self.store.cat(compose_entry.hash), source=f"{content_hash}/{compose_entry.name}",
            )
        elif manifest.image:
            compose = ComposeEditor.from_image(manifest.name, manifest.version, manifest.image)
        else:
            raise NotFoundError(f"目录发布中没有 compose 文件: {content_hash}")

        setup_wizard = manifest.setup_wizard
        wizard_entry = _find(entries, _SETUP_WIZARD_RE)
        if wizard_entry is not None:
            setup_wizard = self._parse_document(wizard_entry, content_hash)

        disclaimer = manifest.disclaimer
        disclaimer_entry = _find(entries, _DISCLAIMER_RE)
        if disclaimer_entry is not None:
            disclaimer = self.store.cat(disclaimer_entry.hash).decode("utf-8")

        avatar_entry = _find(entries, _AVATAR_RE)
        image_entry = _find(entries, _IMAGE_RE)
        image_size = image_entry.size if image_entry else int((manifest.image or {}).get("size") or 0)

        return Release(
            name=manifest.name,
            version=manifest.version,
            hash=content_hash,
            manifest=manifest,
            compose=compose,
            request=request,
            setup_wizard=setup_wizard,
            disclaimer=disclaimer,
            avatar_hash=avatar_entry.hash if avatar_entry else _avatar_hash(manifest.avatar),
            image_size=image_size,
            is_directory=True,
        )

    @staticmethod
    def _parse_manifest(raw: bytes, content_hash: str) -> Manifest:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("清单顶层不是对象")
            return Manifest.from_dict(data)
        except ValueError as e:
            raise ValidationError(f"清单格式错误 {content_hash}: {e}") from e

    def _parse_document(self, entry: ContentEntry, content_hash: str) -> dict[str, Any]:
        try:
            data = parse_yaml(self.store.cat(entry.hash), source=f"{content_hash}/{entry.name}")
        except yaml.YAMLError as e:
            raise ValidationError(f"文件格式错误 {content_hash}/{entry.name}: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"文件顶层不是对象: {content_hash}/{entry.name}")
        return data

    # ------------------------------------------------------------------
    # 依赖递归
    # ------------------------------------------------------------------

    def resolve(self, request: PackageRequest) -> FetchResult:
        """拉取请求的包及其全部传递依赖

        - 同一包名在本次解析中只拉取一次，首次解析结果生效；
          后续不同的选择器只记录为依赖边，由兼容性检查判定
        - 依赖指回当前路径上的包时抛 CyclicDependencyError，不会重复拉取
        - 同一个包的直接依赖并发预取，全部返回后才向下递归
        """
        root = self.get_release(request)
        result = FetchResult(root=root.name, releases={root.name: root})
        done: set[str] = set()
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="fetch") as pool:
            self._visit(root, [root.name], result, done, pool)
        logger.info("依赖拉取完成: %s (%d 个包, %d 条依赖边)",
                    root.name, len(result.releases), len(result.edges))
        return result

    def _visit(
        self,
        release: Release,
        path: list[str],
        result: FetchResult,
        done: set[str],
        pool: ThreadPoolExecutor,
    ) -> None:
        deps = release.manifest.dependencies
        futures: dict[str, Future[Release]] = {}
        try:
            for name, selector in deps.items():
                if name in path:
                    raise CyclicDependencyError([*path, name])
                result.edges.append(DependencyEdge(release.name, name, selector))
                if name in result.releases:
                    continue
                dep_request = _dependency_request(name, selector)
                logger.info("  预取依赖: %s -> %s", release.name, dep_request)
                futures[name] = pool.submit(self.get_release, dep_request)
            for name, future in futures.items():
                result.releases[name] = future.result()
        except BaseException:
            for future in futures.values():
                future.cancel()
            raise

        for name in deps:
            if name not in done:
                self._visit(result.releases[name], [*path, name], result, done, pool)
        done.add(release.name)


def _dependency_request(name: str, selector: str) -> PackageRequest:
    selector = (selector or "").strip()
    if is_hash(selector):
        selector = normalize_hash(selector)
    return PackageRequest(name=name, selector=selector or "latest")


def _avatar_hash(avatar: str) -> str:
    if avatar and is_hash(avatar):
        return normalize_hash(avatar)
    return ""
