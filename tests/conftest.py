"""测试公共夹具 — 内存内容存储、假容器运行时、发布构造辅助"""

from __future__ import annotations

import hashlib
import json
import threading
from pathlib import Path
from typing import Any

import pytest
import yaml

import dnpmanager.core.config as cfgmod
from dnpmanager.core.exceptions import ExecutionError, NotFoundError
from dnpmanager.core.release.content_store import ContentEntry
from dnpmanager.services.container import reset_container

_B58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def make_hash(seed: str) -> str:
    """按种子生成确定的 CIDv0 形式哈希"""
    digest = hashlib.sha512(seed.encode("utf-8")).digest()
    return "Qm" + "".join(_B58[b % 58] for b in digest[:44])


class FakeContentStore:
    """内存内容存储"""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: dict[str, list[ContentEntry]] = {}
        self.cat_calls: list[str] = []
        self._lock = threading.Lock()

    def add_file(self, content: bytes | str) -> str:
        data = content.encode("utf-8") if isinstance(content, str) else content
        h = make_hash("file:" + hashlib.sha256(data).hexdigest())
        self.files[h] = data
        return h

    def add_json(self, data: dict[str, Any]) -> str:
        return self.add_file(json.dumps(data, sort_keys=True))

    def add_dir(self, files: dict[str, bytes | str], sizes: dict[str, int] | None = None) -> str:
        entries = []
        for name, content in files.items():
            h = self.add_file(content)
            size = (sizes or {}).get(name, len(self.files[h]))
            entries.append(ContentEntry(name=name, hash=h, size=size))
        h = make_hash("dir:" + json.dumps(sorted((e.name, e.hash) for e in entries)))
        self.dirs[h] = entries
        return h

    def cat(self, content_hash: str) -> bytes:
        with self._lock:
            self.cat_calls.append(content_hash)
        if content_hash not in self.files:
            raise NotFoundError(f"内容不存在: {content_hash}")
        return self.files[content_hash]

    def ls(self, content_hash: str) -> list[ContentEntry]:
        if content_hash in self.dirs:
            return list(self.dirs[content_hash])
        if content_hash in self.files:
            return []
        raise NotFoundError(f"内容不存在: {content_hash}")


class FakeRuntime:
    """记录重启调用的容器运行时"""

    def __init__(self, fail: set[str] | None = None) -> None:
        self.fail = fail or set()
        self.restarted: list[str] = []
        self._lock = threading.Lock()

    def restart(self, name: str, compose_path: str) -> None:
        if name in self.fail:
            raise ExecutionError(f"重启失败: {name}")
        with self._lock:
            self.restarted.append(name)


def make_manifest(
    name: str, version: str, dependencies: dict[str, str] | None = None, **image: Any,
) -> dict[str, Any]:
    """清单发布: image 描述直接生成 compose"""
    data: dict[str, Any] = {
        "name": name,
        "version": version,
        "image": {"hash": "", "size": image.pop("size", 100), **image},
    }
    if dependencies:
        data["dependencies"] = dependencies
    return data


def write_index(path: Path, packages: dict[str, dict[str, str]]) -> Path:
    data = {"packages": {n: {"versions": v} for n, v in packages.items()}}
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture
def store() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> cfgmod.Config:
    """隔离到 tmp_path 的配置，同时设为全局配置"""
    cfg = cfgmod.Config(
        repo_dir=str(tmp_path / "dnp_repo"),
        data_dir=str(tmp_path),
        db_file=str(tmp_path / "db.yml"),
        global_env_file=str(tmp_path / "dnp_repo" / "dnp.global.env"),
        release_index=str(tmp_path / "release_index.yml"),
        auto_update_file=str(tmp_path / "auto_update.yml"),
        min_free_bytes=0,
    )
    monkeypatch.setattr(cfgmod, "_current", cfg)
    reset_container()
    yield cfg
    reset_container()


@pytest.fixture
def manifest():
    """清单构造函数: manifest(name, version, deps, **image)"""
    return make_manifest


@pytest.fixture
def index_file(config: cfgmod.Config):
    """写发布索引到配置路径: index_file({name: {version: hash}})"""
    def _write(packages: dict[str, dict[str, str]]) -> Path:
        return write_index(Path(config.release_index), packages)
    return _write
