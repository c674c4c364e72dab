"""服务容器 — 统一依赖注入

所有服务和核心组件通过容器获取，同一容器内的实例共享状态（包锁、数据库等）。
CLI 和 Web 层均应通过 get_container() 获取服务，而非直接 import 构造。

依赖关系图（→ 表示依赖）:
  planner     → fetcher, resolver, compose_repo, resources
  fetcher     → content_store, index
  global_envs → db, propagation
  propagation → global_envs, compose_repo, runtime
  compose_repo → locks

Config 注入:
  容器接受可选 Config 参数；不提供时使用全局 get_config()。
  content_store 每次调用都读取 config.fetch_timeout，运行期修改立即生效。

用法:
    container = ServiceContainer()
    plan = container.planner.plan("main.dnp.dappnode.eth@^0.1.0")
    container.global_envs.set("DOMAIN", "example.com")
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dnpmanager.core.compose.repository import ComposeRepository, PackageLocks
    from dnpmanager.core.config import Config
    from dnpmanager.core.db import KeyValueDb
    from dnpmanager.core.global_envs.propagation import ContainerRuntime, EnvPropagationEngine
    from dnpmanager.core.global_envs.store import GlobalEnvStore
    from dnpmanager.core.release.content_store import ContentStore
    from dnpmanager.core.release.fetcher import ReleaseFetcher
    from dnpmanager.core.release.index import ReleaseIndex
    from dnpmanager.core.resolver import DependencyResolver
    from dnpmanager.core.resource import DiskHeadroom
    from dnpmanager.services.auto_update import AutoUpdateSettings
    from dnpmanager.services.planner import InstallPlanner

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器，每个实例持有一组共享的服务和核心组件

    content_store / runtime 可在构造时替换（测试注入假实现）。
    """

    def __init__(
        self,
        config: Config | None = None,
        content_store: ContentStore | None = None,
        runtime: ContainerRuntime | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        self._lock = threading.RLock()
        if config is None:
            from dnpmanager.core.config import get_config
            config = get_config()
        self._config = config
        if content_store is not None:
            self._instances["content_store"] = content_store
        if runtime is not None:
            self._instances["runtime"] = runtime

    @property
    def config(self) -> Config:
        return self._config

    # ---- 存储 ----

    @property
    def db(self) -> KeyValueDb:
        with self._lock:
            if "db" not in self._instances:
                from dnpmanager.core.db import KeyValueDb
                self._instances["db"] = KeyValueDb(self._config.db_file)
            return self._instances["db"]  # type: ignore[return-value]

    @property
    def locks(self) -> PackageLocks:
        with self._lock:
            if "locks" not in self._instances:
                from dnpmanager.core.compose.repository import PackageLocks
                self._instances["locks"] = PackageLocks()
            return self._instances["locks"]  # type: ignore[return-value]

    @property
    def compose_repo(self) -> ComposeRepository:
        with self._lock:
            if "compose_repo" not in self._instances:
                from dnpmanager.core.compose.repository import ComposeRepository
                self._instances["compose_repo"] = ComposeRepository(
                    repo_dir=self._config.repo_dir, locks=self.locks,
                )
            return self._instances["compose_repo"]  # type: ignore[return-value]

    # ---- 发布解析 ----

    @property
    def content_store(self) -> ContentStore:
        with self._lock:
            if "content_store" not in self._instances:
                from dnpmanager.core.release.content_store import IpfsHttpStore
                self._instances["content_store"] = IpfsHttpStore(self._config)
            return self._instances["content_store"]  # type: ignore[return-value]

    @property
    def index(self) -> ReleaseIndex:
        with self._lock:
            if "index" not in self._instances:
                from dnpmanager.core.release.index import ReleaseIndex
                self._instances["index"] = ReleaseIndex(self._config.release_index)
            return self._instances["index"]  # type: ignore[return-value]

    @property
    def fetcher(self) -> ReleaseFetcher:
        with self._lock:
            if "fetcher" not in self._instances:
                from dnpmanager.core.release.fetcher import ReleaseFetcher
                self._instances["fetcher"] = ReleaseFetcher(
                    store=self.content_store, index=self.index,
                    max_workers=self._config.max_workers,
                )
            return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def resolver(self) -> DependencyResolver:
        with self._lock:
            if "resolver" not in self._instances:
                from dnpmanager.core.resolver import DependencyResolver
                self._instances["resolver"] = DependencyResolver(self._config.core_version)
            return self._instances["resolver"]  # type: ignore[return-value]

    @property
    def resources(self) -> DiskHeadroom:
        with self._lock:
            if "resources" not in self._instances:
                from dnpmanager.core.resource import DiskHeadroom
                self._instances["resources"] = DiskHeadroom(
                    self._config.data_dir, min_free_bytes=self._config.min_free_bytes,
                )
            return self._instances["resources"]  # type: ignore[return-value]

    @property
    def planner(self) -> InstallPlanner:
        with self._lock:
            if "planner" not in self._instances:
                from dnpmanager.services.planner import InstallPlanner
                self._instances["planner"] = InstallPlanner(
                    fetcher=self.fetcher, resolver=self.resolver,
                    compose_repo=self.compose_repo, resources=self.resources,
                    gateway_url=self._config.ipfs_gateway_url,
                )
            return self._instances["planner"]  # type: ignore[return-value]

    # ---- 全局环境变量 ----

    @property
    def runtime(self) -> ContainerRuntime:
        with self._lock:
            if "runtime" not in self._instances:
                from dnpmanager.core.global_envs.propagation import DockerComposeRuntime
                self._instances["runtime"] = DockerComposeRuntime()
            return self._instances["runtime"]  # type: ignore[return-value]

    @property
    def global_envs(self) -> GlobalEnvStore:
        with self._lock:
            if "global_envs" not in self._instances:
                from dnpmanager.core.global_envs.propagation import EnvPropagationEngine
                from dnpmanager.core.global_envs.store import GlobalEnvStore
                store = GlobalEnvStore(self.db)
                engine = EnvPropagationEngine(
                    store=store, compose_repo=self.compose_repo, runtime=self.runtime,
                    env_file=self._config.global_env_file,
                    max_workers=self._config.max_workers,
                )
                store.add_observer(engine)
                self._instances["global_envs"] = store
                self._instances["propagation"] = engine
            return self._instances["global_envs"]  # type: ignore[return-value]

    @property
    def propagation(self) -> EnvPropagationEngine:
        with self._lock:
            if "propagation" not in self._instances:
                _ = self.global_envs
            return self._instances["propagation"]  # type: ignore[return-value]

    # ---- 设置 ----

    @property
    def auto_update(self) -> AutoUpdateSettings:
        with self._lock:
            if "auto_update" not in self._instances:
                from dnpmanager.services.auto_update import AutoUpdateSettings
                self._instances["auto_update"] = AutoUpdateSettings(self._config.auto_update_file)
            return self._instances["auto_update"]  # type: ignore[return-value]

    def close(self) -> None:
        """等待后台传播结束并释放线程池"""
        engine = self._instances.get("propagation")
        if engine is not None:
            engine.shutdown()  # type: ignore[attr-defined]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def set_container(container: ServiceContainer | None) -> None:
    """替换全局容器（测试注入用）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = container


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    set_container(None)
