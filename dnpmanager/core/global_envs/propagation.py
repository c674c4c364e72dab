"""全局环境变量传播引擎

作为 GlobalEnvStore 的观察者注册，每次 set 成功后在后台执行:
  1. 全量重写全局 env 文件（不做增量修补，上次中断的写入不会残留偏差）
  2. 扫描所有已安装包的 compose，找出声明了该变量的包
  3. 对每个匹配包: 加锁 -> 读 -> 替换值 -> 原子写 -> 重启容器 -> 解锁

隔离:
  - 三个步骤彼此隔离，单个包的重写 / 重启失败只记录，不影响其他包
  - 不同包并发处理，同一个包的处理由 PackageLocks 串行化
  - 失败只进入日志和 PropagationResult，从不抛给 set 的调用方，不自动重试
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from dnpmanager.core.compose.fields import format_env_value
from dnpmanager.core.exceptions import ExecutionError
from dnpmanager.utils.shell import CommandExecutor, get_executor
from dnpmanager.utils.yaml_io import atomic_write

if TYPE_CHECKING:
    from dnpmanager.core.compose.repository import ComposeRepository
    from dnpmanager.core.global_envs.store import GlobalEnvStore, GlobalEnvValue

logger = logging.getLogger(__name__)


# =========================================================================
# 容器运行时
# =========================================================================


class ContainerRuntime(Protocol):
    """容器运行时协议（外部协作者）"""

    def restart(self, name: str, compose_path: str) -> None:
        """按 compose 文件重建并重启包的容器"""
        ...


class DockerComposeRuntime:
    """通过 docker compose CLI 重启容器"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: float = 300) -> None:
        self._executor = executor
        self.timeout = timeout

    def restart(self, name: str, compose_path: str) -> None:
        executor = self._executor or get_executor()
        path = Path(compose_path)
        r = executor.execute(
            ["docker", "compose", "-f", str(path), "up", "-d", "--force-recreate"],
            cwd=str(path.parent), timeout=self.timeout,
        )
        if not r.success:
            raise ExecutionError(f"重启 {name} 失败 (rc={r.returncode}): {r.stderr[:500]}")
        logger.info("容器已重启: %s", name)


# =========================================================================
# 结果
# =========================================================================


@dataclass
class PropagationFailure:
    """传播中的一次失败（只记录，不抛出）"""

    step: str       # env_file | scan | rewrite | restart | package
    error: str
    package: str = ""


@dataclass
class PropagationResult:
    """一次传播的结果"""

    key: str
    value: GlobalEnvValue
    env_file_written: bool = False
    matched: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    restarted: list[str] = field(default_factory=list)
    failures: list[PropagationFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


def render_env_file(envs: dict[str, GlobalEnvValue]) -> str:
    """全量渲染 KEY=VALUE 文本，按键名排序"""
    return "".join(f"{k}={format_env_value(envs[k])}\n" for k in sorted(envs))


# =========================================================================
# 引擎
# =========================================================================


class EnvPropagationEngine:
    """全局环境变量传播引擎"""

    def __init__(
        self,
        store: GlobalEnvStore,
        compose_repo: ComposeRepository,
        runtime: ContainerRuntime,
        env_file: str | Path,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.compose_repo = compose_repo
        self.runtime = runtime
        self.env_file = Path(env_file)
        self._jobs = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="env-prop")
        self._packages = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="env-pkg")
        self._env_file_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending: list[Future[PropagationResult]] = []

    # ---- 观察者入口 ----

    def on_global_env_set(self, key: str, value: GlobalEnvValue) -> Future[PropagationResult]:
        """提交后台传播任务，立即返回 Future"""
        future = self._jobs.submit(self.propagate, key, value)
        with self._pending_lock:
            self._pending.append(future)
        return future

    def join(self, timeout: float | None = None) -> list[PropagationResult]:
        """等待已提交的传播全部结束，返回其结果（测试与优雅退出用）"""
        with self._pending_lock:
            pending, self._pending = self._pending, []
        done, not_done = wait(pending, timeout=timeout)
        if not_done:
            with self._pending_lock:
                self._pending.extend(not_done)
        return [f.result() for f in pending if f in done]

    def shutdown(self) -> None:
        self._jobs.shutdown(wait=True)
        self._packages.shutdown(wait=True)

    # ---- 传播 ----

    def propagate(self, key: str, value: GlobalEnvValue) -> PropagationResult:
        result = PropagationResult(key=key, value=value)

        # 1. 全量重写 env 文件
        try:
            self.write_env_file()
            result.env_file_written = True
        except Exception as e:
            logger.exception("全局 env 文件写入失败: %s", self.env_file)
            result.failures.append(PropagationFailure(step="env_file", error=str(e)))

        # 2. 扫描引用该变量的包
        try:
            result.matched = self.find_packages_using(key)
        except Exception as e:
            logger.exception("扫描已安装包失败")
            result.failures.append(PropagationFailure(step="scan", error=str(e)))

        # 3. 逐包重写 + 重启（跨包并发，同包串行）
        futures = {
            name: self._packages.submit(self._update_package, name, key, value, result)
            for name in result.matched
        }
        for name, future in futures.items():
            try:
                future.result()
            except Exception as e:
                logger.exception("包 %s 传播失败", name)
                result.failures.append(PropagationFailure(step="package", error=str(e), package=name))

        if result.success:
            logger.info("全局变量 %s 已传播到 %d 个包: %s", key, len(result.updated), result.updated)
        else:
            logger.error(
                "全局变量 %s 传播部分失败: 成功 %s, 失败 %s",
                key, result.restarted,
                [f"{f.package or '-'}:{f.step}" for f in result.failures],
            )
        return result

    def write_env_file(self) -> None:
        # 在锁内读取最新值，最后一次写入总是反映全部已持久化的变量
        with self._env_file_lock:
            atomic_write(self.env_file, render_env_file(self.store.all()))
        logger.info("全局 env 文件已重写: %s", self.env_file)

    def find_packages_using(self, key: str) -> list[str]:
        matched: list[str] = []
        for name in self.compose_repo.list_names():
            try:
                compose = self.compose_repo.read(name)
            except Exception:
                logger.exception("读取 compose 失败，跳过: %s", name)
                continue
            if compose is not None and compose.references_env(key):
                matched.append(name)
        return matched

    def _update_package(
        self, name: str, key: str, value: GlobalEnvValue, result: PropagationResult,
    ) -> None:
        with self.compose_repo.locks.hold(name):
            try:
                written = self.compose_repo.update(name, lambda c: c.apply_global_env(key, value))
            except Exception as e:
                logger.exception("compose 重写失败: %s (%s)", name, key)
                result.failures.append(PropagationFailure(step="rewrite", error=str(e), package=name))
                return
            if not written:
                logger.info("包 %s 已不再引用 %s，跳过", name, key)
                return
            result.updated.append(name)

            try:
                self.runtime.restart(name, str(self.compose_repo.compose_path(name)))
            except Exception as e:
                logger.exception("容器重启失败: %s", name)
                result.failures.append(PropagationFailure(step="restart", error=str(e), package=name))
                return
            result.restarted.append(name)
