"""全局环境变量

- store.py:       带前缀校验的持久化存储 + 写后观察者
- propagation.py: 写入后的 env 文件重写、compose 替换与容器重启
"""

from dnpmanager.core.global_envs.propagation import (
    ContainerRuntime,
    DockerComposeRuntime,
    EnvPropagationEngine,
    PropagationFailure,
    PropagationResult,
    render_env_file,
)
from dnpmanager.core.global_envs.store import GLOBAL_ENV_SCHEMA, GlobalEnvStore, normalize_key

__all__ = [
    "ContainerRuntime",
    "DockerComposeRuntime",
    "EnvPropagationEngine",
    "GLOBAL_ENV_SCHEMA",
    "GlobalEnvStore",
    "PropagationFailure",
    "PropagationResult",
    "normalize_key",
    "render_env_file",
]
