"""统一异常体系

所有业务异常继承 DnpManagerError，携带 code。
Web 层据此映射 HTTP 状态码，CLI 层据此输出友好提示。

版本不兼容不是异常：它作为数据出现在 CompatibilityReport 中。
"""

from __future__ import annotations


class DnpManagerError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(DnpManagerError):
    """配置缺失或内容无效"""

    code = "CONFIG_ERROR"


class NotFoundError(DnpManagerError):
    """包名 / 内容哈希 / 版本无法解析"""

    code = "NOT_FOUND"


class FetchTimeoutError(DnpManagerError):
    """内容存储调用超时"""

    code = "FETCH_TIMEOUT"

    def __init__(self, message: str, timeout: float = 0.0) -> None:
        super().__init__(message)
        self.timeout = timeout


class ContentStoreError(DnpManagerError):
    """内容存储不可达或返回异常"""

    code = "CONTENT_STORE_ERROR"


class CyclicDependencyError(DnpManagerError):
    """依赖链中出现自引用"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(self, path: list[str]) -> None:
        super().__init__(f"循环依赖: {' -> '.join(path)}")
        self.path = path


class ComposeParseError(DnpManagerError):
    """compose 文件格式错误"""

    code = "COMPOSE_PARSE"


class ValidationError(DnpManagerError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ExecutionError(DnpManagerError):
    """外部命令（容器运行时等）执行失败"""

    code = "EXECUTION_ERROR"
