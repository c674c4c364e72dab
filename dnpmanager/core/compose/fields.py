"""compose 字段解析 — environment / ports / volumes

同时支持短语法（"K=V"、"8080:80/udp"、"data:/data:ro"）与长语法（字典）。
合并时以 "键" 定位同一字段:
  - environment: 变量名
  - ports:       "<容器端口>/<协议>"
  - volumes:     容器内路径
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


def format_env_value(value: Any) -> str:
    """环境变量值统一为字符串，布尔值写作 true/false"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def parse_environment(env: Any) -> dict[str, str]:
    """list ["K=V"] 或 dict 统一为 dict[str, str]"""
    if not env:
        return {}
    if isinstance(env, dict):
        return {str(k): format_env_value(v) for k, v in env.items()}
    result: dict[str, str] = {}
    for item in env:
        k, _, v = str(item).partition("=")
        result[k.strip()] = v
    return result


def environment_to_list(env: dict[str, str]) -> list[str]:
    return [f"{k}={v}" for k, v in env.items()]


# =========================================================================
# ports
# =========================================================================


@dataclass(frozen=True)
class PortMapping:
    container: str
    host: str = ""
    protocol: str = "TCP"
    host_ip: str = ""

    @property
    def key(self) -> str:
        return f"{self.container}/{self.protocol}"

    def to_compose(self) -> str:
        suffix = "" if self.protocol == "TCP" else f"/{self.protocol.lower()}"
        if not self.host:
            return f"{self.container}{suffix}"
        prefix = f"{self.host_ip}:" if self.host_ip else ""
        return f"{prefix}{self.host}:{self.container}{suffix}"


def parse_port(raw: Any) -> PortMapping:
    if isinstance(raw, dict):
        return PortMapping(
            container=str(raw.get("target", "")),
            host=str(raw.get("published", "") or ""),
            protocol=str(raw.get("protocol", "tcp")).upper(),
            host_ip=str(raw.get("host_ip", "") or ""),
        )
    text, _, proto = str(raw).partition("/")
    parts = text.split(":")
    protocol = (proto or "tcp").upper()
    if len(parts) == 1:
        return PortMapping(container=parts[0], protocol=protocol)
    if len(parts) == 2:
        return PortMapping(container=parts[1], host=parts[0], protocol=protocol)
    return PortMapping(
        container=parts[-1], host=parts[-2], protocol=protocol,
        host_ip=":".join(parts[:-2]),
    )


# =========================================================================
# volumes
# =========================================================================


@dataclass(frozen=True)
class VolumeMapping:
    target: str
    source: str = ""
    mode: str = ""

    @property
    def key(self) -> str:
        return self.target

    @property
    def is_bind(self) -> bool:
        """源为宿主机路径"""
        return self.source.startswith(("/", "./", "../", "~"))

    @property
    def is_named(self) -> bool:
        return bool(self.source) and not self.is_bind

    def to_compose(self) -> str:
        if not self.source:
            return self.target
        suffix = f":{self.mode}" if self.mode else ""
        return f"{self.source}:{self.target}{suffix}"


def parse_volume(raw: Any) -> VolumeMapping:
    if isinstance(raw, dict):
        return VolumeMapping(
            target=str(raw.get("target", "")),
            source=str(raw.get("source", "") or ""),
            mode="ro" if raw.get("read_only") else "",
        )
    parts = str(raw).split(":")
    if len(parts) == 1:
        return VolumeMapping(target=parts[0])
    if len(parts) == 2:
        return VolumeMapping(source=parts[0], target=parts[1])
    return VolumeMapping(source=parts[0], target=parts[1], mode=":".join(parts[2:]))
