"""compose 文件内存模型

ComposeEditor 包装一份 docker-compose 文档（dict），提供:
  - 解析 / 读取（格式错误抛 ComposeParseError）
  - 原子写入（临时文件 + os.replace）
  - 由清单镜像描述生成模板
  - 默认值追踪标签读写
  - 全局环境变量替换

默认值追踪标签（保留命名空间 dnp.default.*）记录每个字段由系统赋予的值，
JSON 列表形式存放在 service labels 中。当前值与默认值不同即视为用户修改。
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from dnpmanager.core.compose.fields import (
    PortMapping,
    VolumeMapping,
    environment_to_list,
    format_env_value,
    parse_environment,
    parse_port,
    parse_volume,
)
from dnpmanager.core.exceptions import ComposeParseError
from dnpmanager.utils.yaml_io import atomic_write, dump_yaml, parse_yaml

logger = logging.getLogger(__name__)

COMPOSE_FILE_NAME = "docker-compose.yml"
COMPOSE_VERSION = "3.5"

LABEL_NAMESPACE = "dnp."
DEFAULT_ENVIRONMENT_LABEL = "dnp.default.environment"
DEFAULT_PORTS_LABEL = "dnp.default.ports"
DEFAULT_VOLUMES_LABEL = "dnp.default.volumes"
VERSION_LABEL = "dnp.version"
DEPENDENCIES_LABEL = "dnp.dependencies"
ORIGIN_LABEL = "dnp.origin"


def get_container_name(name: str) -> str:
    return f"DNP_{name}"


def get_image(name: str, version: str) -> str:
    return f"{name}:{version}"


# =========================================================================
# 默认值追踪标签
# =========================================================================


@dataclass
class ServiceDefaults:
    """某个 service 由系统赋予的字段值"""

    environment: dict[str, str] = field(default_factory=dict)
    ports: list[str] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)

    @property
    def port_keys(self) -> dict[str, PortMapping]:
        return {p.key: p for p in map(parse_port, self.ports)}

    @property
    def volume_keys(self) -> dict[str, VolumeMapping]:
        return {v.key: v for v in map(parse_volume, self.volumes)}


def write_defaults_to_labels(defaults: ServiceDefaults) -> dict[str, str]:
    return {
        DEFAULT_ENVIRONMENT_LABEL: json.dumps(environment_to_list(defaults.environment)),
        DEFAULT_PORTS_LABEL: json.dumps(defaults.ports),
        DEFAULT_VOLUMES_LABEL: json.dumps(defaults.volumes),
    }


def read_defaults_from_labels(labels: dict[str, str]) -> ServiceDefaults | None:
    """读取默认值标签；标签缺失（旧版 compose）返回 None"""
    if DEFAULT_ENVIRONMENT_LABEL not in labels and DEFAULT_VOLUMES_LABEL not in labels \
            and DEFAULT_PORTS_LABEL not in labels:
        return None

    def _load(key: str) -> list[str]:
        raw = labels.get(key)
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ComposeParseError(f"标签 {key} 不是合法 JSON: {e}") from e
        if not isinstance(value, list):
            raise ComposeParseError(f"标签 {key} 应为 JSON 列表")
        return [str(v) for v in value]

    return ServiceDefaults(
        environment=parse_environment(_load(DEFAULT_ENVIRONMENT_LABEL)),
        ports=_load(DEFAULT_PORTS_LABEL),
        volumes=_load(DEFAULT_VOLUMES_LABEL),
    )


# =========================================================================
# service
# =========================================================================


class ServiceEditor:
    """单个 service 的字段访问（直接修改底层 dict）"""

    def __init__(self, name: str, data: dict[str, Any]) -> None:
        self.name = name
        self.data = data

    @property
    def environment(self) -> dict[str, str]:
        return parse_environment(self.data.get("environment"))

    def set_environment(self, env: dict[str, str]) -> None:
        self._set_or_drop("environment", dict(env))

    @property
    def ports(self) -> list[PortMapping]:
        return [parse_port(p) for p in self.data.get("ports") or []]

    def set_ports(self, ports: list[PortMapping]) -> None:
        self._set_or_drop("ports", [p.to_compose() for p in ports])

    @property
    def volumes(self) -> list[VolumeMapping]:
        return [parse_volume(v) for v in self.data.get("volumes") or []]

    def set_volumes(self, volumes: list[VolumeMapping]) -> None:
        self._set_or_drop("volumes", [v.to_compose() for v in volumes])

    @property
    def labels(self) -> dict[str, str]:
        labels = self.data.get("labels") or {}
        if isinstance(labels, list):
            labels = dict(str(item).partition("=")[::2] for item in labels)
        return {str(k): str(v) for k, v in labels.items()}

    def set_labels(self, labels: dict[str, str]) -> None:
        self._set_or_drop("labels", dict(labels))

    def defaults(self) -> ServiceDefaults | None:
        return read_defaults_from_labels(self.labels)

    def current_as_defaults(self) -> ServiceDefaults:
        """把当前字段值整体视为系统默认值（用于模板）"""
        return ServiceDefaults(
            environment=self.environment,
            ports=[p.to_compose() for p in self.ports],
            volumes=[v.to_compose() for v in self.volumes],
        )

    def _set_or_drop(self, key: str, value: Any) -> None:
        if value:
            self.data[key] = value
        else:
            self.data.pop(key, None)


# service 字段允许的类型；None 表示字段缺省
_SERVICE_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "environment": (dict, list),
    "labels": (dict, list),
    "ports": (list,),
    "volumes": (list,),
}
_ITEM_TYPES: dict[str, tuple[type, ...]] = {
    "ports": (str, int, dict),
    "volumes": (str, dict),
}


def _check_shape(data: dict[str, Any]) -> None:
    """结构校验：YAML 合法但字段类型不对同样视为 compose 损坏"""
    services = data.get("services")
    if not isinstance(services, dict):
        raise ComposeParseError("compose 缺少 services 字典")
    if not isinstance(data.get("volumes") or {}, dict):
        raise ComposeParseError("compose 顶层 volumes 应为字典")
    for name, svc in services.items():
        if not isinstance(svc, dict):
            raise ComposeParseError(f"service {name} 应为字典，实际为 {type(svc).__name__}")
        for key, allowed in _SERVICE_FIELD_TYPES.items():
            value = svc.get(key)
            if value is None:
                continue
            if not isinstance(value, allowed):
                raise ComposeParseError(
                    f"service {name} 的 {key} 类型错误: {type(value).__name__}"
                )
            items = _ITEM_TYPES.get(key)
            if items and not all(isinstance(item, items) for item in value):
                raise ComposeParseError(f"service {name} 的 {key} 含非法条目")


# =========================================================================
# compose
# =========================================================================


class ComposeEditor:
    """docker-compose 文档编辑器"""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = data if data is not None else {
            "version": COMPOSE_VERSION, "services": {},
        }
        _check_shape(self.data)

    # ---- 构造 ----

    @classmethod
    def parse(cls, text: str | bytes, *, source: str = "<compose>") -> ComposeEditor:
        try:
            data = parse_yaml(text, source=source)
        except yaml.YAMLError as e:
            raise ComposeParseError(f"compose 解析失败 {source}: {e}") from e
        if not isinstance(data, dict):
            raise ComposeParseError(f"compose 顶层不是字典: {source}")
        return cls(data)

    @classmethod
    def read(cls, path: str | Path) -> ComposeEditor:
        p = Path(path)
        try:
            text = p.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ComposeParseError(f"compose 编码错误 {p}: {e}") from e
        return cls.parse(text, source=str(p))

    @classmethod
    def from_image(cls, name: str, version: str, image: dict[str, Any]) -> ComposeEditor:
        """由清单中的镜像描述生成 compose 模板"""
        env = parse_environment(image.get("environment"))
        volumes = [str(v) for v in image.get("volumes") or []]
        external = [str(v) for v in image.get("external_vol") or []]
        ports = [str(p) for p in image.get("ports") or []]

        service: dict[str, Any] = {
            "container_name": get_container_name(name),
            "image": get_image(name, version),
        }
        if env:
            service["environment"] = env
        if volumes or external:
            service["volumes"] = volumes + external
        if ports:
            service["ports"] = ports
        if image.get("restart"):
            service["restart"] = image["restart"]

        top_volumes: dict[str, Any] = {}
        for v in map(parse_volume, volumes):
            if v.is_named:
                top_volumes[v.source] = {}
        for v in map(parse_volume, external):
            if v.source:
                top_volumes[v.source] = {"external": True}

        data: dict[str, Any] = {"version": COMPOSE_VERSION, "services": {name: service}}
        if top_volumes:
            data["volumes"] = top_volumes
        return cls(data)

    # ---- 输出 ----

    def output(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)

    def dump(self) -> str:
        return dump_yaml(self.data)

    def write(self, path: str | Path) -> None:
        """原子写入：失败时磁盘上要么是旧文件，要么是完整的新文件"""
        atomic_write(Path(path), self.dump())
        logger.debug("compose 已写入: %s", path)

    # ---- 访问 ----

    def services(self) -> dict[str, ServiceEditor]:
        return {name: ServiceEditor(name, svc) for name, svc in self.data["services"].items()}

    def first_service(self) -> ServiceEditor | None:
        return next(iter(self.services().values()), None)

    @property
    def volumes(self) -> dict[str, Any]:
        return self.data.get("volumes") or {}

    def set_volumes(self, volumes: dict[str, Any]) -> None:
        if volumes:
            self.data["volumes"] = volumes
        else:
            self.data.pop("volumes", None)

    def external_volumes(self) -> list[tuple[str, str]]:
        """(service 名, 外部卷名) 列表"""
        external = {
            name for name, spec in self.volumes.items()
            if isinstance(spec, dict) and spec.get("external")
        }
        return [
            (svc.name, v.source)
            for svc in self.services().values()
            for v in svc.volumes
            if v.source in external
        ]

    # ---- 包元数据标签 ----

    def set_package_metadata(
        self, version: str, dependencies: dict[str, str] | None = None, origin: str = "",
    ) -> None:
        for svc in self.services().values():
            labels = svc.labels
            labels[VERSION_LABEL] = version
            if dependencies:
                labels[DEPENDENCIES_LABEL] = json.dumps(dependencies, sort_keys=True)
            else:
                labels.pop(DEPENDENCIES_LABEL, None)
            if origin:
                labels[ORIGIN_LABEL] = origin
            else:
                labels.pop(ORIGIN_LABEL, None)
            svc.set_labels(labels)

    def package_version(self) -> str:
        svc = self.first_service()
        if svc is None:
            return ""
        version = svc.labels.get(VERSION_LABEL, "")
        if not version:
            image = str(svc.data.get("image", ""))
            _, sep, tag = image.rpartition(":")
            version = tag if sep and "/" not in tag else ""
        return version

    def package_dependencies(self) -> dict[str, str]:
        svc = self.first_service()
        raw = svc.labels.get(DEPENDENCIES_LABEL, "") if svc else ""
        if not raw:
            return {}
        try:
            return {str(k): str(v) for k, v in json.loads(raw).items()}
        except (ValueError, AttributeError) as e:
            raise ComposeParseError(f"标签 {DEPENDENCIES_LABEL} 不合法: {e}") from e

    def package_origin(self) -> str:
        svc = self.first_service()
        return svc.labels.get(ORIGIN_LABEL, "") if svc else ""

    # ---- 全局环境变量 ----

    def references_env(self, key: str) -> bool:
        return any(key in svc.environment for svc in self.services().values())

    def apply_global_env(self, key: str, value: Any) -> bool:
        """把 key 的新值写入所有声明了它的 service

        若旧值就是系统默认值，默认值标签同步更新，使其仍被视为系统默认。
        返回是否有 service 引用该变量。
        """
        new_value = format_env_value(value)
        referenced = False
        for svc in self.services().values():
            env = svc.environment
            if key not in env:
                continue
            referenced = True
            defaults = svc.defaults()
            if defaults is not None and defaults.environment.get(key) == env[key]:
                defaults.environment[key] = new_value
                svc.set_labels({**svc.labels, **write_defaults_to_labels(defaults)})
            env[key] = new_value
            svc.set_environment(env)
        return referenced
