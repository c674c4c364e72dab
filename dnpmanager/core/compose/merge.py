"""compose 合并与用户设置提取

merge(template, previous):
  1. 以模板为基线（模板字段值 = 新的系统默认值）
  2. 读取上一版 compose 的默认值标签，当前值与默认值不同的字段视为用户修改，
     原样覆盖模板中的同键字段（env 名 / 容器端口+协议 / 容器路径）
  3. 上一版没有默认值标签时，其全部字段都按用户修改处理
  4. 上一版命名卷的定义（driver_opts 挂载点）保留
  5. 非保留命名空间的用户标签保留，默认值标签按模板重写

get_settings(compose, template):
  从合并结果提取管理界面展示的用户设置，空段省略。
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from dnpmanager.core.compose.editor import (
    LABEL_NAMESPACE,
    ComposeEditor,
    ServiceDefaults,
    ServiceEditor,
    write_defaults_to_labels,
)
from dnpmanager.core.compose.fields import PortMapping, VolumeMapping

logger = logging.getLogger(__name__)

# 命名卷挂载到自定义挂载点时的 device 路径: <mountpoint>/dnp-volumes/<包名>/<卷名>
MOUNTPOINT_DEVICE_DIR = "dnp-volumes"


def merge(template: ComposeEditor, previous: ComposeEditor | None = None) -> ComposeEditor:
    """合并模板与上一版 compose，返回新的 ComposeEditor（不修改入参）"""
    result = ComposeEditor(template.output())
    if previous is None:
        for svc in result.services().values():
            _stamp_defaults(svc, svc.current_as_defaults())
        return result

    prev_services = previous.services()
    for name, svc in result.services().items():
        template_defaults = svc.current_as_defaults()
        prev = _match_previous(name, prev_services, len(result.services()))
        if prev is not None:
            _merge_service(svc, prev)
        _stamp_defaults(svc, template_defaults)

    result.set_volumes(_merge_top_volumes(result, previous))
    return result


def _match_previous(
    name: str, prev_services: dict[str, ServiceEditor], template_count: int,
) -> ServiceEditor | None:
    if name in prev_services:
        return prev_services[name]
    # 单 service 包改名时按位置配对
    if template_count == 1 and len(prev_services) == 1:
        return next(iter(prev_services.values()))
    return None


def _merge_service(svc: ServiceEditor, prev: ServiceEditor) -> None:
    defaults = prev.defaults()
    if defaults is None:
        logger.info("service %s 无默认值标签，全部字段按用户修改保留", prev.name)
        defaults = ServiceDefaults()

    # environment
    env = svc.environment
    for k, v in prev.environment.items():
        if defaults.environment.get(k) != v:
            env[k] = v
    svc.set_environment(env)

    # ports
    default_ports = {p.to_compose() for p in defaults.port_keys.values()}
    ports: dict[str, PortMapping] = {p.key: p for p in svc.ports}
    for p in prev.ports:
        if p.to_compose() not in default_ports:
            ports[p.key] = p
    svc.set_ports(list(ports.values()))

    # volumes
    default_volumes = {v.to_compose() for v in defaults.volume_keys.values()}
    volumes: dict[str, VolumeMapping] = {v.key: v for v in svc.volumes}
    for v in prev.volumes:
        if v.to_compose() not in default_volumes:
            volumes[v.key] = v
    svc.set_volumes(list(volumes.values()))

    # labels
    labels = svc.labels
    for k, v in prev.labels.items():
        if not k.startswith(LABEL_NAMESPACE) and k not in labels:
            labels[k] = v
    svc.set_labels(labels)


def _stamp_defaults(svc: ServiceEditor, defaults: ServiceDefaults) -> None:
    svc.set_labels({**svc.labels, **write_defaults_to_labels(defaults)})


def _merge_top_volumes(result: ComposeEditor, previous: ComposeEditor) -> dict[str, Any]:
    volumes = copy.deepcopy(result.volumes)
    prev_volumes = previous.volumes
    for name, spec in list(volumes.items()):
        if isinstance(spec, dict) and spec.get("external"):
            continue
        if name in prev_volumes and prev_volumes[name]:
            volumes[name] = copy.deepcopy(prev_volumes[name])
    # 用户保留的命名卷若模板未声明，沿用上一版定义
    for svc in result.services().values():
        for v in svc.volumes:
            if v.is_named and v.source not in volumes and v.source in prev_volumes:
                volumes[v.source] = copy.deepcopy(prev_volumes[v.source]) or {}
    return volumes


# =========================================================================
# 用户设置
# =========================================================================


def named_volume_mountpoint(spec: Any) -> str:
    """命名卷的宿主机路径；内部卷返回空字符串"""
    if not isinstance(spec, dict):
        return ""
    opts = spec.get("driver_opts") or {}
    device = str(opts.get("device", "") or "")
    if not device or "bind" not in str(opts.get("o", "")):
        return ""
    marker = f"/{MOUNTPOINT_DEVICE_DIR}/"
    if marker in device:
        return device.split(marker, 1)[0]
    return device


def get_settings(
    compose: ComposeEditor, template: ComposeEditor | None = None,
) -> dict[str, Any]:
    """提取用户设置: environment / portMappings / namedVolumeMountpoints / legacyBindVolumes

    template 给出时，以模板声明的卷作为 "系统默认卷"；
    否则使用 compose 自身默认值标签（已安装包的快照）。
    """
    environment: dict[str, str] = {}
    port_mappings: dict[str, str] = {}
    named: dict[str, str] = {}
    legacy: dict[str, str] = {}

    template_services = template.services() if template is not None else {}
    top_volumes = compose.volumes

    for name, svc in compose.services().items():
        environment.update(svc.environment)
        for p in svc.ports:
            port_mappings[p.key] = p.host

        base = template_services.get(name)
        if base is None and len(template_services) == 1:
            base = next(iter(template_services.values()))
        if base is not None:
            declared = base.volumes
        else:
            defaults = svc.defaults()
            declared = list(defaults.volume_keys.values()) if defaults else svc.volumes
        declared_by_target = {v.target: v for v in declared}
        declared_strings = {v.to_compose() for v in declared}

        for v in declared:
            if v.is_named and not _is_external(top_volumes.get(v.source)):
                named[v.source] = named_volume_mountpoint(top_volumes.get(v.source))

        for v in svc.volumes:
            if not v.is_bind or v.to_compose() in declared_strings:
                continue
            owner = declared_by_target.get(v.target)
            key = owner.source if owner is not None and owner.is_named else v.target
            legacy[key] = v.source

    settings: dict[str, Any] = {}
    if environment:
        settings["environment"] = environment
    if port_mappings:
        settings["portMappings"] = port_mappings
    if named:
        settings["namedVolumeMountpoints"] = named
    if legacy:
        settings["legacyBindVolumes"] = legacy
    return settings


def _is_external(spec: Any) -> bool:
    return isinstance(spec, dict) and bool(spec.get("external"))
