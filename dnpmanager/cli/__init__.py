"""dnpmanager 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click

from dnpmanager import __version__
from dnpmanager.core.exceptions import DnpManagerError
from dnpmanager.services.container import get_container
from dnpmanager.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


@contextmanager
def _errors() -> Iterator[None]:
    """业务异常转为 click 错误输出（退出码 1）"""
    try:
        yield
    except DnpManagerError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default="", help="配置文件路径（YAML）")
def main(config_path: str) -> None:
    """dnpmanager - DAppNode 包管理"""
    setup_logging(
        level=os.getenv("DNPMANAGER_LOG_LEVEL", "INFO"),
        json_output=os.getenv("DNPMANAGER_LOG_JSON", "") == "1",
    )
    if config_path:
        from dnpmanager.core.config import init_config
        from dnpmanager.services.container import reset_container
        with _errors():
            init_config(config_path)
        reset_container()


# 注册各领域子命令
from dnpmanager.cli.cmd_env import register as _reg_env  # noqa: E402
from dnpmanager.cli.cmd_misc import register as _reg_misc  # noqa: E402
from dnpmanager.cli.cmd_plan import register as _reg_plan  # noqa: E402
from dnpmanager.cli.cmd_settings import register as _reg_settings  # noqa: E402

_reg_plan(main)
_reg_env(main)
_reg_settings(main)
_reg_misc(main)
