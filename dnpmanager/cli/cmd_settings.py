"""CLI — 运行设置（自动更新 / 内容存储超时）"""

from __future__ import annotations

import click

from dnpmanager.cli import _errors, _svc


def register(group: click.Group) -> None:
    group.add_command(settings_group)


@click.group(name="settings")
def settings_group() -> None:
    """运行设置"""


@settings_group.command(name="auto-update")
@click.argument("id")
@click.option("--enable/--disable", default=True, help="开启或关闭")
def auto_update(id: str, enable: bool) -> None:  # noqa: A002
    """修改自动更新开关，ID 为 my-packages / system-packages / 包名"""
    with _errors():
        _svc().auto_update.edit(id, enable)
    click.echo(f"自动更新已{'开启' if enable else '关闭'}: {id}")


@settings_group.command(name="fetch-timeout")
@click.argument("seconds", type=float, required=False)
def fetch_timeout(seconds: float | None) -> None:
    """查询或修改内容存储超时（秒）"""
    cfg = _svc().config
    if seconds is not None:
        with _errors():
            cfg.set_fetch_timeout(seconds)
    click.echo(f"fetch_timeout={cfg.fetch_timeout}")
