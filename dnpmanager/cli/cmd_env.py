"""CLI — 全局环境变量"""

from __future__ import annotations

import click

from dnpmanager.cli import _errors, _svc
from dnpmanager.core.compose.fields import format_env_value


def register(group: click.Group) -> None:
    group.add_command(env_group)


@click.group(name="env")
def env_group() -> None:
    """全局环境变量管理"""


@env_group.command(name="list")
def env_list() -> None:
    """列出全部全局变量"""
    envs = _svc().global_envs.all()
    if not envs:
        click.echo("没有已设置的全局变量。")
        return
    for k in sorted(envs):
        click.echo(f"  {k}={format_env_value(envs[k])}")


@env_group.command(name="get")
@click.argument("key")
def env_get(key: str) -> None:
    """查询全局变量（可省略前缀）"""
    with _errors():
        value = _svc().global_envs.get(key)
    if value is None:
        raise click.ClickException(f"全局变量未设置: {key}")
    click.echo(format_env_value(value))


@env_group.command(name="set")
@click.argument("key")
@click.argument("value")
@click.option("--no-wait", is_flag=True, help="写入后不等待传播完成")
@click.option("--timeout", default=600.0, help="等待传播的最长时间（秒）")
def env_set(key: str, value: str, no_wait: bool, timeout: float) -> None:
    """设置全局变量并传播到引用它的包"""
    svc = _svc()
    with _errors():
        store = svc.global_envs
        full_key = store.set(key, store.coerce(key, value))
    click.echo(f"已写入: {full_key}")
    if no_wait:
        return

    for r in svc.propagation.join(timeout=timeout):
        click.echo(f"  匹配的包: {', '.join(r.matched) or '-'}")
        click.echo(f"  已重启:   {', '.join(r.restarted) or '-'}")
        for f in r.failures:
            click.echo(f"  失败 [{f.step}] {f.package or '-'}: {f.error}")
