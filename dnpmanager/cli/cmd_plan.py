"""CLI — 安装计划"""

from __future__ import annotations

import json

import click

from dnpmanager.cli import _errors, _svc


def register(group: click.Group) -> None:
    group.add_command(plan)


@click.command()
@click.argument("request")
@click.option("--json", "as_json", is_flag=True, help="输出完整 JSON")
def plan(request: str, as_json: bool) -> None:
    """生成安装计划（只读），REQUEST 形如 name@^1.0.0 / name / 内容哈希"""
    with _errors():
        result = _svc().planner.plan(request)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return

    c = result.compatible
    click.echo(f"{result.name}@{result.sem_version} (reqVersion={result.req_version})")
    click.echo(f"  已安装: {'是' if result.is_installed else '否'}"
               f"{'（已是该版本）' if result.is_updated else ''}")
    click.echo("  版本变化:")
    for name, change in c.dnps.items():
        click.echo(f"    {name:40s} {change.from_version or '-'} -> {change.to_version}")
    if c.is_compatible:
        click.echo("  兼容性: 通过")
    else:
        click.echo(f"  兼容性: 不通过 - {c.error}")
    if c.requires_core_update:
        click.echo("  需要先更新核心")
    for name, perms in result.special_permissions.items():
        for p in perms:
            click.echo(f"  特殊权限 [{name}] {p.name}: {p.details}")
    if not result.available.is_available:
        click.echo(f"  资源: {result.available.message}")
