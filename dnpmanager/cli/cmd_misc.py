"""CLI — 杂项命令"""

from __future__ import annotations

import click


def register(group: click.Group) -> None:
    group.add_command(dashboard)


@click.command()
@click.option("--port", default=8888, help="监听端口")
@click.option("--host", default="127.0.0.1", help="监听地址")
def dashboard(port: int, host: str) -> None:
    """启动 HTTP API 服务"""
    from dnpmanager.web.app import run_server
    run_server(port=port, host=host)
