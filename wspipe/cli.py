"""
WSPipe 命令行工具

使用示例:
    # 启动服务端
    wspipe serve --port 8000

    # 查看服务端状态
    wspipe status --server http://localhost:8000/

    # 在本地 15432 端口开放到 db.internal:5432 的管道
    wspipe forward --server ws://localhost:8000/ --listen 15432 --target db.internal:5432
"""

import asyncio
import logging
import sys

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .client import PipeClient
from .config import PipeClientConfig, PipeServerConfig

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """配置日志"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def parse_target(target: str) -> tuple[str, int]:
    """解析 host:port（IPv6 需要写成 [::1]:port）"""
    host, sep, port = target.rpartition(":")
    if not sep or not host or not port.isdigit() or int(port) > 65535:
        raise click.BadParameter(f"目标格式应为 host:port: {target}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


@click.group()
@click.version_option(version=__version__)
def main():
    """WSPipe - WebSocket 到 TCP 的管道"""
    pass


@main.command()
@click.option("--host", "-h", default="0.0.0.0", help="监听地址")
@click.option("--port", "-p", default=8000, help="监听端口")
@click.option("--ws-path", default="/", help="WebSocket 路径")
@click.option("--verbose", "-v", is_flag=True, help="详细日志")
def serve(host: str, port: int, ws_path: str, verbose: bool):
    """启动 WSPipe Server"""
    setup_logging(verbose)

    console.print(f"[bold blue]WSPipe Server v{__version__}[/bold blue]")
    console.print(f"  监听: {host}:{port}")
    console.print(f"  WebSocket: {ws_path}")
    console.print()

    from .app import run_app

    run_app(PipeServerConfig(host=host, port=port, ws_path=ws_path))


@main.command()
@click.option("--server", "-s", default="http://localhost:8000/", help="服务端 URL")
def status(server: str):
    """查看服务端状态"""
    try:
        response = httpx.get(server)
        response.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] 请求失败: {e}")
        sys.exit(1)

    console.print(f"[green]●[/green] {response.text}")


@main.command()
@click.option("--server", "-s", default="ws://localhost:8000/", help="服务端 WebSocket URL")
@click.option("--listen", "-l", default=0, help="本地监听端口（0 表示随机）")
@click.option("--bind", "-b", default="127.0.0.1", help="本地监听地址")
@click.option("--target", "-T", required=True, help="目标地址 host:port")
@click.option("--keep-alive", "-k", is_flag=True, help="请求目标启用 TCP KeepAlive")
@click.option("--verbose", "-v", is_flag=True, help="详细日志")
def forward(server: str, listen: int, bind: str, target: str, keep_alive: bool, verbose: bool):
    """在本地端口开放到目标的管道"""
    setup_logging(verbose)
    target_host, target_port = parse_target(target)

    config = PipeClientConfig(
        server_url=server,
        listen_host=bind,
        listen_port=listen,
        target_host=target_host,
        target_port=target_port,
        keep_alive=keep_alive,
    )
    client = PipeClient(config=config)

    async def _run() -> None:
        await client.start()
        console.print(f"[green]✓[/green] {bind}:{client.port} -> {target} via {server}")
        try:
            await client.run()
        finally:
            await client.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[dim]已停止[/dim]")
        sys.exit(0)


if __name__ == "__main__":
    main()
