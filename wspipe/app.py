"""
WSPipe Server - WebSocket 到 TCP 的管道服务

使用示例:
    # 启动服务器
    python -m wspipe.app

    # 或使用 CLI
    wspipe serve --port 8000

访问方式:
    # WebSocket 连接后发送握手 "<uuid>,<host>,<port>,<keepAlive>"，收到 "OK" 后开始转发
    # 普通 HTTP 请求返回服务版本
    curl http://localhost:8000/
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import PlainTextResponse

from . import __version__
from .channel import StarletteChannel
from .config import PipeServerConfig
from .pipe import PipeSession, SessionState

logger = logging.getLogger(__name__)

# 会话日志（显式传给每个 PipeSession）
session_logger = logging.getLogger("wspipe.pipe")


def status_text(now: datetime | None = None) -> str:
    """非 WebSocket 请求返回的状态文本"""
    now = now or datetime.now()
    return f"WSPipe v{__version__} {now:%Y-%m-%d %H:%M:%S}.{now.microsecond // 1000:03d}"


def create_lifespan(config: PipeServerConfig):
    """创建带有配置引用的 lifespan 函数"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"WSPipe Server v{__version__} 启动")
        logger.info(f"  监听: {config.host}:{config.port}")
        logger.info(f"  WebSocket: {config.ws_path}")
        yield
        logger.info("WSPipe Server 已关闭")

    return lifespan


def create_app(config: PipeServerConfig | None = None) -> FastAPI:
    """
    创建 WSPipe Server 应用

    Args:
        config: 服务端配置（默认从环境变量读取）

    Returns:
        FastAPI 应用实例
    """
    config = config or PipeServerConfig()

    new_app = FastAPI(
        title="WSPipe Server",
        description="WebSocket 到 TCP 的管道服务",
        version=__version__,
        lifespan=create_lifespan(config),
    )

    @new_app.websocket(config.ws_path)
    async def pipe_endpoint(websocket: WebSocket):
        """管道 WebSocket 端点"""
        await websocket.accept()

        channel = StarletteChannel(websocket)
        session = PipeSession(
            channel.remote_address,
            channel,
            session_logger,
            handshake_max_size=config.handshake_max_size,
            buffer_size=config.relay_buffer_size,
        )
        await session.handle()

        # 源通道由这里负责释放
        if channel.is_open:
            code = 1011 if session.state == SessionState.FAILED else 1000
            await channel.close(code=code)

    @new_app.get(config.ws_path, response_class=PlainTextResponse)
    async def status(request: Request):
        """状态信息"""
        remote = request.client.host if request.client else "unknown"
        protocol = "Https" if request.url.scheme == "https" else "Http"
        logger.info(f"{remote}-{request.method}-{protocol} Handled")
        return status_text()

    return new_app


def run_app(config: PipeServerConfig | None = None) -> None:
    """
    运行 WSPipe Server

    Args:
        config: 服务端配置
    """
    import uvicorn

    config = config or PipeServerConfig()

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        ws_ping_interval=config.ws_ping_interval,
        ws_ping_timeout=config.ws_ping_timeout,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    run_app()
