"""
WSPipe - WebSocket 到 TCP 的管道

客户端通过 WebSocket 发送握手描述目标 TCP 地址，
服务端连接目标后回复 "OK"，之后双向转发字节：
- 服务端可嵌入到 FastAPI 应用，也可独立运行
- 客户端 SDK 在本地开放 TCP 端口
"""

__version__ = "1.5.0"

from .protocol import PipeInfo, ACK_MESSAGE, HANDSHAKE_MAX_SIZE
from .errors import (
    PipeError,
    HandshakeFormatError,
    ResolutionError,
    ConnectError,
    RelayIOError,
    HandshakeRejected,
)
from .channel import ChannelMessage, MessageKind, SourceChannel, StarletteChannel
from .connector import DestinationConnection, DestinationConnector
from .pipe import PipeSession, SessionState
from .client import PipeClient
from .config import PipeServerConfig, PipeClientConfig
from .app import create_app, run_app

__all__ = [
    # 版本
    "__version__",
    # 协议
    "PipeInfo",
    "ACK_MESSAGE",
    "HANDSHAKE_MAX_SIZE",
    # 异常
    "PipeError",
    "HandshakeFormatError",
    "ResolutionError",
    "ConnectError",
    "RelayIOError",
    "HandshakeRejected",
    # 服务端
    "ChannelMessage",
    "MessageKind",
    "SourceChannel",
    "StarletteChannel",
    "DestinationConnection",
    "DestinationConnector",
    "PipeSession",
    "SessionState",
    "PipeServerConfig",
    # 客户端
    "PipeClient",
    "PipeClientConfig",
    # 应用
    "create_app",
    "run_app",
]
