"""
WSPipe 配置
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class PipeServerConfig(BaseSettings):
    """服务端配置"""

    # 监听配置
    host: str = Field(default="0.0.0.0", description="监听地址")
    port: int = Field(default=8000, description="监听端口")

    # WebSocket 配置
    ws_path: str = Field(default="/", description="WebSocket 端点路径")
    ws_ping_interval: float | None = Field(
        default=120.0, description="WebSocket 心跳间隔（秒，None 表示关闭）"
    )
    ws_ping_timeout: float | None = Field(
        default=None, description="WebSocket 心跳超时（秒）"
    )

    # 转发配置
    handshake_max_size: int = Field(default=1024, ge=1, description="握手消息最大字节数")
    relay_buffer_size: int = Field(default=8192, ge=1, description="目标读取缓冲区大小")

    model_config = {
        "env_prefix": "WSPIPE_",
        "env_file": ".env",
        "extra": "ignore",
    }


class PipeClientConfig(BaseSettings):
    """客户端配置"""

    # 服务端连接
    server_url: str = Field(default="ws://localhost:8000/", description="服务端 WebSocket URL")

    # 本地监听
    listen_host: str = Field(default="127.0.0.1", description="本地监听地址")
    listen_port: int = Field(default=0, ge=0, le=65535, description="本地监听端口（0 表示随机）")

    # 目标服务（由服务端连接）
    target_host: str = Field(..., description="目标主机")
    target_port: int = Field(..., ge=0, le=65535, description="目标端口")
    keep_alive: bool = Field(default=False, description="是否请求目标 TCP KeepAlive")

    # 转发配置
    buffer_size: int = Field(default=8192, ge=1, description="本地读取缓冲区大小")

    model_config = {
        "env_prefix": "WSPIPE_CLIENT_",
        "env_file": ".env",
        "extra": "ignore",
    }
