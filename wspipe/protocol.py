"""
WSPipe 协议定义

握手消息（客户端 → 服务端，WebSocket 第一条文本消息，≤1024 字节）:

    <uuid>,<host>,<port>,<keepAlive>

- uuid: 关联标识，仅用于日志显示
- host: 目标主机（域名或 IP）
- port: 目标端口 0-65535
- keepAlive: true/false（不区分大小写），是否启用 TCP KeepAlive

服务端连接目标成功后回复文本消息 "OK"，之后进入双向字节转发。
"""

import asyncio
import re
import socket
import uuid

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from .errors import HandshakeFormatError, ResolutionError

# 握手参数个数
HANDSHAKE_FIELDS = 4

# 握手消息最大长度（字节）
HANDSHAKE_MAX_SIZE = 1024

# 连接成功确认消息
ACK_MESSAGE = "OK"

_PORT_PATTERN = re.compile(r"[0-9]+")
_BOOL_LITERALS = {"true": True, "false": False}


class PipeInfo(BaseModel):
    """
    管道目标描述

    由握手消息解析而来，创建后不可变；
    唯一例外是首次 resolve() 时缓存解析出的地址并刷新显示文本。
    """

    model_config = ConfigDict(frozen=True)

    key: uuid.UUID = Field(..., description="关联标识")
    host: str = Field(..., description="目标主机")
    port: int = Field(..., ge=0, le=65535, description="目标端口")
    keep_alive: bool = Field(default=False, description="是否启用 TCP KeepAlive")

    _resolved_address: str | None = PrivateAttr(default=None)
    _resolved_family: int | None = PrivateAttr(default=None)
    _text: str = PrivateAttr(default="")

    @field_validator("host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("host must not be blank")
        return value

    def model_post_init(self, __context) -> None:
        self._text = self._format_text()

    # ============== 解析 ==============

    @classmethod
    def parse(cls, raw: str) -> "PipeInfo":
        """
        解析握手消息

        Raises:
            HandshakeFormatError: 参数个数或任一参数格式错误
        """
        parameters = raw.split(",")
        if len(parameters) != HANDSHAKE_FIELDS:
            raise HandshakeFormatError(
                "input",
                f"expected {HANDSHAKE_FIELDS} parameters, got {len(parameters)}",
            )

        try:
            key = uuid.UUID(parameters[0].strip())
        except ValueError:
            raise HandshakeFormatError("key", "parameter[0] is not a UUID") from None

        host = parameters[1]
        if not host.strip():
            raise HandshakeFormatError("host", "parameter[1] is blank")

        port_text = parameters[2].strip()
        if not _PORT_PATTERN.fullmatch(port_text) or int(port_text) > 65535:
            raise HandshakeFormatError("port", "parameter[2] is not a valid port")

        keep_alive = _BOOL_LITERALS.get(parameters[3].strip().lower())
        if keep_alive is None:
            raise HandshakeFormatError("keep_alive", "parameter[3] is not a boolean")

        return cls(key=key, host=host, port=int(port_text), keep_alive=keep_alive)

    @staticmethod
    def build_handshake(
        key: uuid.UUID, host: str, port: int, keep_alive: bool = False
    ) -> str:
        """构造握手消息（客户端使用）"""
        return f"{key},{host},{port},{'true' if keep_alive else 'false'}"

    # ============== 地址解析 ==============

    @property
    def resolved_address(self) -> str | None:
        """已解析的地址（未解析时为 None）"""
        return self._resolved_address

    @property
    def resolved_family(self) -> int | None:
        return self._resolved_family

    @property
    def text(self) -> str:
        """显示文本"""
        return self._text

    async def resolve(self) -> str:
        """
        解析目标主机地址

        取解析结果的第一个地址并缓存，之后的调用直接返回缓存。

        Raises:
            ResolutionError: 没有可用地址
        """
        if self._resolved_address is not None:
            return self._resolved_address

        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(self.host, self.port, type=socket.SOCK_STREAM)
        except (OSError, UnicodeError) as e:
            raise ResolutionError(self.host) from e

        if not infos:
            raise ResolutionError(self.host)

        family, _type, _proto, _canonname, sockaddr = infos[0]
        self._resolved_family = family
        self._resolved_address = sockaddr[0]
        self._text = self._format_text()
        return self._resolved_address

    def _format_text(self) -> str:
        host = self.host
        if self._resolved_address is not None:
            host = f"{self.host}({self._resolved_address})"
        suffix = " (KeepAlive)" if self.keep_alive else ""
        return f"[{self.key.hex.upper()}] {host}:{self.port}{suffix}"

    def __str__(self) -> str:
        return self._text
