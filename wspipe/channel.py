"""
源通道（WebSocket 一侧）

PipeSession 只依赖 SourceChannel 协议，
StarletteChannel 把 FastAPI / Starlette 的 WebSocket 适配成该协议。
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

logger = logging.getLogger(__name__)

# 这些关闭码只能出现在本地状态中，不允许写到线路上
RESERVED_CLOSE_CODES = frozenset({1005, 1006, 1015})


class MessageKind(str, Enum):
    """消息类型"""

    TEXT = "text"
    BINARY = "binary"
    CLOSE = "close"


@dataclass
class ChannelMessage:
    """从源通道收到的一条消息"""

    kind: MessageKind
    data: bytes = b""
    close_code: int | None = None
    close_reason: str | None = None
    truncated: bool = False

    @property
    def is_close(self) -> bool:
        return self.kind == MessageKind.CLOSE


class SourceChannel(Protocol):
    """会话需要的全双工消息通道"""

    async def receive(self, max_size: int | None = None) -> ChannelMessage:
        ...

    async def send_text(self, text: str) -> None:
        ...

    async def send_binary(self, data: bytes, final: bool = True) -> None:
        ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        ...


class StarletteChannel:
    """
    Starlette WebSocket 适配器

    ASGI 没有续帧（continuation frame）的概念，
    final=False 的数据块会作为独立的二进制消息发送，字节流语义不变。
    """

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket

    @property
    def remote_address(self) -> str:
        client = self._websocket.client
        return client.host if client and client.host else "unknown"

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def receive(self, max_size: int | None = None) -> ChannelMessage:
        message = await self._websocket.receive()

        if message["type"] == "websocket.disconnect":
            return ChannelMessage(
                kind=MessageKind.CLOSE,
                close_code=message.get("code", 1000),
                close_reason=message.get("reason") or None,
            )

        if message.get("bytes") is not None:
            kind = MessageKind.BINARY
            data = message["bytes"]
        else:
            kind = MessageKind.TEXT
            data = (message.get("text") or "").encode("utf-8")

        truncated = max_size is not None and len(data) > max_size
        if truncated:
            data = data[:max_size]
        return ChannelMessage(kind=kind, data=data, truncated=truncated)

    async def send_text(self, text: str) -> None:
        await self._websocket.send_text(text)

    async def send_binary(self, data: bytes, final: bool = True) -> None:
        await self._websocket.send_bytes(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        """
        关闭 WebSocket

        收到对端关闭帧后，ASGI 服务器可能已经自行完成了关闭握手，
        此时再次发送关闭只记录 debug 日志。
        """
        if self._websocket.application_state == WebSocketState.DISCONNECTED:
            return
        if code in RESERVED_CLOSE_CODES:
            logger.debug(f"关闭码 {code} 不能发送，跳过关闭回显")
            return

        try:
            await self._websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError, WebSocketDisconnect) as e:
            logger.debug(f"关闭握手已由服务器完成: {e}")
