"""
测试配置和 Fixtures
"""

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from typing import AsyncGenerator

import pytest

from wspipe.channel import ChannelMessage, MessageKind


class FakeChannel:
    """内存中的源通道，记录所有发送的消息"""

    def __init__(self, fail_binary: bool = False):
        self._incoming: asyncio.Queue[ChannelMessage] = asyncio.Queue()
        self._outgoing: asyncio.Queue[tuple[str, bytes, bool]] = asyncio.Queue()
        self.sent: list[tuple[str, bytes, bool]] = []
        self.closed_with: tuple[int, str | None] | None = None
        self.fail_binary = fail_binary
        self.on_close = None

    # 测试侧
    def push_text(self, text: str) -> None:
        self._incoming.put_nowait(ChannelMessage(kind=MessageKind.TEXT, data=text.encode("utf-8")))

    def push_binary(self, data: bytes) -> None:
        self._incoming.put_nowait(ChannelMessage(kind=MessageKind.BINARY, data=data))

    def push_close(self, code: int = 1000, reason: str | None = None) -> None:
        self._incoming.put_nowait(
            ChannelMessage(kind=MessageKind.CLOSE, close_code=code, close_reason=reason)
        )

    async def next_sent(self, timeout: float = 5.0) -> tuple[str, bytes, bool]:
        return await asyncio.wait_for(self._outgoing.get(), timeout)

    # SourceChannel
    async def receive(self, max_size: int | None = None) -> ChannelMessage:
        message = await self._incoming.get()
        if max_size is not None and len(message.data) > max_size:
            message.data = message.data[:max_size]
            message.truncated = True
        return message

    async def send_text(self, text: str) -> None:
        self._record(("text", text.encode("utf-8"), True))

    async def send_binary(self, data: bytes, final: bool = True) -> None:
        if self.fail_binary:
            raise ConnectionResetError("channel broken")
        self._record(("binary", data, final))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self.on_close:
            self.on_close()
        self.closed_with = (code, reason)

    def _record(self, item: tuple[str, bytes, bool]) -> None:
        self.sent.append(item)
        self._outgoing.put_nowait(item)


@dataclass
class DestinationServer:
    """本地 TCP 目标服务，收集接入的连接"""

    server: asyncio.Server
    connections: asyncio.Queue = field(default_factory=asyncio.Queue)

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    async def accept(self, timeout: float = 5.0) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.wait_for(self.connections.get(), timeout)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def broken_channel() -> FakeChannel:
    """发送二进制消息总是失败的源通道"""
    return FakeChannel(fail_binary=True)


@pytest.fixture
def pipe_logger() -> logging.Logger:
    return logging.getLogger("tests.pipe")


@pytest.fixture
async def destination_server() -> AsyncGenerator[DestinationServer, None]:
    """目标服务（连接不自动应答）"""
    queue: asyncio.Queue = asyncio.Queue()
    writers: list[asyncio.StreamWriter] = []

    async def on_connect(reader, writer):
        writers.append(writer)
        await queue.put((reader, writer))

    server = await asyncio.start_server(on_connect, host="127.0.0.1", port=0)
    yield DestinationServer(server=server, connections=queue)

    for writer in writers:
        writer.close()
    server.close()
    await server.wait_closed()


@pytest.fixture
async def echo_server() -> AsyncGenerator[int, None]:
    """回显服务，返回端口"""

    async def on_connect(reader, writer):
        try:
            while data := await reader.read(8192):
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(on_connect, host="127.0.0.1", port=0)
    yield server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()


@pytest.fixture
def closed_port() -> int:
    """一个当前没有监听的本地端口"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
