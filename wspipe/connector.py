"""
目标连接

解析 PipeInfo 中的主机，建立到目标的 TCP 连接。
"""

import asyncio
import logging
import socket
from dataclasses import dataclass

from .errors import ConnectError, ReleaseError
from .protocol import PipeInfo

logger = logging.getLogger(__name__)


@dataclass
class DestinationConnection:
    """到目标的 TCP 连接，由会话独占"""

    info: PipeInfo
    sock: socket.socket
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    released: bool = False

    @property
    def connected(self) -> bool:
        """连接是否可用"""
        return not self.released and not self.writer.is_closing()

    async def read(self, size: int) -> bytes:
        return await self.reader.read(size)

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    def release(self) -> bool:
        """
        释放连接（先 shutdown 再 close）

        可重复、可并发调用，只有第一次调用真正执行释放并返回 True；
        释放过程中的任何错误都会被吞掉。
        """
        if self.released:
            return False
        self.released = True

        try:
            self._shutdown_and_close()
        except ReleaseError as e:
            logger.debug(f"释放连接出错（已忽略）: {self.info}, {e}")
        return True

    def _shutdown_and_close(self) -> None:
        errors: list[OSError] = []
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            errors.append(e)
        try:
            self.writer.close()
        except (OSError, RuntimeError) as e:
            errors.append(OSError(str(e)))
        if errors:
            raise ReleaseError("; ".join(str(e) for e in errors))

    async def wait_released(self) -> None:
        """等待底层传输真正关闭"""
        try:
            await self.writer.wait_closed()
        except (OSError, RuntimeError) as e:
            logger.debug(f"等待连接关闭出错（已忽略）: {self.info}, {e}")


class DestinationConnector:
    """解析目标地址并建立 TCP 连接"""

    async def connect(self, info: PipeInfo) -> DestinationConnection:
        """
        连接目标

        Raises:
            ResolutionError: 主机无法解析
            ConnectError: 创建 socket、设置选项或连接失败
        """
        address = await info.resolve()
        family = info.resolved_family or socket.AF_INET
        loop = asyncio.get_running_loop()

        sock: socket.socket | None = None
        try:
            sock = socket.socket(family, socket.SOCK_STREAM, socket.IPPROTO_TCP)
            sock.setblocking(False)
            if info.keep_alive:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

            await loop.sock_connect(sock, (address, info.port))
            reader, writer = await asyncio.open_connection(sock=sock)
        except OSError as e:
            _close_quietly(sock)
            raise ConnectError(info.text, e) from e
        except asyncio.CancelledError:
            _close_quietly(sock)
            raise

        logger.debug(f"已连接目标: {info}")
        return DestinationConnection(info=info, sock=sock, reader=reader, writer=writer)


def _close_quietly(sock: socket.socket | None) -> None:
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        sock.close()
    except OSError:
        pass
