"""
WebSocket 管道会话

每个被接受的 WebSocket 连接对应一个 PipeSession：

1. 接收握手消息并解析为 PipeInfo
2. 连接目标 TCP 服务
3. 回复 "OK"
4. 双向转发: 源通道 <-> 目标 socket
5. 收到关闭帧时回显相同的关闭码和原因
6. 无论成功失败，都释放目标连接

源通道由调用方创建和释放，会话只负责自己创建的目标连接。
"""

import asyncio
import logging
from enum import Enum

from .channel import ChannelMessage, SourceChannel
from .connector import DestinationConnection, DestinationConnector
from .errors import (
    ConnectError,
    HandshakeFormatError,
    PipeError,
    RelayIOError,
    ResolutionError,
)
from .protocol import ACK_MESSAGE, HANDSHAKE_MAX_SIZE, PipeInfo

# 目标 -> 源 每次读取的最大字节数
RELAY_BUFFER_SIZE = 8192


class SessionState(str, Enum):
    """会话状态"""

    AWAITING_HANDSHAKE = "awaiting_handshake"
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


class PipeSession:
    """单个 WebSocket 连接的管道会话（不可复用）"""

    def __init__(
        self,
        remote_address: str,
        channel: SourceChannel,
        logger: logging.Logger | logging.LoggerAdapter,
        connector: DestinationConnector | None = None,
        handshake_max_size: int = HANDSHAKE_MAX_SIZE,
        buffer_size: int = RELAY_BUFFER_SIZE,
    ):
        if not remote_address or not remote_address.strip():
            raise ValueError("remote_address must not be blank")
        if channel is None:
            raise ValueError("channel is required")

        self.remote_address = remote_address
        self._channel = channel
        self._logger = logger
        self._connector = connector or DestinationConnector()
        self._handshake_max_size = handshake_max_size
        self._buffer_size = buffer_size

        self.state = SessionState.AWAITING_HANDSHAKE
        self.failed_in: SessionState | None = None
        self.info: PipeInfo | None = None
        self.destination: DestinationConnection | None = None
        self._relay_task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        """日志中使用的会话标识"""
        return f"[{self.remote_address}] {self.info or 'unknown'}"

    async def handle(self) -> None:
        """
        会话入口，每个会话只调用一次

        除 asyncio.CancelledError 外不会向调用方抛出异常。
        """
        self._logger.info(f"{self.remote_address}> 新的 WebSocket 连接")
        try:
            await self._run()
        except (HandshakeFormatError, ResolutionError, ConnectError) as e:
            self._fail()
            self._logger.warning(f"{self.name}> {self._phase} 失败: {e}")
        except RelayIOError as e:
            self._fail()
            self._logger.warning(f"{self.name}> 转发中断: {e}")
        except asyncio.CancelledError:
            self._fail()
            self._logger.info(f"{self.name}> 会话被取消")
            raise
        except Exception as e:
            self._fail()
            self._logger.error(f"{self.name}> 处理失败: {e}", exc_info=True)
        finally:
            await self._teardown()

        self._logger.info(f"{self.name}> 处理结束 ({self.state.value})")

    # ============== 生命周期 ==============

    async def _run(self) -> None:
        self.info = await self._receive_handshake()
        if self.info is None:
            self._logger.info(f"{self.name}> 握手前连接已关闭")
            self.state = SessionState.FAILED
            return

        self._logger.info(f"{self.name}> 开始处理")

        self.state = SessionState.CONNECTING
        self.destination = await self._connector.connect(self.info)
        if not self.destination.connected:
            raise ConnectError(self.info.text)

        self._logger.info(f"{self.name}> 已连接")

        await self._channel.send_text(ACK_MESSAGE)

        self.state = SessionState.RELAYING
        self._relay_task = asyncio.create_task(self._destination_to_source())

        close_message = await self._source_to_destination()

        self.state = SessionState.CLOSING
        await self._stop_relay()
        await self._channel.close(close_message.close_code or 1000, close_message.close_reason)
        self.state = SessionState.CLOSED
        self._logger.info(
            f"{self.name}> 已关闭: code={close_message.close_code}, "
            f"reason={close_message.close_reason}"
        )

    async def _receive_handshake(self) -> PipeInfo | None:
        message = await self._channel.receive(max_size=self._handshake_max_size)
        if message.is_close:
            return None
        if message.truncated:
            raise HandshakeFormatError(
                "input", f"handshake exceeds {self._handshake_max_size} bytes"
            )

        try:
            text = message.data.decode("utf-8")
        except UnicodeDecodeError:
            raise HandshakeFormatError("input", "handshake is not valid UTF-8") from None

        return PipeInfo.parse(text)

    # ============== 转发 ==============

    async def _source_to_destination(self) -> ChannelMessage:
        """源 -> 目标，直到收到关闭帧"""
        while True:
            message = await self._receive_source()
            if message.is_close:
                return message

            if self.destination.released:
                raise RelayIOError("source->destination", ConnectionResetError("destination released"))
            try:
                await self.destination.write(message.data)
            except (OSError, RuntimeError) as e:
                raise RelayIOError("source->destination", e) from e

    async def _receive_source(self) -> ChannelMessage:
        """
        接收一条源消息

        等待期间如果 目标 -> 源 转发失败，立即抛出该错误结束会话；
        目标正常关闭（EOF）时继续等待源消息。
        """
        receive = asyncio.ensure_future(self._channel.receive())
        try:
            while not receive.done():
                relay = self._relay_task
                if relay is None or relay.done():
                    return await receive

                await asyncio.wait({receive, relay}, return_when=asyncio.FIRST_COMPLETED)
                if relay.done() and not relay.cancelled() and relay.exception() is not None:
                    raise relay.exception()
            return receive.result()
        finally:
            if not receive.done():
                receive.cancel()
            elif not receive.cancelled():
                # 与转发错误同时完成时，避免 "exception was never retrieved"
                receive.exception()

    async def _destination_to_source(self) -> None:
        """目标 -> 源，每个数据块作为一条非 final 的二进制消息发送"""
        self._logger.debug(f"{self.name}> 开始接收目标数据")
        try:
            while True:
                data = await self.destination.read(self._buffer_size)
                if not data:
                    self._logger.info(f"{self.name}> 目标连接已关闭")
                    break
                await self._channel.send_binary(data, final=False)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.destination.release()
            raise RelayIOError("destination->source", e) from e

    # ============== 清理 ==============

    async def _stop_relay(self) -> None:
        relay = self._relay_task
        if relay is None:
            return
        if not relay.done():
            relay.cancel()

        (result,) = await asyncio.gather(relay, return_exceptions=True)
        if isinstance(result, PipeError):
            self._logger.debug(f"{self.name}> 目标转发已结束: {result}")

    async def _teardown(self) -> None:
        """释放目标连接，可重复调用"""
        await self._stop_relay()
        if self.destination is None:
            return
        if self.destination.release():
            self._logger.debug(f"{self.name}> 目标连接已释放")
        await self.destination.wait_released()

    @property
    def _phase(self) -> str:
        if self.failed_in == SessionState.CONNECTING:
            return "连接"
        return "握手"

    def _fail(self) -> None:
        if self.state != SessionState.FAILED:
            self.failed_in = self.state
        self.state = SessionState.FAILED
