"""
WSPipe 客户端 SDK

在本地开放一个 TCP 端口，每个本地连接对应一个到服务端的 WebSocket 会话，
由服务端连接真正的目标服务。

使用示例:
    from wspipe import PipeClient, PipeClientConfig

    client = PipeClient(
        config=PipeClientConfig(
            server_url="wss://pipe.example.com/",
            listen_port=15432,
            target_host="db.internal",
            target_port=5432,
        )
    )

    # 启动客户端（阻塞）
    await client.run()

    # 或在后台运行
    await client.start()
    ...
    await client.stop()
"""

import asyncio
import logging
import uuid

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import PipeClientConfig
from .errors import HandshakeRejected
from .protocol import ACK_MESSAGE, PipeInfo

logger = logging.getLogger(__name__)


class PipeClient:
    """
    管道客户端

    本地 TCP 连接 <-> WebSocket <-> 服务端 <-> 目标服务
    """

    def __init__(self, config: PipeClientConfig):
        self.config = config
        self._server: asyncio.Server | None = None
        self._connections: set[asyncio.Task] = set()

    @property
    def port(self) -> int | None:
        """本地实际监听的端口"""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        """启动本地监听"""
        self._server = await asyncio.start_server(
            self._handle_local,
            host=self.config.listen_host,
            port=self.config.listen_port,
        )
        logger.info(
            f"本地监听已启动: {self.config.listen_host}:{self.port} -> "
            f"{self.config.target_host}:{self.config.target_port} via {self.config.server_url}"
        )

    async def run(self) -> None:
        """启动并一直运行，直到被取消"""
        if not self._server:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self) -> None:
        """停止监听并关闭所有连接"""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        for task in list(self._connections):
            task.cancel()
        if self._connections:
            await asyncio.gather(*self._connections, return_exceptions=True)

    async def _handle_local(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """处理一个本地 TCP 连接"""
        task = asyncio.current_task()
        self._connections.add(task)

        key = uuid.uuid4()
        peer = writer.get_extra_info("peername")
        logger.info(f"收到本地连接: {peer} -> key={key}")

        try:
            async with websockets.connect(self.config.server_url, max_size=None) as websocket:
                handshake = PipeInfo.build_handshake(
                    key,
                    self.config.target_host,
                    self.config.target_port,
                    self.config.keep_alive,
                )
                await websocket.send(handshake)

                reply = await websocket.recv()
                if reply != ACK_MESSAGE:
                    raise HandshakeRejected(reply)
                logger.info(f"管道已建立: key={key}")

                await self._relay(reader, writer, websocket)

        except HandshakeRejected as e:
            logger.warning(f"握手失败: key={key}, {e}")
        except ConnectionClosed as e:
            logger.warning(f"服务端关闭连接: key={key}, code={e.rcvd.code if e.rcvd else None}")
        except WebSocketException as e:
            logger.error(f"WebSocket 握手失败: key={key}, {e}")
        except OSError as e:
            logger.error(f"连接服务端失败: key={key}, {e}")
        finally:
            self._connections.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            logger.info(f"本地连接已关闭: key={key}")

    async def _relay(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        websocket,
    ) -> None:
        """双向转发，任一方向结束即结束"""

        async def local_to_remote() -> None:
            while True:
                data = await reader.read(self.config.buffer_size)
                if not data:
                    break
                await websocket.send(data)
            # 本地关闭，发起 WebSocket 关闭握手
            await websocket.close()

        async def remote_to_local() -> None:
            async for message in websocket:
                if isinstance(message, str):
                    message = message.encode("utf-8")
                writer.write(message)
                await writer.drain()

        tasks = {
            asyncio.create_task(local_to_remote()),
            asyncio.create_task(remote_to_local()),
        }
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, Exception) and not isinstance(result, ConnectionClosed):
                logger.warning(f"转发结束: {result}")
