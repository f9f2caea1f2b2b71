"""WSPipe 异常定义"""


class PipeError(Exception):
    """WSPipe 基础异常"""

    pass


class HandshakeFormatError(PipeError):
    """握手消息格式错误"""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"PipeInfo.{field}: {message}")


class ResolutionError(PipeError):
    """目标主机无法解析"""

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"Cannot resolve {host}!")


class ConnectError(PipeError):
    """连接目标失败（创建 socket / 设置选项 / TCP 连接）"""

    def __init__(self, target: str, cause: BaseException | None = None):
        self.target = target
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Connect to {target} failed{detail}")


class RelayIOError(PipeError):
    """转发过程中读写失败"""

    def __init__(self, direction: str, cause: BaseException):
        self.direction = direction
        self.cause = cause
        super().__init__(f"{direction} relay failed: {cause}")


class ReleaseError(PipeError):
    """资源释放失败（内部使用，总是被吞掉）"""

    pass


class HandshakeRejected(PipeError):
    """服务端未确认握手（客户端使用）"""

    def __init__(self, reply: object):
        self.reply = reply
        super().__init__(f"Server did not acknowledge handshake: {reply!r}")
