"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或订阅方做统一捕获与提示。

流式通道相关的错误（StreamError 及其子类）不会跨通道抛出：
编排器会把它们转换成 ReconciledResult(status="error")，
code 字段映射到结果的 error_code，message 映射到 error。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "HTTP_STATUS"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 request_id、role 等）。
    """

    default_code = "BUSINESS_ERROR"

    def __init__(self, code: Optional[str] = None, message: str = "", http_status: int = 400, **extra):
        self.code = code or self.default_code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""

    default_code = "VALIDATION_ERROR"


class StreamError(BusinessError):
    """单个通道内的流式错误基类。"""

    default_code = "STREAM_ERROR"


class TransportError(StreamError):
    """非 2xx 状态码或连接失败。"""

    default_code = "NETWORK_ERROR"


class ProtocolError(StreamError):
    """帧无法解码。解析器记录后跳过，不终止通道。"""

    default_code = "MALFORMED_FRAME"


class StreamTerminatedWithoutMarker(StreamError):
    """传输层关闭时没有收到任何终止事件。"""

    default_code = "STREAM_CLOSED"


class UpstreamError(StreamError):
    """上游通过 error 事件显式报告的错误。"""

    default_code = "UPSTREAM_ERROR"


class IdleTimeoutError(StreamError):
    default_code = "TIMEOUT"


class EmptyResultError(StreamError):
    default_code = "EMPTY_RESULT"


class ChannelCancelled(StreamError):
    """调用方主动取消（cancel / teardown）。"""

    default_code = "CANCELLED"
