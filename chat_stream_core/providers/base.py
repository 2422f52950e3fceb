"""传输层抽象接口。

编排器不直接依赖具体的 HTTP SDK，而是依赖此协议：

- 每个后端实现一个 StreamTransport（如 DifyTransport）。
- open_stream(request) 返回异步上下文管理器，进入后得到带状态码的响应，
  响应体通过 aiter_bytes() 逐块读取；退出上下文即释放连接。

取消通道任务时，挂起在 aiter_bytes() 上的读取会被打断，上下文随之关闭。
"""

from typing import AsyncContextManager, AsyncIterator, Protocol

from chat_stream_core.domain.models import StreamRequest


class StreamResponse(Protocol):
    status_code: int
    reason_phrase: str

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        ...


class StreamTransport(Protocol):
    """流式传输协议。

    实现者需要提供：
    - name: 传输名称，用于日志。
    - open_stream(request): 打开一个可取消的流式响应。
    """

    name: str

    def open_stream(self, request: StreamRequest) -> AsyncContextManager[StreamResponse]:
        ...
