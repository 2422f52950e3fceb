"""结果通知总线。

订阅方以“处理器对象 + 令牌”的形式登记，按登记顺序接收通道结果。
某个处理器抛出的异常只记录日志，不影响其余处理器。
"""

import inspect
import threading
from collections import OrderedDict
from typing import Any, Awaitable, Callable, List, Protocol, Tuple, Union, runtime_checkable
from uuid import uuid4

from chat_stream_core.domain.models import ReconciledResult
from chat_stream_core.infrastructure.logging.logger import logger

SubscriptionToken = str


@runtime_checkable
class ResultHandler(Protocol):
    """订阅方协议：handle 可以是普通函数，也可以返回 awaitable。"""

    def handle(self, result: ReconciledResult) -> Union[None, Awaitable[None]]:
        ...


class CallbackHandler:
    """把普通回调包装成 ResultHandler。"""

    def __init__(self, callback: Callable[[ReconciledResult], Any]):
        self.callback = callback

    def handle(self, result: ReconciledResult) -> Any:
        return self.callback(result)

    def __repr__(self) -> str:
        return f"CallbackHandler({getattr(self.callback, '__qualname__', self.callback)!r})"


class NotificationBus:
    def __init__(self) -> None:
        self._subscribers: "OrderedDict[SubscriptionToken, ResultHandler]" = OrderedDict()
        self._lock = threading.Lock()

    def subscribe(self, handler: Union[ResultHandler, Callable[[ReconciledResult], Any]]) -> SubscriptionToken:
        if not isinstance(handler, ResultHandler):
            if not callable(handler):
                raise TypeError(f"handler must be callable or expose handle(), got {type(handler).__name__}")
            handler = CallbackHandler(handler)
        token = f"sub-{uuid4().hex}"
        with self._lock:
            self._subscribers[token] = handler
        return token

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        """移除订阅；重复调用时返回 False。"""

        with self._lock:
            return self._subscribers.pop(token, None) is not None

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _snapshot(self) -> List[Tuple[SubscriptionToken, ResultHandler]]:
        with self._lock:
            return list(self._subscribers.items())

    async def publish(self, result: ReconciledResult) -> int:
        """按订阅顺序分发结果，返回成功处理的订阅方数量。"""

        delivered = 0
        for token, handler in self._snapshot():
            try:
                outcome = handler.handle(result)
                if inspect.isawaitable(outcome):
                    await outcome
                delivered += 1
            except Exception:  # noqa: BLE001 - 订阅方之间必须互相隔离
                logger.exception(
                    "Subscriber %r failed",
                    handler,
                    extra={"extra": {"token": token, "request_id": result.request_id}},
                )
        return delivered
