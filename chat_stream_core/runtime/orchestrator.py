"""通道编排器。

一轮对话（Turn）总是创建一个主通道；配置了辅助传输时再创建一个辅助通道，
辅助通道延迟 auxiliary_delay 秒发送，保证主通道的首帧先到达传输层。
两个通道各自运行在独立的 asyncio.Task 中：

    pending --submit--> streaming --(终止事件 | 超时 | 取消)--> 终态

任何通道内的错误（状态码、网络、超时、协议、上游 error、空结果）都只会
反映到该通道自己的 ReconciledResult 上，不会抛到其它通道或调用方。
辅助通道的终态结果通过 NotificationBus 发布给订阅方。
"""

import asyncio
from contextlib import aclosing
from collections import deque
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple, Union

from chat_stream_core.config.settings import settings
from chat_stream_core.domain.exceptions import (
    BusinessError,
    ChannelCancelled,
    IdleTimeoutError,
    StreamError,
    StreamTerminatedWithoutMarker,
    TransportError,
    ValidationError,
)
from chat_stream_core.domain.models import (
    ChannelHandle,
    ChannelState,
    ConversationContext,
    ReconciledResult,
    Role,
    StreamRequest,
    Turn,
    TurnHandles,
)
from chat_stream_core.infrastructure.logging.logger import logger
from chat_stream_core.providers.base import StreamTransport
from chat_stream_core.runtime.bus import NotificationBus
from chat_stream_core.runtime.history import ResultHistory
from chat_stream_core.runtime.registry import TIMEOUT_REASON, AbortHandle, RequestRegistry
from chat_stream_core.streaming.parser import MISSING_TERMINAL_REASON, EventFrameParser
from chat_stream_core.streaming.reconciler import ContentReconciler

HandleLike = Union[ChannelHandle, str]


@dataclass
class OrchestratorConfig:
    idle_timeout: float = 30.0
    auxiliary_delay: float = 0.1
    batch_interval: float = 0.5
    user: str = "chat-stream-user"
    auxiliary_user: Optional[str] = None
    auxiliary_query_prefix: str = "辅助分析: "
    finished_channel_limit: int = 100

    @classmethod
    def from_settings(cls, cfg=settings) -> "OrchestratorConfig":
        return cls(
            idle_timeout=cfg.idle_timeout,
            auxiliary_delay=cfg.auxiliary_delay,
            batch_interval=cfg.batch_interval,
            user=cfg.user,
            auxiliary_user=getattr(cfg, "auxiliary_user", None),
            auxiliary_query_prefix=cfg.auxiliary_query_prefix,
            finished_channel_limit=cfg.finished_channel_limit,
        )


@dataclass
class Channel:
    """单个通道的可变状态，只由编排器写入。"""

    handle: ChannelHandle
    request: StreamRequest
    reconciler: ContentReconciler
    abort: AbortHandle
    state: ChannelState = ChannelState.PENDING
    result: Optional[ReconciledResult] = None
    task: Optional[asyncio.Task] = None
    done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def request_id(self) -> str:
        return self.handle.request_id

    @property
    def role(self) -> Role:
        return self.handle.role


@dataclass(frozen=True)
class ChannelSnapshot:
    request_id: str
    role: Role
    state: ChannelState
    text: str
    result: Optional[ReconciledResult]


class ChannelOrchestrator:
    def __init__(
        self,
        primary_transport: StreamTransport,
        auxiliary_transport: Optional[StreamTransport] = None,
        *,
        config: Optional[OrchestratorConfig] = None,
        registry: Optional[RequestRegistry] = None,
        bus: Optional[NotificationBus] = None,
        history: Optional[ResultHistory] = None,
        auxiliary_query_builder: Optional[Callable[[str], str]] = None,
    ):
        self._config = config or OrchestratorConfig.from_settings()
        self._primary = primary_transport
        self._auxiliary = auxiliary_transport
        self.registry = registry or RequestRegistry(self._config.idle_timeout)
        self.bus = bus or NotificationBus()
        self.history = history
        self._build_auxiliary_query = auxiliary_query_builder or self._prefixed_query
        self._channels: Dict[str, Channel] = {}
        self._finished: Deque[str] = deque()
        self._background: Set[asyncio.Task] = set()

    @property
    def has_auxiliary(self) -> bool:
        return self._auxiliary is not None

    # ---- 提交 ----

    async def submit(self, turn: Turn) -> TurnHandles:
        """提交一轮对话，立即返回句柄；结果通过 wait() 或总线获取。"""

        if not turn.primary_content or not turn.primary_content.strip():
            raise ValidationError(code="EMPTY_QUERY", message="primary_content is required")
        ctx = turn.context
        primary = self._open_channel("primary", turn.primary_content, ctx, self._primary, delay=0)

        auxiliary: Optional[Channel] = None
        if self._auxiliary is not None:
            query = turn.auxiliary_content or self._build_auxiliary_query(turn.primary_content)
            # 辅助查询通常落在独立会话里，不复用主通道的 conversation_id
            aux_ctx = ConversationContext(inputs=ctx.inputs, files=ctx.files, user=ctx.user)
            auxiliary = self._open_channel(
                "auxiliary", query, aux_ctx, self._auxiliary, delay=self._config.auxiliary_delay
            )
        return TurnHandles(primary=primary.handle, auxiliary=auxiliary.handle if auxiliary else None)

    async def submit_auxiliary(self, query: str, context: Optional[ConversationContext] = None) -> ChannelHandle:
        """单独发送一条辅助请求（不创建主通道，也不延迟）。"""

        if self._auxiliary is None:
            raise ValidationError(code="AUXILIARY_NOT_CONFIGURED", message="no auxiliary transport configured")
        if not query or not query.strip():
            raise ValidationError(code="EMPTY_QUERY", message="query is required")
        channel = self._open_channel("auxiliary", query, context or ConversationContext(), self._auxiliary, delay=0)
        return channel.handle

    async def run_auxiliary_batch(
        self, queries: List[str], context: Optional[ConversationContext] = None
    ) -> List[ReconciledResult]:
        """依次发送多条辅助请求，两次之间间隔 batch_interval 秒。"""

        results: List[ReconciledResult] = []
        for index, query in enumerate(queries):
            if index:
                await asyncio.sleep(self._config.batch_interval)
            handle = await self.submit_auxiliary(query, context)
            results.append(await self.wait(handle))
        return results

    # ---- 控制 ----

    def cancel(self, handle: HandleLike) -> bool:
        return self.registry.cancel(self._request_id(handle))

    def teardown(self) -> int:
        """取消全部在途通道，可重复调用；返回本次取消的数量。"""

        count = self.registry.cancel_all()
        for request_id in [rid for rid, ch in self._channels.items() if ch.done.is_set()]:
            del self._channels[request_id]
        if count:
            logger.info("Teardown cancelled %d channel(s)", count)
        return count

    async def wait(self, handle: HandleLike) -> ReconciledResult:
        channel = self._get(handle)
        await channel.done.wait()
        return channel.result

    async def wait_turn(self, handles: TurnHandles) -> Tuple[ReconciledResult, Optional[ReconciledResult]]:
        if handles.auxiliary is None:
            return await self.wait(handles.primary), None
        primary, auxiliary = await asyncio.gather(self.wait(handles.primary), self.wait(handles.auxiliary))
        return primary, auxiliary

    def channel(self, handle: HandleLike) -> ChannelSnapshot:
        ch = self._get(handle)
        return ChannelSnapshot(
            request_id=ch.request_id,
            role=ch.role,
            state=ch.state,
            text=ch.reconciler.text,
            result=ch.result,
        )

    def forget(self, handle: HandleLike) -> bool:
        """丢弃已结束通道的记录；通道仍在运行时返回 False。"""

        request_id = self._request_id(handle)
        ch = self._channels.get(request_id)
        if ch is None or not ch.done.is_set():
            return False
        del self._channels[request_id]
        return True

    @property
    def active_count(self) -> int:
        return self.registry.active_count

    def active_ids(self) -> List[str]:
        return self.registry.active_ids()

    @property
    def tracked_count(self) -> int:
        """仍可通过 wait()/channel() 查询的通道数（在途 + 保留的已结束通道）。"""

        return len(self._channels)

    # ---- 通道运行 ----

    def _open_channel(
        self,
        role: Role,
        query: str,
        ctx: ConversationContext,
        transport: StreamTransport,
        *,
        delay: float,
    ) -> Channel:
        request_id = self.registry.new_request_id(role)
        user = ctx.user or (self._config.auxiliary_user if role == "auxiliary" else None) or self._config.user
        request = StreamRequest(
            query=query,
            user=user,
            conversation_id=ctx.conversation_id,
            inputs=dict(ctx.inputs),
            files=list(ctx.files),
        )
        channel = Channel(
            handle=ChannelHandle(request_id=request_id, role=role),
            request=request,
            reconciler=ContentReconciler(
                request_id,
                role,
                query,
                conversation_id=ctx.conversation_id,
                on_update=partial(self._log_update, request_id),
            ),
            abort=AbortHandle(),
        )
        self._channels[request_id] = channel
        task = asyncio.create_task(self._run(channel, transport, delay), name=request_id)
        channel.task = task
        channel.abort.bind(task)
        task.add_done_callback(partial(self._on_task_done, channel))
        self.registry.register(request_id, channel.abort)
        logger.info(
            "Submitted %s channel %s",
            role,
            request_id,
            extra={"extra": {"request_id": request_id, "role": role, "transport": getattr(transport, "name", "")}},
        )
        return channel

    async def _run(self, channel: Channel, transport: StreamTransport, delay: float) -> ReconciledResult:
        try:
            if delay:
                await asyncio.sleep(delay)
            result = await self._consume(channel, transport)
        except asyncio.CancelledError:
            if not channel.abort.requested:
                # 外部取消（如事件循环关闭）：记录终态后继续向上传播
                self._record(channel, self._terminate(channel, ChannelCancelled(message="task cancelled")))
                channel.done.set()
                raise
            # 取消已被消化，恢复计数，避免影响后续订阅方里的 asyncio.timeout
            asyncio.current_task().uncancel()
            result = self._aborted(channel)
        except BusinessError as exc:
            result = self._terminate(channel, exc)
        except Exception as exc:  # noqa: BLE001 - 通道内错误不能影响其它通道
            logger.exception("Channel %s crashed", channel.request_id)
            result = self._terminate(channel, TransportError(code="INTERNAL_ERROR", message=str(exc) or type(exc).__name__))
        await self._settle(channel, result)
        return result

    async def _consume(self, channel: Channel, transport: StreamTransport) -> ReconciledResult:
        parser = EventFrameParser()
        async with transport.open_stream(channel.request) as response:
            status = response.status_code
            if not 200 <= status < 300:
                reason = getattr(response, "reason_phrase", "") or ""
                raise TransportError(code="HTTP_STATUS", message=f"HTTP {status} {reason}".strip(), http_status=status)
            self._transition(channel, ChannelState.STREAMING)
            async with aclosing(parser.iter_events(response.aiter_bytes())) as events:
                async for event in events:
                    result = channel.reconciler.apply(event)
                    if result is not None:
                        self.registry.complete(channel.request_id)
                        return result
        return self._terminate(channel, StreamTerminatedWithoutMarker(message=MISSING_TERMINAL_REASON))

    def _terminate(self, channel: Channel, exc: BusinessError) -> ReconciledResult:
        self.registry.complete(channel.request_id)
        if not isinstance(exc, StreamError):
            exc = TransportError(code=exc.code, message=exc.message, http_status=exc.http_status)
        result = channel.reconciler.fail(exc)
        return result if result is not None else channel.reconciler.result

    def _aborted(self, channel: Channel) -> ReconciledResult:
        if channel.abort.reason == TIMEOUT_REASON:
            return self._terminate(channel, IdleTimeoutError(message=TIMEOUT_REASON))
        return self._terminate(channel, ChannelCancelled(message=channel.abort.reason or "cancelled"))

    def _transition(self, channel: Channel, state: ChannelState) -> None:
        if not channel.state.is_terminal:
            channel.state = state

    def _record(self, channel: Channel, result: ReconciledResult) -> bool:
        if channel.state.is_terminal:
            return False
        channel.result = result
        if result.ok:
            channel.state = ChannelState.COMPLETED
        elif result.error_code == ChannelCancelled.default_code:
            channel.state = ChannelState.CANCELLED
        else:
            channel.state = ChannelState.FAILED
        if self.history is not None:
            self.history.append(result)
        self._evict_finished(channel.request_id)

        log_extra = {"extra": {"request_id": result.request_id, "role": result.role, "status": result.status}}
        if result.ok:
            logger.info("Channel %s completed (%d chars)", result.request_id, len(result.text), extra=log_extra)
        else:
            logger.warning(
                "Channel %s ended with %s: %s", result.request_id, result.error_code, result.error, extra=log_extra
            )
        return True

    async def _settle(self, channel: Channel, result: ReconciledResult) -> None:
        if not self._record(channel, result):
            return
        try:
            if channel.role == "auxiliary":
                await self.bus.publish(result)
        finally:
            channel.done.set()

    def _evict_finished(self, request_id: str) -> None:
        """只保留最近 finished_channel_limit 个已结束通道的记录。"""

        self._finished.append(request_id)
        while len(self._finished) > self._config.finished_channel_limit:
            self._channels.pop(self._finished.popleft(), None)

    def _on_task_done(self, channel: Channel, task: asyncio.Task) -> None:
        # 任务在第一次调度前就被取消时 _run 不会执行，这里补上终态
        if channel.state.is_terminal or not task.cancelled():
            return
        result = self._aborted(channel)
        loop = task.get_loop()
        if loop.is_closed():
            self._record(channel, result)
            channel.done.set()
            return
        settle = loop.create_task(self._settle(channel, result))
        self._background.add(settle)
        settle.add_done_callback(self._background.discard)

    # ---- 辅助方法 ----

    def _prefixed_query(self, query: str) -> str:
        return f"{self._config.auxiliary_query_prefix}{query}"

    @staticmethod
    def _log_update(request_id: str, text: str) -> None:
        logger.debug("Channel %s content updated: %d chars", request_id, len(text))

    @staticmethod
    def _request_id(handle: HandleLike) -> str:
        return handle.request_id if isinstance(handle, ChannelHandle) else handle

    def _get(self, handle: HandleLike) -> Channel:
        request_id = self._request_id(handle)
        try:
            return self._channels[request_id]
        except KeyError:
            raise ValidationError(code="UNKNOWN_CHANNEL", message=f"unknown channel {request_id!r}") from None
