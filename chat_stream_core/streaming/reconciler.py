"""单通道内容合并。

上游的 message 事件携带的是“截至目前的完整回答”，因此合并规则是
整体替换而不是拼接；内容与当前缓冲相同时不做任何变更，避免下游收到
重复通知。终态结果只产出一次，之后的事件全部忽略。
"""

from typing import Callable, Optional

from chat_stream_core.domain.exceptions import (
    EmptyResultError,
    StreamError,
    StreamTerminatedWithoutMarker,
    UpstreamError,
)
from chat_stream_core.domain.models import Event, EventKind, ReconciledResult, Role

EMPTY_RESPONSE_REASON = "empty response"

UpdateListener = Callable[[str], None]


class ContentReconciler:
    """把一个通道的事件序列归并为一份权威文本和终态结果。"""

    def __init__(
        self,
        request_id: str,
        role: Role,
        query: str,
        *,
        conversation_id: Optional[str] = None,
        on_update: Optional[UpdateListener] = None,
    ):
        self.request_id = request_id
        self.role = role
        self.query = query
        self.message_id = ""
        self.conversation_id = conversation_id or ""
        self.revision = 0
        self._text = ""
        self._on_update = on_update
        self._result: Optional[ReconciledResult] = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def result(self) -> Optional[ReconciledResult]:
        return self._result

    @property
    def is_terminal(self) -> bool:
        return self._result is not None

    def apply(self, event: Event) -> Optional[ReconciledResult]:
        """处理一个事件；到达终态时返回结果，否则返回 None。"""

        if self._result is not None:
            return None
        if event.kind is EventKind.PING:
            return None

        if event.message_id:
            self.message_id = event.message_id
        if event.conversation_id:
            self.conversation_id = event.conversation_id

        if event.kind is EventKind.DELTA:
            if event.answer and event.answer != self._text:
                self._text = event.answer
                self.revision += 1
                if self._on_update is not None:
                    self._on_update(self._text)
            return None

        if event.kind is EventKind.ERROR:
            self._text = ""
            reason = event.error or "upstream error"
            if event.implicit:
                return self._fail(StreamTerminatedWithoutMarker(message=reason))
            return self._fail(UpstreamError(message=reason))

        frozen = self._text.strip()
        if not frozen:
            return self._fail(EmptyResultError(message=EMPTY_RESPONSE_REASON))
        self._text = frozen
        self._result = ReconciledResult(
            request_id=self.request_id,
            role=self.role,
            query=self.query,
            text=frozen,
            status="success",
            message_id=self.message_id,
            conversation_id=self.conversation_id,
        )
        return self._result

    def fail(self, exc: StreamError) -> Optional[ReconciledResult]:
        """由外部（超时、取消、传输错误）强制终止；已终止时返回 None。"""

        if self._result is not None:
            return None
        self._text = ""
        return self._fail(exc)

    def _fail(self, exc: StreamError) -> ReconciledResult:
        self._result = ReconciledResult.from_error(
            exc,
            request_id=self.request_id,
            role=self.role,
            query=self.query,
            message_id=self.message_id,
            conversation_id=self.conversation_id,
        )
        return self._result
