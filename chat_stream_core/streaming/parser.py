"""SSE 帧解析器。

把传输层的原始分块（bytes 或 str）还原成有序的 Event 序列：

- 帧之间以空行分隔（``\\n\\n``，兼容 ``\\r\\n``）；一个分块可以包含多个帧，
  一个帧也可以跨越多个分块，UTF-8 多字节字符同样可能被切开。
- 帧内只关心 ``data:`` 行，多行 data 以换行拼接；``:`` 开头的注释行忽略。
- 解码失败的帧记录日志后跳过，不会中断整个流。
- 流关闭时如果没有见过任何终止事件，补发一个隐式 error 事件。
"""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, List, Optional, Union

from chat_stream_core.domain.exceptions import ProtocolError, StreamTerminatedWithoutMarker, ValidationError
from chat_stream_core.domain.models import WIRE_EVENTS, Event, EventKind
from chat_stream_core.infrastructure.logging.logger import logger

Chunk = Union[bytes, str]

MISSING_TERMINAL_REASON = "stream closed without terminal marker"


class EventFrameParser:
    """增量帧解析器，每个通道一个实例。"""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._saw_terminal = False
        self._closed = False
        self.skipped = 0

    @property
    def saw_terminal(self) -> bool:
        return self._saw_terminal

    def feed(self, chunk: Chunk) -> List[Event]:
        """写入一个分块，返回其中已完整的帧对应的事件。"""

        if self._closed:
            raise ValidationError(code="PARSER_CLOSED", message="feed() called after close()")
        text = self._decoder.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        events: List[Event] = []
        while "\n\n" in self._buffer:
            frame, self._buffer = self._buffer.split("\n\n", 1)
            event = self._accept(self.parse_frame(frame))
            if event is not None:
                events.append(event)
        return events

    def close(self) -> List[Event]:
        """流结束：解析残留帧，并在缺少终止事件时补发隐式错误。"""

        if self._closed:
            return []
        self._closed = True
        tail = (self._buffer + self._decoder.decode(b"", final=True)).replace("\r\n", "\n")
        self._buffer = ""
        events: List[Event] = []
        if tail.strip():
            event = self._accept(self.parse_frame(tail))
            if event is not None:
                events.append(event)
        if not self._saw_terminal:
            exc = StreamTerminatedWithoutMarker(message=MISSING_TERMINAL_REASON)
            logger.warning(
                "Stream closed without terminal marker",
                extra={"extra": {"code": exc.code, "skipped_frames": self.skipped}},
            )
            events.append(Event(kind=EventKind.ERROR, error=exc.message, implicit=True))
            self._saw_terminal = True
        return events

    async def iter_events(self, chunks: AsyncIterable[Chunk]) -> AsyncIterator[Event]:
        """惰性地把分块流转换为事件流，最后附带 close() 的结果。"""

        async for chunk in chunks:
            for event in self.feed(chunk):
                yield event
        for event in self.close():
            yield event

    def parse_frame(self, frame: str) -> Optional[Event]:
        """解析单个帧文本；非数据帧或无法解码时返回 None。"""

        data_lines: List[str] = []
        for line in frame.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "data":
                data_lines.append(value)
        if not data_lines:
            return None

        data = "\n".join(data_lines)
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            self._skip(ProtocolError(message=f"invalid JSON: {e.msg}"), data)
            return None
        if not isinstance(payload, dict):
            self._skip(ProtocolError(message="frame payload is not an object"), data)
            return None

        name = payload.get("event")
        if not isinstance(name, str):
            self._skip(ProtocolError(message="frame has no event discriminator"), data)
            return None
        kind = WIRE_EVENTS.get(name)
        if kind is None:
            # workflow_started / node_started 等过程事件不参与内容合并
            logger.debug("Ignoring frame with event %r", name)
            return None
        return self._to_event(kind, payload)

    @staticmethod
    def _to_event(kind: EventKind, payload: dict) -> Event:
        answer = payload.get("answer")
        error = None
        if kind is EventKind.ERROR:
            error = str(payload.get("message") or payload.get("code") or "upstream error")
        return Event(
            kind=kind,
            answer=answer if isinstance(answer, str) else None,
            conversation_id=payload.get("conversation_id") or None,
            message_id=payload.get("message_id") or None,
            error=error,
            raw=payload,
        )

    def _accept(self, event: Optional[Event]) -> Optional[Event]:
        if event is not None and event.is_terminal:
            self._saw_terminal = True
        return event

    def _skip(self, exc: ProtocolError, data: str) -> None:
        self.skipped += 1
        logger.warning(
            "Skipping malformed frame: %s",
            exc.message,
            extra={"extra": {"code": exc.code, "preview": data[:200]}},
        )
