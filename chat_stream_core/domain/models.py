"""流式编排引擎共享的数据模型。

- Event: 从传输流中解析出的单个事件（delta/ping/end/workflow_end/error）。
- ReconciledResult: 单个通道到达终态时产出的唯一结果。
- Turn / ConversationContext: 调用方提交的一轮对话。
- StreamRequest: 交给传输层的请求体。
- ChannelHandle / TurnHandles: submit 返回给调用方的句柄，用于取消和等待。

所有传输适配器（如 DifyTransport）只依赖这些模型。
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from chat_stream_core.domain.exceptions import BusinessError


# 通道角色：主通道（上屏）与辅助通道（不上屏）
Role = Literal["primary", "auxiliary"]

ResultStatus = Literal["success", "error"]


class EventKind(str, Enum):
    DELTA = "delta"
    PING = "ping"
    END = "end"
    WORKFLOW_END = "workflow_end"
    ERROR = "error"


TERMINAL_KINDS = frozenset({EventKind.END, EventKind.WORKFLOW_END, EventKind.ERROR})

# 线上 event 字段 -> EventKind
WIRE_EVENTS: Dict[str, EventKind] = {
    "message": EventKind.DELTA,
    "message_end": EventKind.END,
    "workflow_finished": EventKind.WORKFLOW_END,
    "error": EventKind.ERROR,
    "ping": EventKind.PING,
}


@dataclass
class Event:
    """一个已解码的流事件。

    - answer: 仅 delta 使用，是截至目前的完整回答快照（不是增量片段）。
    - error: 仅 error 使用，上游给出的错误描述。
    - raw: 原始帧 JSON，便于调试。
    - implicit: 由解析器在流意外关闭时合成的终止事件。
    """

    kind: EventKind
    answer: Optional[str] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    raw: Optional[dict] = None
    implicit: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS


class ChannelState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ChannelState.COMPLETED, ChannelState.FAILED, ChannelState.CANCELLED)


@dataclass
class ReconciledResult:
    """通道终态结果，每个通道只产出一次。

    status 为 success 时 text 一定非空；status 为 error 时
    error 为可读原因，error_code 为机器可读错误码，text 为空。
    """

    request_id: str
    role: Role
    query: str
    text: str
    status: ResultStatus
    message_id: str = ""
    conversation_id: str = ""
    error: Optional[str] = None
    error_code: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def from_error(
        cls,
        exc: BusinessError,
        *,
        request_id: str,
        role: Role,
        query: str,
        message_id: str = "",
        conversation_id: str = "",
    ) -> "ReconciledResult":
        return cls(
            request_id=request_id,
            role=role,
            query=query,
            text="",
            status="error",
            message_id=message_id,
            conversation_id=conversation_id,
            error=exc.message,
            error_code=exc.code,
        )


@dataclass
class ConversationContext:
    """一轮对话共享的上下文。"""

    conversation_id: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    files: List[Dict[str, Any]] = field(default_factory=list)
    user: Optional[str] = None


@dataclass
class Turn:
    """调用方提交的一轮对话。

    auxiliary_content 为空时，由编排器根据主内容生成辅助查询。
    """

    primary_content: str
    auxiliary_content: Optional[str] = None
    context: ConversationContext = field(default_factory=ConversationContext)


@dataclass
class StreamRequest:
    """传输层请求体（与 chat-messages 接口字段一一对应）。"""

    query: str
    user: str
    conversation_id: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    files: List[Dict[str, Any]] = field(default_factory=list)
    response_mode: str = "streaming"

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "query": self.query,
            "inputs": self.inputs,
            "files": self.files,
            "user": self.user,
            "response_mode": self.response_mode,
        }
        if self.conversation_id:
            payload["conversation_id"] = self.conversation_id
        return payload


@dataclass(frozen=True)
class ChannelHandle:
    request_id: str
    role: Role


@dataclass(frozen=True)
class TurnHandles:
    primary: ChannelHandle
    auxiliary: Optional[ChannelHandle] = None
